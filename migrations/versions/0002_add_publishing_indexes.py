"""add publishing indexes

Revision ID: 0002_add_publishing_indexes
Revises: 0001_create_catalog_tables
Create Date: 2026-10-17 09:30:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op

revision: str = "0002_add_publishing_indexes"
down_revision: str | None = "0001_create_catalog_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_index(
        "ix_products_is_published_id",
        "products",
        ["is_published", "id"],
    )
    op.create_index(
        "ix_products_last_update_at",
        "products",
        ["last_update_at"],
    )
    op.create_index(
        "ix_blog_posts_is_published_id",
        "blog_posts",
        ["is_published", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_blog_posts_is_published_id", table_name="blog_posts")
    op.drop_index("ix_products_last_update_at", table_name="products")
    op.drop_index("ix_products_is_published_id", table_name="products")
