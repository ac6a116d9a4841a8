"""Category ORM model for product and blog taxonomies."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SqlEnum,
    Integer,
    String,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from catalog_publishing.models.base import Base


class CategoryType(str, Enum):
    """Taxonomy a category belongs to."""

    PRODUCT = "product"
    BLOG = "blog"


class Category(Base):
    """Category page; blog categories are listed at ``/bc/{slug}``."""

    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("type", "slug", name="uq_categories_type_slug"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[CategoryType] = mapped_column(
        SqlEnum(
            CategoryType,
            name="category_type",
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=CategoryType.PRODUCT,
    )
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_published: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    last_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


__all__ = ["Category", "CategoryType"]
