"""Product ORM model with publication state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from catalog_publishing.models.base import Base


class Product(Base):
    """Catalog product exposed at ``/p/{slug}`` once published."""

    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_is_published_id", "is_published", "id"),
        Index("ix_products_last_update_at", "last_update_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    is_published: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    last_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


__all__ = ["Product"]
