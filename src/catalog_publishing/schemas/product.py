"""Pydantic schemas for published product lookups."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ProductRead(BaseModel):
    """Serialized published product."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    title: str
    is_published: bool
    last_update_at: datetime | None = None
    updated_at: datetime


__all__ = ["ProductRead"]
