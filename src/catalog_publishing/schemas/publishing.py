"""Pydantic schemas for publish batches and the publishing activity log."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

PublishingActivityType = Literal["sitemap", "algolia"]


class PublishingActivityErrorItem(BaseModel):
    """Per-item failure captured during a batch run."""

    slug: str | None = None
    message: str
    code: str | None = None
    identifier: str | None = None


class PublishingActivityEntry(BaseModel):
    """Immutable record of one finished batch run."""

    id: str = Field(min_length=1)
    type: PublishingActivityType
    requested: int = Field(ge=0)
    processed: int = Field(ge=0)
    success: int = Field(ge=0)
    skipped: int = Field(ge=0)
    errors: int = Field(ge=0)
    duration_ms: int = Field(ge=0)
    finished_at: str = Field(min_length=1)
    message: str | None = None
    metadata: dict[str, Any] | None = None
    error_items: list[PublishingActivityErrorItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_counters(self) -> PublishingActivityEntry:
        if self.success + self.skipped > self.processed:
            raise ValueError("success + skipped must not exceed processed")
        if self.processed > self.requested:
            raise ValueError("processed must not exceed requested")
        return self


class CloudflarePurgeSummary(BaseModel):
    """Outcome of the CDN purge attempted after a publish."""

    configured: bool
    ok: bool
    error_code: str | None = None
    urls_purged: int | None = None
    purged: list[str] | None = None
    zone_id: str | None = None
    zone_id_short: str | None = None
    ray_ids: list[str] | None = None
    error_details: dict[str, Any] | list[Any] | None = None


class PublishBatchResponse(BaseModel):
    """Response body shared by every publish batch endpoint."""

    ok: bool
    requested: int
    processed: int
    success: int
    skipped: int
    errors: int
    duration_ms: int
    finished_at: str
    message: str | None = None
    slugs: list[str] | None = None
    product_paths: list[str] | None = None
    sitemap_paths: list[str] | None = None
    cloudflare: CloudflarePurgeSummary | None = None
    candidate_count: int | None = None
    activity_id: str | None = None
    error_code: str | None = None
    error_details: dict[str, Any] | None = None


class PublishingActivityListResponse(BaseModel):
    ok: bool = True
    entries: list[PublishingActivityEntry] = Field(default_factory=list)


class PublishingSiteCounts(BaseModel):
    published: int = 0
    unpublished: int = 0


class PublishingSearchIndexInfo(BaseModel):
    configured: bool
    index_name: str | None = None
    index_count: int | None = None
    error_code: str | None = None


class PublishingOverviewResponse(BaseModel):
    ok: bool
    site: PublishingSiteCounts
    algolia: PublishingSearchIndexInfo
    locks: dict[str, bool] = Field(default_factory=dict)
    error_code: str | None = None


__all__ = [
    "CloudflarePurgeSummary",
    "PublishBatchResponse",
    "PublishingActivityEntry",
    "PublishingActivityErrorItem",
    "PublishingActivityListResponse",
    "PublishingActivityType",
    "PublishingOverviewResponse",
    "PublishingSearchIndexInfo",
    "PublishingSiteCounts",
]
