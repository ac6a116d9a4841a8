"""Schema exports for API serialization."""

from catalog_publishing import __version__
from catalog_publishing.schemas.product import ProductRead
from catalog_publishing.schemas.publishing import (
    CloudflarePurgeSummary,
    PublishBatchResponse,
    PublishingActivityEntry,
    PublishingActivityErrorItem,
    PublishingActivityListResponse,
    PublishingActivityType,
    PublishingOverviewResponse,
    PublishingSearchIndexInfo,
    PublishingSiteCounts,
)

__all__ = [
    "__version__",
    "CloudflarePurgeSummary",
    "ProductRead",
    "PublishBatchResponse",
    "PublishingActivityEntry",
    "PublishingActivityErrorItem",
    "PublishingActivityListResponse",
    "PublishingActivityType",
    "PublishingOverviewResponse",
    "PublishingSearchIndexInfo",
    "PublishingSiteCounts",
]
