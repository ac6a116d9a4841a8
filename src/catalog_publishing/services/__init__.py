"""Service layer package."""

from catalog_publishing import __version__
from catalog_publishing.services.algolia import (
    AlgoliaAuthError,
    AlgoliaClient,
    AlgoliaConfig,
    AlgoliaError,
    AlgoliaTimeoutError,
    get_algolia_config,
)
from catalog_publishing.services.cloudflare import (
    CloudflareClient,
    CloudflareCredentials,
    PurgeExecutionResult,
    abbreviate_zone_id,
    build_product_urls,
    build_sitemap_purge_list,
    get_cloudflare_credentials,
)
from catalog_publishing.services.product_cache import ProductCache
from catalog_publishing.services.publish_batch import (
    AlgoliaPublishBatchService,
    MissingConfigurationError,
    PublishBatchResult,
    SitemapPublishBatchService,
    clamp_batch_size,
    job_in_progress_result,
)
from catalog_publishing.services.publish_state import (
    LastPublishedBatchStore,
    PublishedBatch,
)
from catalog_publishing.services.publishing_activity import (
    ActivityStoreUnavailableError,
    InMemoryActivityStore,
    PublishingActivityLog,
    RedisActivityStore,
)
from catalog_publishing.services.publishing_lock import (
    PublishingJobInProgressError,
    PublishingKind,
    PublishingLockService,
)
from catalog_publishing.services.site_url import (
    SiteUrlUnavailableError,
    resolve_site_url,
)
from catalog_publishing.services.sitemap_cache import (
    InMemorySitemapCache,
    RedisSitemapCache,
    SitemapCache,
    make_cache_key,
)
from catalog_publishing.services.sitemap_collections import (
    SITEMAP_PAGE_SIZE,
    SitemapCollection,
    SitemapCollectionService,
)
from catalog_publishing.services.sitemap_renderer import (
    SitemapIndexEntry,
    SitemapRecord,
    SitemapUrlEntry,
    compute_chunk_last_modified,
    render_sitemap_index_xml,
    render_sitemap_xml,
    render_urlset_xml,
)

__all__ = [
    "__version__",
    "ActivityStoreUnavailableError",
    "AlgoliaAuthError",
    "AlgoliaClient",
    "AlgoliaConfig",
    "AlgoliaError",
    "AlgoliaPublishBatchService",
    "AlgoliaTimeoutError",
    "CloudflareClient",
    "CloudflareCredentials",
    "InMemoryActivityStore",
    "InMemorySitemapCache",
    "LastPublishedBatchStore",
    "MissingConfigurationError",
    "ProductCache",
    "PublishBatchResult",
    "PublishedBatch",
    "PublishingActivityLog",
    "PublishingJobInProgressError",
    "PublishingKind",
    "PublishingLockService",
    "PurgeExecutionResult",
    "RedisActivityStore",
    "RedisSitemapCache",
    "SITEMAP_PAGE_SIZE",
    "SiteUrlUnavailableError",
    "SitemapCache",
    "SitemapCollection",
    "SitemapCollectionService",
    "SitemapIndexEntry",
    "SitemapPublishBatchService",
    "SitemapRecord",
    "SitemapUrlEntry",
    "abbreviate_zone_id",
    "build_product_urls",
    "build_sitemap_purge_list",
    "clamp_batch_size",
    "compute_chunk_last_modified",
    "get_algolia_config",
    "get_cloudflare_credentials",
    "job_in_progress_result",
    "make_cache_key",
    "render_sitemap_index_xml",
    "render_sitemap_xml",
    "render_urlset_xml",
    "resolve_site_url",
]
