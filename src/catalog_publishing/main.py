"""Application entry point for the catalog publishing service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from redis.asyncio import Redis
import uvicorn

from catalog_publishing.api import (
    connectivity_router,
    products_router,
    publishing_router,
    sitemaps_router,
)
from catalog_publishing.config import Settings, get_settings
from catalog_publishing.database import close_database, initialize_database
from catalog_publishing.services.algolia import AlgoliaClient
from catalog_publishing.services.cloudflare import CloudflareClient
from catalog_publishing.services.product_cache import ProductCache
from catalog_publishing.services.publish_state import LastPublishedBatchStore
from catalog_publishing.services.publishing_activity import (
    PublishingActivityLog,
    RedisActivityStore,
)
from catalog_publishing.services.publishing_lock import PublishingLockService
from catalog_publishing.services.sitemap_cache import (
    InMemorySitemapCache,
    RedisSitemapCache,
    SitemapCache,
)
from catalog_publishing.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = ["app", "create_app", "main"]

_lifecycle_logger = logging.getLogger("catalog_publishing.lifecycle")


def _build_redis_client(settings: Settings) -> Redis | None:
    if not settings.REDIS_URL:
        return None
    return Redis.from_url(settings.REDIS_URL)


def _initialize_publishing_state(app: FastAPI, settings: Settings) -> None:
    """Build the process-wide stores once; backends never change afterwards."""

    redis_client = _build_redis_client(settings)
    sitemap_cache: SitemapCache
    if redis_client is not None:
        sitemap_cache = RedisSitemapCache(
            redis_client,
            ttl_seconds=settings.SITEMAP_CACHE_TTL_SECONDS,
            key_prefix=settings.SITEMAP_CACHE_REDIS_PREFIX,
        )
        activity_log = PublishingActivityLog(
            RedisActivityStore(redis_client, key=settings.ACTIVITY_REDIS_KEY)
        )
    else:
        sitemap_cache = InMemorySitemapCache(ttl_seconds=settings.SITEMAP_CACHE_TTL_SECONDS)
        activity_log = PublishingActivityLog()

    app.state.redis_client = redis_client
    app.state.sitemap_cache = sitemap_cache
    app.state.activity_log = activity_log
    app.state.publishing_lock = PublishingLockService()
    app.state.product_cache = ProductCache(
        ttl_seconds=settings.SITEMAP_CACHE_TTL_SECONDS,
        max_entries=settings.PRODUCT_CACHE_MAX_ENTRIES,
    )
    app.state.last_batch_store = LastPublishedBatchStore()
    app.state.cloudflare_client = CloudflareClient.from_settings(settings)
    app.state.algolia_client = AlgoliaClient.from_settings(settings)

    _lifecycle_logger.info(
        "publishing_state_initialized",
        extra={
            "backend": "redis" if redis_client is not None else "memory",
            "cloudflare_configured": app.state.cloudflare_client is not None,
            "algolia_configured": app.state.algolia_client is not None,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await initialize_database()

    try:
        yield
    finally:
        redis_client: Redis | None = getattr(app.state, "redis_client", None)
        if redis_client is not None:
            await redis_client.aclose()
        await close_database()
        _lifecycle_logger.info("shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(title="Catalog Publishing", lifespan=lifespan)
    app.state.settings = settings
    _initialize_publishing_state(app, settings)
    add_request_logging_middleware(app)

    app.include_router(sitemaps_router)
    app.include_router(products_router)
    app.include_router(publishing_router)
    app.include_router(connectivity_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "catalog_publishing.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False,
    )
