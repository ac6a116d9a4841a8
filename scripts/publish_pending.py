"""Run one sitemap publish batch against the configured database."""

from __future__ import annotations

import argparse
import asyncio
import json

from redis.asyncio import Redis

from catalog_publishing.config import get_settings
from catalog_publishing.database import close_database
from catalog_publishing.services import (
    CloudflareClient,
    InMemorySitemapCache,
    PublishingActivityLog,
    PublishingLockService,
    RedisActivityStore,
    RedisSitemapCache,
    SitemapPublishBatchService,
)
from catalog_publishing.utils.logging import setup_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Products to publish (clamped to PUBLISH_MAX_BATCH_SIZE)",
    )
    return parser.parse_args()


async def main(batch_size: int | None) -> int:
    settings = get_settings()
    setup_logging(settings)

    redis_client = Redis.from_url(settings.REDIS_URL) if settings.REDIS_URL else None
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

    service = SitemapPublishBatchService(
        lock=PublishingLockService(),
        activity_log=activity_log,
        sitemap_cache=sitemap_cache,
        cloudflare_client=CloudflareClient.from_settings(settings),
        default_batch_size=settings.PUBLISH_DEFAULT_BATCH_SIZE,
        max_batch_size=settings.PUBLISH_MAX_BATCH_SIZE,
        sitemap_page_size=settings.SITEMAP_PAGE_SIZE,
    )
    try:
        result = await service.run(batch_size=batch_size, site_url=settings.SITE_URL)
    finally:
        if redis_client is not None:
            await redis_client.aclose()
        await close_database()

    print(
        json.dumps(
            {
                "ok": result.ok,
                "requested": result.requested,
                "processed": result.processed,
                "success": result.success,
                "skipped": result.skipped,
                "errors": result.errors,
                "duration_ms": result.duration_ms,
                "activity_id": result.activity_id,
                "error_code": result.error_code,
            }
        )
    )
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main(_parse_args().batch_size)))
