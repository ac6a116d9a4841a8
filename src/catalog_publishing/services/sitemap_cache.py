"""Keyed TTL cache for rendered sitemap documents."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import logging
from typing import Final, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

DEFAULT_SITEMAP_CACHE_TTL_SECONDS: Final[int] = 300
DEFAULT_REDIS_KEY_PREFIX: Final[str] = "catalog_publishing:sitemap:"
_REDIS_DELETE_CHUNK_SIZE: Final[int] = 500

_logger = logging.getLogger("catalog_publishing.sitemap.cache")


def make_cache_key(site_url: str, path: str) -> str:
    """Compose the cache key so distinct origins never share an entry."""

    return f"{site_url}::{path}"


class SitemapCache(Protocol):
    async def get(
        self,
        site_url: str,
        path: str,
        *,
        request_id: str | None = None,
    ) -> str | None: ...

    async def set(self, site_url: str, path: str, xml: str) -> None: ...

    async def clear(self) -> None: ...


@dataclass(slots=True, frozen=True)
class SitemapCacheEntry:
    """Rendered document plus its absolute expiry."""

    xml: str
    expires_at: datetime


class InMemorySitemapCache:
    """Process-local cache with lazy eviction of expired entries."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_SITEMAP_CACHE_TTL_SECONDS,
        now_factory: Callable[[], datetime] | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than zero")

        self._ttl = timedelta(seconds=ttl_seconds)
        self._now_factory = now_factory or self._default_now
        self._entries: dict[str, SitemapCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(
        self,
        site_url: str,
        path: str,
        *,
        request_id: str | None = None,
    ) -> str | None:
        key = make_cache_key(site_url, path)
        log_context = {"site_url": site_url, "path": path, "request_id": request_id}

        entry = self._entries.get(key)
        if entry is None:
            _logger.debug("sitemap_cache_miss", extra=log_context)
            return None

        if entry.expires_at <= self._now_factory():
            self._entries.pop(key, None)
            _logger.debug("sitemap_cache_expired", extra=log_context)
            return None

        _logger.debug("sitemap_cache_hit", extra=log_context)
        return entry.xml

    async def set(self, site_url: str, path: str, xml: str) -> None:
        self._entries[make_cache_key(site_url, path)] = SitemapCacheEntry(
            xml=xml,
            expires_at=self._now_factory() + self._ttl,
        )

    async def clear(self) -> None:
        dropped = len(self._entries)
        self._entries.clear()
        _logger.info("sitemap_cache_cleared", extra={"entries": dropped})

    @staticmethod
    def _default_now() -> datetime:
        return datetime.now(UTC)


class RedisSitemapCache:
    """Shared cache backed by Redis keys with server-side expiry.

    Connectivity failures never propagate: a failed read is a miss and a
    failed write or clear is logged and skipped.
    """

    def __init__(
        self,
        client: Redis,
        *,
        ttl_seconds: int = DEFAULT_SITEMAP_CACHE_TTL_SECONDS,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than zero")

        self._client = client
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def _redis_key(self, site_url: str, path: str) -> str:
        return f"{self._key_prefix}{make_cache_key(site_url, path)}"

    async def get(
        self,
        site_url: str,
        path: str,
        *,
        request_id: str | None = None,
    ) -> str | None:
        log_context = {"site_url": site_url, "path": path, "request_id": request_id}
        try:
            value = await self._client.get(self._redis_key(site_url, path))
        except RedisError:
            _logger.warning("sitemap_cache_read_failed", extra=log_context, exc_info=True)
            return None

        if value is None:
            _logger.debug("sitemap_cache_miss", extra=log_context)
            return None

        _logger.debug("sitemap_cache_hit", extra=log_context)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def set(self, site_url: str, path: str, xml: str) -> None:
        try:
            await self._client.set(
                self._redis_key(site_url, path), xml, ex=self._ttl_seconds
            )
        except RedisError:
            _logger.warning(
                "sitemap_cache_write_failed",
                extra={"site_url": site_url, "path": path},
                exc_info=True,
            )

    async def clear(self) -> None:
        dropped = 0
        try:
            pending: list[str | bytes] = []
            async for key in self._client.scan_iter(match=f"{self._key_prefix}*"):
                pending.append(key)
                if len(pending) >= _REDIS_DELETE_CHUNK_SIZE:
                    dropped += int(await self._client.delete(*pending))
                    pending = []
            if pending:
                dropped += int(await self._client.delete(*pending))
        except RedisError:
            _logger.warning("sitemap_cache_clear_failed", exc_info=True)
            return

        _logger.info("sitemap_cache_cleared", extra={"entries": dropped})


__all__ = [
    "DEFAULT_SITEMAP_CACHE_TTL_SECONDS",
    "InMemorySitemapCache",
    "RedisSitemapCache",
    "SitemapCache",
    "SitemapCacheEntry",
    "make_cache_key",
]
