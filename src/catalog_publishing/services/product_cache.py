"""Short-lived per-slug cache of published product lookups."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import logging
from typing import Final

from sqlalchemy import select

from catalog_publishing.models import Product
from catalog_publishing.schemas.product import ProductRead
from catalog_publishing.services.sitemap_collections import SessionScopeFactory

DEFAULT_PRODUCT_CACHE_TTL_SECONDS: Final[int] = 300
DEFAULT_PRODUCT_CACHE_MAX_ENTRIES: Final[int] = 1024

_logger = logging.getLogger("catalog_publishing.products.cache")


@dataclass(slots=True, frozen=True)
class _ProductCacheEntry:
    product: ProductRead | None
    expires_at: datetime


class ProductCache:
    """Cache published products by slug, remembering misses as well as hits.

    Publishing a product must clear its slug, otherwise a cached miss hides
    the freshly published page until the entry expires. The map is capped at
    ``max_entries``; the oldest insertions are evicted first.
    """

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        ttl_seconds: int = DEFAULT_PRODUCT_CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_PRODUCT_CACHE_MAX_ENTRIES,
        now_factory: Callable[[], datetime] | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than zero")
        if max_entries <= 0:
            raise ValueError("max_entries must be greater than zero")
        if session_factory is None:
            from catalog_publishing.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._now_factory = now_factory or (lambda: datetime.now(UTC))
        self._entries: dict[str, _ProductCacheEntry] = {}

    def __contains__(self, slug: object) -> bool:
        return slug in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_published(self, slug: str) -> ProductRead | None:
        key = slug.strip()
        if not key:
            return None

        entry = self._entries.get(key)
        now = self._now_factory()
        if entry is not None:
            if entry.expires_at > now:
                return entry.product
            del self._entries[key]

        async with self._session_factory() as session:
            row = await session.scalar(
                select(Product)
                .where(Product.slug == key)
                .where(Product.is_published.is_(True))
            )
            product = ProductRead.model_validate(row) if row is not None else None

        self._entries.pop(key, None)
        self._entries[key] = _ProductCacheEntry(product=product, expires_at=now + self._ttl)
        while len(self._entries) > self._max_entries:
            self._entries.pop(next(iter(self._entries)))
        return product

    def clear_slugs(self, slugs: Iterable[str]) -> int:
        cleared = 0
        for slug in slugs:
            if self._entries.pop(slug.strip(), None) is not None:
                cleared += 1
        if cleared:
            _logger.debug("product_cache_cleared", extra={"entries": cleared})
        return cleared

    def clear(self) -> None:
        self._entries.clear()


__all__ = [
    "DEFAULT_PRODUCT_CACHE_MAX_ENTRIES",
    "DEFAULT_PRODUCT_CACHE_TTL_SECONDS",
    "ProductCache",
]
