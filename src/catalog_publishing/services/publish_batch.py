"""Publish batches: flip pending products live or push them to the search index."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
import math
from time import perf_counter
from typing import Any, Final

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_publishing.models import Product
from catalog_publishing.schemas.publishing import (
    CloudflarePurgeSummary,
    PublishingActivityErrorItem,
)
from catalog_publishing.services.algolia import AlgoliaClient, AlgoliaError
from catalog_publishing.services.cloudflare import CloudflareClient, build_sitemap_purge_list
from catalog_publishing.services.product_cache import ProductCache
from catalog_publishing.services.publish_state import LastPublishedBatchStore
from catalog_publishing.services.publishing_activity import PublishingActivityLog
from catalog_publishing.services.publishing_lock import (
    PublishingJobInProgressError,
    PublishingKind,
    PublishingLockService,
)
from catalog_publishing.services.site_url import SiteUrlUnavailableError
from catalog_publishing.services.sitemap_cache import SitemapCache
from catalog_publishing.services.sitemap_collections import (
    SITEMAP_PAGE_SIZE,
    SessionScopeFactory,
    SitemapCollectionService,
)
from catalog_publishing.services.sitemap_renderer import PRODUCT_PATH_PREFIX
from catalog_publishing.utils.timestamps import format_timestamp

DEFAULT_BATCH_SIZE: Final[int] = 2000
MAX_BATCH_SIZE: Final[int] = 5000
DEFAULT_CANDIDATE_FACTOR: Final[int] = 4
DEFAULT_MAX_CANDIDATES: Final[int] = 20_000
SLUG_PREVIEW_SIZE: Final[int] = 20
SITEMAP_PATHS: Final[tuple[str, ...]] = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemaps/[sitemap]",
)

_logger = logging.getLogger("catalog_publishing.publishing.batch")


class MissingConfigurationError(RuntimeError):
    """Raised when a batch needs external credentials that are not configured."""

    error_code = "missing_env"

    def __init__(self, integration: str) -> None:
        self.integration = integration
        super().__init__(f"{integration} credentials are not configured")


@dataclass(slots=True)
class PublishBatchResult:
    """Outcome of one batch run, shaped like the HTTP response body."""

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


@dataclass(slots=True, frozen=True)
class _Candidate:
    id: int
    slug: str


@dataclass(slots=True)
class _RunCounters:
    requested: int
    processed: int = 0
    success: int = 0
    skipped: int = 0
    errors: int = 0
    slugs: list[str] = field(default_factory=list)


def clamp_batch_size(
    value: object,
    *,
    default: int = DEFAULT_BATCH_SIZE,
    maximum: int = MAX_BATCH_SIZE,
) -> int:
    """Return ``value`` floored and clamped to ``[1, maximum]``.

    Anything that is not a finite positive number falls back to ``default``.
    """

    if isinstance(value, bool) or not isinstance(value, int | float):
        return min(default, maximum)
    if not math.isfinite(value) or value <= 0:
        return min(default, maximum)
    return max(1, min(math.floor(value), maximum))


def job_in_progress_result(kind: PublishingKind | str) -> PublishBatchResult:
    """Body returned when a batch of the same kind already holds the lock."""

    _logger.info(
        "publish_batch_rejected",
        extra={"kind": getattr(kind, "value", kind), "error_code": "job_in_progress"},
    )
    return PublishBatchResult(
        ok=False,
        requested=0,
        processed=0,
        success=0,
        skipped=0,
        errors=0,
        duration_ms=0,
        finished_at=format_timestamp(datetime.now(UTC)),
        error_code=PublishingJobInProgressError.error_code,
    )


def _normalize_slug(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


def _error_details(error: BaseException) -> dict[str, Any]:
    return {"message": str(error) or error.__class__.__name__}


def _log_sql_error(error: SQLAlchemyError, *, kind: str) -> None:
    original = getattr(error, "orig", None)
    _logger.error(
        "sql_error",
        extra={
            "kind": kind,
            "error_code": "sql_error",
            "sqlalchemy_code": getattr(error, "code", None),
            "driver_code": getattr(original, "sqlite_errorcode", None)
            or getattr(original, "errno", None)
            or getattr(original, "pgcode", None),
            "driver_state": getattr(original, "sqlstate", None)
            or getattr(original, "sqlite_errorname", None),
        },
        exc_info=error,
    )


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError:
        _logger.warning("publish_batch_rollback_failed", exc_info=True)


class SitemapPublishBatchService:
    """Publish the oldest pending products and refresh everything that lists them.

    One run holds the ``sitemap`` lock from start to finish. Candidates are
    read first; only the bulk update runs inside the write transaction. After
    commit the sitemap and product caches are cleared, the CDN is purged when
    configured and an activity entry is recorded. A failed purge is reported
    in the result but never undoes the publish.
    """

    def __init__(
        self,
        *,
        lock: PublishingLockService,
        activity_log: PublishingActivityLog,
        sitemap_cache: SitemapCache,
        product_cache: ProductCache | None = None,
        last_batch_store: LastPublishedBatchStore | None = None,
        cloudflare_client: CloudflareClient | None = None,
        collections: SitemapCollectionService | None = None,
        session_factory: SessionScopeFactory | None = None,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        sitemap_page_size: int = SITEMAP_PAGE_SIZE,
        now_factory: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from catalog_publishing.database import session_scope

            session_factory = session_scope

        self._lock = lock
        self._activity_log = activity_log
        self._sitemap_cache = sitemap_cache
        self._product_cache = product_cache
        self._last_batch_store = last_batch_store
        self._cloudflare_client = cloudflare_client
        self._collections = collections or SitemapCollectionService(
            session_factory=session_factory
        )
        self._session_factory = session_factory
        self._default_batch_size = default_batch_size
        self._max_batch_size = max_batch_size
        self._sitemap_page_size = sitemap_page_size
        self._now_factory = now_factory or (lambda: datetime.now(UTC))

    async def run(
        self,
        *,
        batch_size: object = None,
        site_url: str | None = None,
    ) -> PublishBatchResult:
        """Run one batch; raises ``PublishingJobInProgressError`` on contention."""

        with self._lock.hold(PublishingKind.SITEMAP):
            return await self._run_locked(batch_size=batch_size, site_url=site_url)

    async def _run_locked(
        self,
        *,
        batch_size: object,
        site_url: str | None,
    ) -> PublishBatchResult:
        started_at = perf_counter()
        counters = _RunCounters(
            requested=clamp_batch_size(
                batch_size,
                default=self._default_batch_size,
                maximum=self._max_batch_size,
            )
        )

        try:
            async with self._session_factory() as session:
                candidates = await self._select_candidates(session, counters.requested)
                if not candidates:
                    return await self._record_empty(counters, started_at)

                counters.slugs = [candidate.slug for candidate in candidates]
                counters.processed = len(candidates)
                await session.commit()

                try:
                    counters.success = await self._flip_published(
                        session, [candidate.id for candidate in candidates]
                    )
                    await session.commit()
                except Exception:
                    await _rollback_quietly(session)
                    raise
        except Exception as error:
            return await self._record_failure(counters, started_at, error)

        counters.skipped = counters.processed - counters.success
        await self._sitemap_cache.clear()
        product_paths = [f"{PRODUCT_PATH_PREFIX}{slug}" for slug in counters.slugs]
        if self._product_cache is not None:
            self._product_cache.clear_slugs(counters.slugs)
        if self._last_batch_store is not None:
            self._last_batch_store.set(counters.slugs)

        cloudflare_summary = await self._purge_sitemaps(site_url)
        if cloudflare_summary.configured and not cloudflare_summary.ok:
            counters.errors = max(counters.errors, 1)

        message = f"Published {counters.success} products."
        entry = await self._activity_log.record(
            type="sitemap",
            requested=counters.requested,
            processed=counters.processed,
            success=counters.success,
            skipped=counters.skipped,
            errors=counters.errors,
            duration_ms=_elapsed_ms(started_at),
            message=message,
            metadata={
                "requested": counters.requested,
                "slugs_total": len(counters.slugs),
                "slugs_preview": counters.slugs[:SLUG_PREVIEW_SIZE],
                "product_paths": product_paths[:SLUG_PREVIEW_SIZE],
                "sitemap_paths": list(SITEMAP_PATHS),
                "cloudflare": cloudflare_summary.model_dump(exclude_none=True),
            },
        )
        _logger.info(
            "publish_batch_completed",
            extra={
                "kind": PublishingKind.SITEMAP.value,
                "activity_id": entry.id,
                "duration_ms": entry.duration_ms,
            },
        )
        return PublishBatchResult(
            ok=True,
            requested=counters.requested,
            processed=counters.processed,
            success=counters.success,
            skipped=counters.skipped,
            errors=counters.errors,
            duration_ms=entry.duration_ms,
            finished_at=entry.finished_at,
            message=message,
            slugs=list(counters.slugs),
            product_paths=product_paths,
            sitemap_paths=list(SITEMAP_PATHS),
            cloudflare=cloudflare_summary,
            activity_id=entry.id,
        )

    async def _select_candidates(
        self, session: AsyncSession, limit: int
    ) -> list[_Candidate]:
        rows = (
            await session.execute(
                select(Product.id, Product.slug)
                .where(Product.is_published.is_(False))
                .order_by(Product.id.asc())
                .limit(limit)
            )
        ).all()
        candidates: list[_Candidate] = []
        for row in rows:
            slug = _normalize_slug(row[1])
            if row[0] is None or slug is None:
                continue
            candidates.append(_Candidate(id=int(row[0]), slug=slug))
        return candidates

    async def _flip_published(self, session: AsyncSession, ids: Sequence[int]) -> int:
        result = await session.execute(
            update(Product)
            .where(Product.id.in_(ids))
            .where(Product.is_published.is_(False))
            .values(is_published=True, last_update_at=self._now_factory())
            .execution_options(synchronize_session=False)
        )
        rowcount = getattr(result, "rowcount", None)
        if not isinstance(rowcount, int) or rowcount < 0:
            return len(ids)
        return min(rowcount, len(ids))

    async def _purge_sitemaps(self, site_url: str | None) -> CloudflarePurgeSummary:
        client = self._cloudflare_client
        if client is None:
            return CloudflarePurgeSummary(configured=False, ok=False)

        try:
            if not site_url:
                raise SiteUrlUnavailableError("Unable to resolve site URL")
            published_count = await self._collections.count_published_products()
            page_count = math.ceil(published_count / self._sitemap_page_size)
            purge_list = build_sitemap_purge_list(site_url, page_count)
            purge_result = await client.purge_files(purge_list.urls, label="sitemaps")
        except Exception as error:
            _logger.warning(
                "cloudflare_purge_soft_failed",
                extra={"kind": PublishingKind.SITEMAP.value, "error_code": "purge_failed"},
                exc_info=True,
            )
            return CloudflarePurgeSummary(
                configured=True,
                ok=False,
                error_code="purge_failed",
                error_details=_error_details(error),
            )

        return CloudflarePurgeSummary(
            configured=True,
            ok=purge_result.ok,
            error_code=None if purge_result.ok else purge_result.error_code or "api_error",
            urls_purged=len(purge_list.urls),
            purged=list(purge_list.labels) if purge_result.ok else None,
            zone_id=client.zone_id,
            zone_id_short=client.zone_id_short,
            ray_ids=list(purge_result.ray_ids),
        )

    async def _record_empty(
        self, counters: _RunCounters, started_at: float
    ) -> PublishBatchResult:
        message = "No pending products to publish."
        entry = await self._activity_log.record(
            type="sitemap",
            requested=counters.requested,
            processed=0,
            success=0,
            skipped=0,
            errors=0,
            duration_ms=_elapsed_ms(started_at),
            message=message,
            metadata={"requested": counters.requested},
        )
        return PublishBatchResult(
            ok=True,
            requested=counters.requested,
            processed=0,
            success=0,
            skipped=0,
            errors=0,
            duration_ms=entry.duration_ms,
            finished_at=entry.finished_at,
            message=message,
            activity_id=entry.id,
        )

    async def _record_failure(
        self,
        counters: _RunCounters,
        started_at: float,
        error: Exception,
    ) -> PublishBatchResult:
        if isinstance(error, SQLAlchemyError):
            _log_sql_error(error, kind=PublishingKind.SITEMAP.value)
            error_code = "sql_error"
        else:
            _logger.error(
                "publish_batch_failed",
                extra={"kind": PublishingKind.SITEMAP.value},
                exc_info=error,
            )
            error_code = "sitemap_batch_failed"

        counters.success = 0
        counters.skipped = 0
        counters.errors = counters.errors or 1
        message = "Sitemap publish batch failed."
        entry = await self._activity_log.record(
            type="sitemap",
            requested=counters.requested,
            processed=counters.processed,
            success=counters.success,
            skipped=counters.skipped,
            errors=counters.errors,
            duration_ms=_elapsed_ms(started_at),
            message=message,
            metadata={
                "slugs_total": len(counters.slugs),
                "error": _error_details(error),
            },
        )
        return PublishBatchResult(
            ok=False,
            requested=counters.requested,
            processed=counters.processed,
            success=counters.success,
            skipped=counters.skipped,
            errors=counters.errors,
            duration_ms=entry.duration_ms,
            finished_at=entry.finished_at,
            message=message,
            activity_id=entry.id,
            error_code=error_code,
            error_details=_error_details(error),
        )


def _to_search_object(product: Product) -> dict[str, Any]:
    return {
        "objectID": product.slug,
        "slug": product.slug,
        "title": product.title,
        "product_id": str(product.id),
        "last_update_at": format_timestamp(product.last_update_at)
        if product.last_update_at is not None
        else None,
        "url": f"{PRODUCT_PATH_PREFIX}{product.slug}",
        "is_published": 1,
    }


class AlgoliaPublishBatchService:
    """Push recently updated published products that the search index lacks.

    Candidates are the newest published products, ``batch size x factor`` of
    them capped at ``max_candidates``. Existing objectIDs are skipped; up to
    ``batch size`` missing products are pushed. Products that disappear between
    the candidate read and the product read become error items.
    """

    def __init__(
        self,
        *,
        lock: PublishingLockService,
        activity_log: PublishingActivityLog,
        algolia_client: AlgoliaClient | None,
        session_factory: SessionScopeFactory | None = None,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        candidate_factor: int = DEFAULT_CANDIDATE_FACTOR,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
    ) -> None:
        if session_factory is None:
            from catalog_publishing.database import session_scope

            session_factory = session_scope

        self._lock = lock
        self._activity_log = activity_log
        self._algolia_client = algolia_client
        self._session_factory = session_factory
        self._default_batch_size = default_batch_size
        self._max_batch_size = max_batch_size
        self._candidate_factor = candidate_factor
        self._max_candidates = max_candidates

    async def run(self, *, batch_size: object = None) -> PublishBatchResult:
        """Run one batch.

        Raises ``PublishingJobInProgressError`` on contention and
        ``MissingConfigurationError`` when the search index is not configured.
        """

        with self._lock.hold(PublishingKind.ALGOLIA):
            client = self._algolia_client
            if client is None:
                raise MissingConfigurationError("Algolia")
            return await self._run_locked(client, batch_size=batch_size)

    async def _run_locked(
        self,
        client: AlgoliaClient,
        *,
        batch_size: object,
    ) -> PublishBatchResult:
        started_at = perf_counter()
        counters = _RunCounters(
            requested=clamp_batch_size(
                batch_size,
                default=self._default_batch_size,
                maximum=self._max_batch_size,
            )
        )
        candidate_count = 0
        error_items: list[PublishingActivityErrorItem] = []

        try:
            candidate_slugs = await self._select_candidates(
                min(counters.requested * self._candidate_factor, self._max_candidates)
            )
            candidate_count = len(candidate_slugs)
            if not candidate_slugs:
                return await self._record_noop(
                    counters,
                    started_at,
                    message="No published products to evaluate.",
                    candidate_count=0,
                    already_indexed=0,
                )

            existing_ids = await client.get_existing_object_ids(candidate_slugs)
            already_indexed = sum(1 for slug in candidate_slugs if slug in existing_ids)
            missing_slugs = [
                slug for slug in candidate_slugs if slug not in existing_ids
            ][: counters.requested]
            if not missing_slugs:
                return await self._record_noop(
                    counters,
                    started_at,
                    message="Search index is up to date.",
                    candidate_count=candidate_count,
                    already_indexed=candidate_count,
                )

            counters.processed = len(missing_slugs)
            products = await self._fetch_products(missing_slugs)
            objects: list[dict[str, Any]] = []
            for slug in missing_slugs:
                product = products.get(slug)
                if product is None:
                    error_items.append(
                        PublishingActivityErrorItem(
                            slug=slug,
                            message="Product not found or no longer published",
                            code="product_not_found",
                        )
                    )
                    continue
                objects.append(_to_search_object(product))
                counters.slugs.append(slug)

            counters.errors = len(error_items)
            if not objects:
                return await self._record_failure(
                    counters,
                    started_at,
                    error_code="no_valid_products",
                    message="No valid products to push to the search index.",
                    candidate_count=candidate_count,
                    error_items=error_items,
                    error_details=None,
                )

            await client.save_objects(objects)
        except Exception as error:
            if isinstance(error, SQLAlchemyError):
                _log_sql_error(error, kind=PublishingKind.ALGOLIA.value)
                error_code = "sql_error"
            elif isinstance(error, AlgoliaError):
                _logger.error(
                    "publish_batch_failed",
                    extra={"kind": PublishingKind.ALGOLIA.value, "error_code": error.code},
                    exc_info=error,
                )
                error_code = error.code
            else:
                _logger.error(
                    "publish_batch_failed",
                    extra={"kind": PublishingKind.ALGOLIA.value},
                    exc_info=error,
                )
                error_code = "algolia_batch_failed"
            counters.slugs = []
            counters.errors = max(counters.errors, 1)
            return await self._record_failure(
                counters,
                started_at,
                error_code=error_code,
                message="Search index publish batch failed.",
                candidate_count=candidate_count,
                error_items=error_items,
                error_details=_error_details(error),
            )

        counters.success = len(objects)
        counters.skipped = counters.processed - counters.success - counters.errors
        message = f"Pushed {counters.success} products to the search index."
        entry = await self._activity_log.record(
            type="algolia",
            requested=counters.requested,
            processed=counters.processed,
            success=counters.success,
            skipped=counters.skipped,
            errors=counters.errors,
            duration_ms=_elapsed_ms(started_at),
            message=message,
            metadata={
                "candidate_count": candidate_count,
                "already_indexed": already_indexed,
                "missing_slugs_total": counters.processed,
                "pushed_slugs_total": counters.success,
                "slugs_preview": counters.slugs[:SLUG_PREVIEW_SIZE],
            },
            error_items=error_items,
        )
        _logger.info(
            "publish_batch_completed",
            extra={
                "kind": PublishingKind.ALGOLIA.value,
                "activity_id": entry.id,
                "duration_ms": entry.duration_ms,
            },
        )
        return PublishBatchResult(
            ok=True,
            requested=counters.requested,
            processed=counters.processed,
            success=counters.success,
            skipped=counters.skipped,
            errors=counters.errors,
            duration_ms=entry.duration_ms,
            finished_at=entry.finished_at,
            message=message,
            slugs=list(counters.slugs),
            candidate_count=candidate_count,
            activity_id=entry.id,
        )

    async def _select_candidates(self, limit: int) -> list[str]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(Product.slug)
                    .where(Product.is_published.is_(True))
                    .order_by(Product.last_update_at.desc(), Product.id.desc())
                    .limit(limit)
                )
            ).all()
        slugs: list[str] = []
        for row in rows:
            slug = _normalize_slug(row[0])
            if slug is not None:
                slugs.append(slug)
        return slugs

    async def _fetch_products(self, slugs: Sequence[str]) -> dict[str, Product]:
        async with self._session_factory() as session:
            products = (
                await session.scalars(
                    select(Product)
                    .where(Product.slug.in_(slugs))
                    .where(Product.is_published.is_(True))
                )
            ).all()
        return {product.slug: product for product in products}

    async def _record_noop(
        self,
        counters: _RunCounters,
        started_at: float,
        *,
        message: str,
        candidate_count: int,
        already_indexed: int,
    ) -> PublishBatchResult:
        entry = await self._activity_log.record(
            type="algolia",
            requested=counters.requested,
            processed=0,
            success=0,
            skipped=0,
            errors=0,
            duration_ms=_elapsed_ms(started_at),
            message=message,
            metadata={
                "requested": counters.requested,
                "candidate_count": candidate_count,
                "already_indexed": already_indexed,
            },
        )
        return PublishBatchResult(
            ok=True,
            requested=counters.requested,
            processed=0,
            success=0,
            skipped=0,
            errors=0,
            duration_ms=entry.duration_ms,
            finished_at=entry.finished_at,
            message=message,
            candidate_count=candidate_count,
            activity_id=entry.id,
        )

    async def _record_failure(
        self,
        counters: _RunCounters,
        started_at: float,
        *,
        error_code: str,
        message: str,
        candidate_count: int,
        error_items: list[PublishingActivityErrorItem],
        error_details: dict[str, Any] | None,
    ) -> PublishBatchResult:
        entry = await self._activity_log.record(
            type="algolia",
            requested=counters.requested,
            processed=counters.processed,
            success=0,
            skipped=0,
            errors=counters.errors,
            duration_ms=_elapsed_ms(started_at),
            message=message,
            metadata={
                "candidate_count": candidate_count,
                "error_code": error_code,
                "error": error_details,
            },
            error_items=error_items,
        )
        return PublishBatchResult(
            ok=False,
            requested=counters.requested,
            processed=counters.processed,
            success=0,
            skipped=0,
            errors=counters.errors,
            duration_ms=entry.duration_ms,
            finished_at=entry.finished_at,
            message=message,
            candidate_count=candidate_count,
            activity_id=entry.id,
            error_code=error_code,
            error_details=error_details,
        )


__all__ = [
    "AlgoliaPublishBatchService",
    "DEFAULT_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "MissingConfigurationError",
    "PublishBatchResult",
    "SitemapPublishBatchService",
    "clamp_batch_size",
    "job_in_progress_result",
]
