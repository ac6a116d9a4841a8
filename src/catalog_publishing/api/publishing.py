"""Admin publishing routes: batch runs, activity ledger and overview."""

from __future__ import annotations

import csv
import io
import json
import logging
from typing import Any, Final

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError

from catalog_publishing.api.dependencies import (
    get_activity_log,
    get_algolia_client,
    get_app_settings,
    get_cloudflare_client,
    get_last_batch_store,
    get_optional_site_url,
    get_product_cache,
    get_publishing_lock,
    get_session_factory,
    get_sitemap_cache,
    require_admin,
)
from catalog_publishing.config import Settings
from catalog_publishing.models import Product
from catalog_publishing.schemas.publishing import (
    PublishBatchResponse,
    PublishingActivityListResponse,
    PublishingOverviewResponse,
    PublishingSearchIndexInfo,
    PublishingSiteCounts,
)
from catalog_publishing.services.algolia import AlgoliaClient, AlgoliaError
from catalog_publishing.services.cloudflare import CloudflareClient
from catalog_publishing.services.product_cache import ProductCache
from catalog_publishing.services.publish_batch import (
    AlgoliaPublishBatchService,
    MissingConfigurationError,
    PublishBatchResult,
    SitemapPublishBatchService,
    job_in_progress_result,
)
from catalog_publishing.services.publish_state import LastPublishedBatchStore
from catalog_publishing.services.publishing_activity import PublishingActivityLog
from catalog_publishing.services.publishing_lock import (
    PublishingJobInProgressError,
    PublishingKind,
    PublishingLockService,
)
from catalog_publishing.services.sitemap_cache import SitemapCache
from catalog_publishing.services.sitemap_collections import SessionScopeFactory

ERROR_CSV_HEADER: Final[tuple[str, ...]] = ("slug", "message", "code", "identifier")
_UPSTREAM_ERROR_CODES: Final[frozenset[str]] = frozenset(
    {
        "algolia_get_failed",
        "algolia_save_failed",
        "auth_failed",
        "index_not_found",
        "network_error",
    }
)

router = APIRouter(
    prefix="/api/admin/publishing",
    tags=["publishing"],
    dependencies=[Depends(require_admin)],
)

_logger = logging.getLogger("catalog_publishing.publishing.routes")


class InvalidPayloadError(ValueError):
    """Raised when a batch request body is JSON but not an object."""


async def read_batch_size(request: Request) -> object:
    """Return the requested batch size; unreadable bodies count as empty."""

    raw_body = await request.body()
    if not raw_body.strip():
        return None
    try:
        payload = json.loads(raw_body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Request body must be a JSON object")
    if "batchSize" in payload:
        return payload["batchSize"]
    return payload.get("batch_size")


def _status_for_result(result: PublishBatchResult) -> int:
    if result.ok:
        return status.HTTP_200_OK
    if result.error_code == PublishingJobInProgressError.error_code:
        return status.HTTP_429_TOO_MANY_REQUESTS
    if result.error_code == "timeout":
        return status.HTTP_504_GATEWAY_TIMEOUT
    if result.error_code in _UPSTREAM_ERROR_CODES:
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def batch_response(result: PublishBatchResult) -> JSONResponse:
    body = PublishBatchResponse.model_validate(result, from_attributes=True)
    return JSONResponse(
        body.model_dump(mode="json", exclude_none=True),
        status_code=_status_for_result(result),
    )


def _error_response(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error_code": error_code, "message": message},
        status_code=status_code,
    )


def get_sitemap_publish_service(
    lock: PublishingLockService = Depends(get_publishing_lock),
    activity_log: PublishingActivityLog = Depends(get_activity_log),
    sitemap_cache: SitemapCache = Depends(get_sitemap_cache),
    product_cache: ProductCache = Depends(get_product_cache),
    last_batch_store: LastPublishedBatchStore = Depends(get_last_batch_store),
    cloudflare_client: CloudflareClient | None = Depends(get_cloudflare_client),
    session_factory: SessionScopeFactory = Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> SitemapPublishBatchService:
    return SitemapPublishBatchService(
        lock=lock,
        activity_log=activity_log,
        sitemap_cache=sitemap_cache,
        product_cache=product_cache,
        last_batch_store=last_batch_store,
        cloudflare_client=cloudflare_client,
        session_factory=session_factory,
        default_batch_size=settings.PUBLISH_DEFAULT_BATCH_SIZE,
        max_batch_size=settings.PUBLISH_MAX_BATCH_SIZE,
        sitemap_page_size=settings.SITEMAP_PAGE_SIZE,
    )


def get_algolia_publish_service(
    lock: PublishingLockService = Depends(get_publishing_lock),
    activity_log: PublishingActivityLog = Depends(get_activity_log),
    algolia_client: AlgoliaClient | None = Depends(get_algolia_client),
    session_factory: SessionScopeFactory = Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> AlgoliaPublishBatchService:
    return AlgoliaPublishBatchService(
        lock=lock,
        activity_log=activity_log,
        algolia_client=algolia_client,
        session_factory=session_factory,
        default_batch_size=settings.PUBLISH_DEFAULT_BATCH_SIZE,
        max_batch_size=settings.PUBLISH_MAX_BATCH_SIZE,
        candidate_factor=settings.ALGOLIA_CANDIDATE_FACTOR,
        max_candidates=settings.ALGOLIA_MAX_CANDIDATES,
    )


@router.post("/sitemap", response_model=PublishBatchResponse)
async def publish_sitemap_batch(
    request: Request,
    service: SitemapPublishBatchService = Depends(get_sitemap_publish_service),
    site_url: str | None = Depends(get_optional_site_url),
) -> JSONResponse:
    try:
        batch_size = await read_batch_size(request)
    except InvalidPayloadError as error:
        return _error_response(status.HTTP_400_BAD_REQUEST, "invalid_payload", str(error))

    try:
        result = await service.run(batch_size=batch_size, site_url=site_url)
    except PublishingJobInProgressError:
        result = job_in_progress_result(PublishingKind.SITEMAP)
    return batch_response(result)


@router.post("/algolia", response_model=PublishBatchResponse)
async def publish_algolia_batch(
    request: Request,
    service: AlgoliaPublishBatchService = Depends(get_algolia_publish_service),
) -> JSONResponse:
    try:
        batch_size = await read_batch_size(request)
    except InvalidPayloadError as error:
        return _error_response(status.HTTP_400_BAD_REQUEST, "invalid_payload", str(error))

    try:
        result = await service.run(batch_size=batch_size)
    except PublishingJobInProgressError:
        result = job_in_progress_result(PublishingKind.ALGOLIA)
    except MissingConfigurationError as error:
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, error.error_code, str(error)
        )
    return batch_response(result)


@router.get("/activity", response_model=PublishingActivityListResponse)
async def list_publishing_activity(
    activity_log: PublishingActivityLog = Depends(get_activity_log),
) -> PublishingActivityListResponse:
    return PublishingActivityListResponse(ok=True, entries=await activity_log.list_entries())


def render_error_items_csv(rows: list[tuple[str, str, str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(ERROR_CSV_HEADER)
    writer.writerows(rows)
    return buffer.getvalue()


@router.get("/activity/{activity_id}/errors")
async def export_activity_errors(
    activity_id: str,
    activity_log: PublishingActivityLog = Depends(get_activity_log),
) -> Response:
    entry = await activity_log.get_by_id(activity_id)
    if entry is None:
        return JSONResponse({"ok": False, "error_code": "not_found"}, status_code=404)
    if not entry.error_items:
        return JSONResponse({"ok": False, "error_code": "no_errors"}, status_code=404)

    content = render_error_items_csv(
        [
            (
                item.slug or item.identifier or "",
                item.message or "",
                item.code or "",
                item.identifier or "",
            )
            for item in entry.error_items
        ]
    )
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="publishing-errors-{activity_id}.csv"',
            "Cache-Control": "no-store",
        },
    )


async def _search_index_info(client: AlgoliaClient | None) -> PublishingSearchIndexInfo:
    if client is None:
        return PublishingSearchIndexInfo(configured=False)

    info = PublishingSearchIndexInfo(configured=True, index_name=client.index_name)
    try:
        info.index_count = await client.get_index_entry_count()
    except AlgoliaError as error:
        _logger.warning("search_index_overview_failed", extra={"error_code": error.code})
        info.error_code = (
            error.code
            if error.code in {"timeout", "auth_failed", "index_not_found"}
            else "unknown_error"
        )
    return info


@router.get("/overview", response_model=PublishingOverviewResponse)
async def publishing_overview(
    session_factory: SessionScopeFactory = Depends(get_session_factory),
    algolia_client: AlgoliaClient | None = Depends(get_algolia_client),
    lock: PublishingLockService = Depends(get_publishing_lock),
) -> Any:
    locks = {kind.value: lock.is_active(kind) for kind in PublishingKind}
    try:
        async with session_factory() as session:
            row = (
                await session.execute(
                    select(
                        func.coalesce(
                            func.sum(case((Product.is_published.is_(True), 1), else_=0)), 0
                        ),
                        func.coalesce(
                            func.sum(case((Product.is_published.is_(False), 1), else_=0)), 0
                        ),
                    )
                )
            ).one()
    except SQLAlchemyError:
        _logger.exception("publishing_overview_failed", extra={"error_code": "overview_failed"})
        body = PublishingOverviewResponse(
            ok=False,
            site=PublishingSiteCounts(),
            algolia=PublishingSearchIndexInfo(configured=False),
            locks=locks,
            error_code="overview_failed",
        )
        return JSONResponse(body.model_dump(mode="json"), status_code=500)

    return PublishingOverviewResponse(
        ok=True,
        site=PublishingSiteCounts(published=int(row[0] or 0), unpublished=int(row[1] or 0)),
        algolia=await _search_index_info(algolia_client),
        locks=locks,
    )


__all__ = [
    "batch_response",
    "read_batch_size",
    "render_error_items_csv",
    "router",
]
