"""Admin CDN connectivity routes: status, test and manual purges."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from catalog_publishing.api.dependencies import (
    get_app_settings,
    get_cloudflare_client,
    get_last_batch_store,
    get_optional_site_url,
    get_sitemap_collections,
    require_admin,
)
from catalog_publishing.config import Settings
from catalog_publishing.services.cloudflare import (
    CloudflareClient,
    PurgeExecutionResult,
    abbreviate_zone_id,
    build_product_urls,
    build_sitemap_purge_list,
)
from catalog_publishing.services.publish_state import LastPublishedBatchStore
from catalog_publishing.services.sitemap_collections import SitemapCollectionService

router = APIRouter(
    prefix="/api/admin/connectivity/cloudflare",
    tags=["connectivity"],
    dependencies=[Depends(require_admin)],
)

_logger = logging.getLogger("catalog_publishing.cloudflare.routes")


def _missing_env(message: str = "Cloudflare credentials are not configured") -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error_code": "missing_env", "message": message},
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


def _upstream_failure(
    *,
    error_code: str | None,
    status_code: int | None,
    error_details: Any,
    extra_fields: dict[str, Any],
) -> JSONResponse:
    http_status = (
        status.HTTP_504_GATEWAY_TIMEOUT
        if error_code == "timeout"
        else status.HTTP_502_BAD_GATEWAY
    )
    return JSONResponse(
        {
            "ok": False,
            "error_code": error_code or "api_error",
            "error_details": error_details,
            "status": status_code,
            **extra_fields,
        },
        status_code=http_status,
    )


def _purge_failure(result: PurgeExecutionResult) -> JSONResponse:
    return _upstream_failure(
        error_code=result.error_code,
        status_code=result.status_code,
        error_details=result.error_details,
        extra_fields={"ray_ids": result.ray_ids},
    )


def _zone_fields(client: CloudflareClient) -> dict[str, str]:
    return {"zone_id": client.zone_id, "zone_id_short": client.zone_id_short}


@router.get("/status")
async def cloudflare_status(
    settings: Settings = Depends(get_app_settings),
    client: CloudflareClient | None = Depends(get_cloudflare_client),
) -> dict[str, Any]:
    zone_id = settings.CLOUDFLARE_ZONE_ID
    return {
        "ok": True,
        "configured": client is not None,
        "zone_id": zone_id,
        "zone_id_short": abbreviate_zone_id(zone_id) if zone_id else None,
    }


@router.post("/test", response_model=None)
async def cloudflare_test(
    client: CloudflareClient | None = Depends(get_cloudflare_client),
) -> dict[str, Any] | JSONResponse:
    if client is None:
        return _missing_env()

    result = await client.test_connection()
    if not result.ok:
        return _upstream_failure(
            error_code=result.error_code,
            status_code=result.status_code,
            error_details=result.error_details,
            extra_fields={"ray_id": result.ray_id},
        )

    zone_data = (result.body or {}).get("result")
    zone_name = zone_data.get("name") if isinstance(zone_data, dict) else None
    if not isinstance(zone_name, str):
        zone_name = None
    message = (
        f"Zone {zone_name} ({client.zone_id_short}) connected"
        if zone_name
        else f"Zone {client.zone_id_short} connected"
    )
    return {
        "ok": True,
        "latency_ms": result.duration_ms,
        **_zone_fields(client),
        "zone_name": zone_name,
        "ray_id": result.ray_id,
        "message": message,
    }


@router.post("/purge-sitemaps", response_model=None)
async def cloudflare_purge_sitemaps(
    client: CloudflareClient | None = Depends(get_cloudflare_client),
    site_url: str | None = Depends(get_optional_site_url),
    collections: SitemapCollectionService = Depends(get_sitemap_collections),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any] | JSONResponse:
    if client is None:
        return _missing_env()
    if site_url is None:
        return _missing_env("Unable to resolve site URL")

    published_count = await collections.count_published_products()
    page_count = -(-published_count // settings.SITEMAP_PAGE_SIZE)
    purge_list = build_sitemap_purge_list(site_url, page_count)
    result = await client.purge_files(purge_list.urls, label="sitemaps")
    if not result.ok:
        return _purge_failure(result)

    return {
        "ok": True,
        "latency_ms": result.duration_ms,
        **_zone_fields(client),
        "purged": purge_list.labels,
        "urls_purged": len(purge_list.urls),
        "ray_ids": result.ray_ids,
        "base_url": purge_list.base_url,
        "message": f"Purged: {', '.join(purge_list.labels)}",
    }


@router.post("/purge-last-batch", response_model=None)
async def cloudflare_purge_last_batch(
    client: CloudflareClient | None = Depends(get_cloudflare_client),
    site_url: str | None = Depends(get_optional_site_url),
    last_batch_store: LastPublishedBatchStore = Depends(get_last_batch_store),
) -> dict[str, Any] | JSONResponse:
    if client is None:
        return _missing_env()
    if site_url is None:
        return _missing_env("Unable to resolve site URL")

    batch = last_batch_store.get()
    urls, _ = build_product_urls(site_url, list(batch.slugs) if batch else [])
    if not urls:
        return JSONResponse(
            {"ok": False, "error_code": "no_last_batch"},
            status_code=status.HTTP_404_NOT_FOUND,
        )

    result = await client.purge_files(urls, label="last-batch")
    if not result.ok:
        return _purge_failure(result)

    _logger.info("cloudflare_last_batch_purged", extra={"site_url": site_url})
    return {
        "ok": True,
        "latency_ms": result.duration_ms,
        **_zone_fields(client),
        "urls_purged": len(urls),
        "ray_ids": result.ray_ids,
    }


@router.post("/purge-everything", response_model=None)
async def cloudflare_purge_everything(
    client: CloudflareClient | None = Depends(get_cloudflare_client),
) -> dict[str, Any] | JSONResponse:
    if client is None:
        return _missing_env()

    result = await client.purge_everything(label="everything")
    if not result.ok:
        return _purge_failure(result)

    return {
        "ok": True,
        "latency_ms": result.duration_ms,
        **_zone_fields(client),
        "ray_ids": result.ray_ids,
    }


__all__ = ["router"]
