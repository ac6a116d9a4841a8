"""Public sitemap routes served from the TTL cache or rendered on demand."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import logging
import re
from time import perf_counter
from typing import Final

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from catalog_publishing.api.dependencies import (
    get_app_settings,
    get_optional_site_url,
    get_request_id,
    get_sitemap_cache,
    get_sitemap_collections,
)
from catalog_publishing.config import Settings
from catalog_publishing.services.sitemap_cache import SitemapCache
from catalog_publishing.services.sitemap_collections import (
    SitemapCollectionService,
    page_offset_in_range,
)
from catalog_publishing.services.sitemap_renderer import (
    BLOG_CATEGORY_PATH_PREFIX,
    BLOG_POST_PATH_PREFIX,
    PRODUCT_PATH_PREFIX,
    SitemapIndexEntry,
    SitemapUrlEntry,
    build_page_url,
    compute_chunk_last_modified,
    render_sitemap_index_xml,
    render_sitemap_xml,
    render_urlset_xml,
    resolve_last_modified,
)
from catalog_publishing.utils.timestamps import format_timestamp

SITEMAP_MEDIA_TYPE: Final[str] = "application/xml; charset=utf-8"
SITEMAP_CACHE_CONTROL: Final[str] = "public, max-age=300"
STATIC_SITEMAP_PATH: Final[str] = "/sitemaps/static.xml"
BLOG_CATEGORIES_SITEMAP_PATH: Final[str] = "/sitemaps/blog-categories.xml"
_PRODUCT_PAGE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^sitemap-(\d+)\.xml$", re.IGNORECASE
)
_BLOG_PAGE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^blog-(\d+)\.xml$", re.IGNORECASE)

router = APIRouter(tags=["sitemaps"])

_logger = logging.getLogger("catalog_publishing.sitemap.routes")


def _xml_response(xml: str) -> Response:
    return Response(
        content=xml,
        media_type=SITEMAP_MEDIA_TYPE,
        headers={"Cache-Control": SITEMAP_CACHE_CONTROL},
    )


def _not_found() -> PlainTextResponse:
    return PlainTextResponse("Not Found", status_code=404)


def _error_response(error_code: str = "sitemap_error") -> JSONResponse:
    return JSONResponse({"error": error_code}, status_code=500)


def parse_sitemap_page(name: str) -> tuple[str, int] | None:
    """Map ``sitemap-N.xml`` / ``blog-N.xml`` to ``(collection, page)``."""

    for collection, pattern in (
        ("products", _PRODUCT_PAGE_PATTERN),
        ("blog_posts", _BLOG_PAGE_PATTERN),
    ):
        match = pattern.match(name)
        if match is None:
            continue
        page = int(match.group(1))
        return (collection, page) if page > 0 else None
    return None


async def _render_index(
    site_url: str,
    collections: SitemapCollectionService,
    *,
    page_size: int,
    request_id: str | None,
) -> str:
    products, blog_posts = await asyncio.gather(
        collections.collect_products(page_size=page_size, request_id=request_id),
        collections.collect_blog_posts(page_size=page_size, request_id=request_id),
    )

    entries = [
        SitemapIndexEntry(
            loc=f"{site_url}/sitemaps/sitemap-{page}.xml",
            lastmod=compute_chunk_last_modified(records),
        )
        for page, records in enumerate(products.batches, start=1)
    ]
    entries.extend(
        SitemapIndexEntry(
            loc=f"{site_url}/sitemaps/blog-{page}.xml",
            lastmod=compute_chunk_last_modified(records),
        )
        for page, records in enumerate(blog_posts.batches, start=1)
    )
    entries.append(SitemapIndexEntry(loc=f"{site_url}{STATIC_SITEMAP_PATH}"))
    entries.append(SitemapIndexEntry(loc=f"{site_url}{BLOG_CATEGORIES_SITEMAP_PATH}"))

    _logger.info(
        "sitemap_index_generated",
        extra={
            "request_id": request_id,
            "site_url": site_url,
            "product_pages": products.page_count,
            "blog_pages": blog_posts.page_count,
            "total": products.total_count + blog_posts.total_count,
        },
    )
    return render_sitemap_index_xml(entries)


@router.get("/sitemap.xml", include_in_schema=False)
@router.get("/sitemap_index.xml", include_in_schema=False)
async def sitemap_index(
    request: Request,
    site_url: str | None = Depends(get_optional_site_url),
    cache: SitemapCache = Depends(get_sitemap_cache),
    collections: SitemapCollectionService = Depends(get_sitemap_collections),
    settings: Settings = Depends(get_app_settings),
    request_id: str | None = Depends(get_request_id),
) -> Response:
    if site_url is None:
        _logger.error("site_url_unresolved", extra={"request_id": request_id})
        return _error_response()

    path = request.url.path
    cached = await cache.get(site_url, path, request_id=request_id)
    if cached is not None:
        return _xml_response(cached)

    started_at = perf_counter()
    try:
        xml = await _render_index(
            site_url,
            collections,
            page_size=settings.SITEMAP_PAGE_SIZE,
            request_id=request_id,
        )
    except Exception:
        _logger.exception(
            "sitemap_index_failed",
            extra={
                "request_id": request_id,
                "duration_ms": round((perf_counter() - started_at) * 1000, 2),
            },
        )
        return _error_response()

    await cache.set(site_url, path, xml)
    return _xml_response(xml)


@router.get(STATIC_SITEMAP_PATH, include_in_schema=False)
async def static_sitemap(
    site_url: str | None = Depends(get_optional_site_url),
    cache: SitemapCache = Depends(get_sitemap_cache),
    request_id: str | None = Depends(get_request_id),
) -> Response:
    if site_url is None:
        return _error_response()

    cached = await cache.get(site_url, STATIC_SITEMAP_PATH, request_id=request_id)
    if cached is not None:
        return _xml_response(cached)

    xml = render_urlset_xml(
        [
            SitemapUrlEntry(
                loc=f"{site_url}/categories",
                lastmod=format_timestamp(datetime.now(UTC)),
            )
        ]
    )
    await cache.set(site_url, STATIC_SITEMAP_PATH, xml)
    return _xml_response(xml)


@router.get(BLOG_CATEGORIES_SITEMAP_PATH, include_in_schema=False)
async def blog_categories_sitemap(
    site_url: str | None = Depends(get_optional_site_url),
    cache: SitemapCache = Depends(get_sitemap_cache),
    collections: SitemapCollectionService = Depends(get_sitemap_collections),
    request_id: str | None = Depends(get_request_id),
) -> Response:
    if site_url is None:
        return _error_response("blog_categories_sitemap_error")

    cached = await cache.get(site_url, BLOG_CATEGORIES_SITEMAP_PATH, request_id=request_id)
    if cached is not None:
        return _xml_response(cached)

    try:
        records = await collections.fetch_blog_category_records()
    except Exception:
        _logger.exception("blog_categories_sitemap_failed", extra={"request_id": request_id})
        return _error_response("blog_categories_sitemap_error")

    entries: list[SitemapUrlEntry] = []
    for record in records:
        loc = build_page_url(site_url, BLOG_CATEGORY_PATH_PREFIX, record.slug)
        if loc is None:
            continue
        entries.append(SitemapUrlEntry(loc=loc, lastmod=resolve_last_modified(record)))

    xml = render_urlset_xml(entries)
    await cache.set(site_url, BLOG_CATEGORIES_SITEMAP_PATH, xml)
    return _xml_response(xml)


@router.get("/sitemaps/{sitemap}", include_in_schema=False)
async def sitemap_page(
    sitemap: str,
    site_url: str | None = Depends(get_optional_site_url),
    cache: SitemapCache = Depends(get_sitemap_cache),
    collections: SitemapCollectionService = Depends(get_sitemap_collections),
    settings: Settings = Depends(get_app_settings),
    request_id: str | None = Depends(get_request_id),
) -> Response:
    parsed = parse_sitemap_page(sitemap)
    if parsed is None:
        return _not_found()
    if site_url is None:
        return _error_response()

    collection, page = parsed
    if not page_offset_in_range(page, settings.SITEMAP_PAGE_SIZE):
        return _not_found()

    path = f"/sitemaps/{sitemap}"
    cached = await cache.get(site_url, path, request_id=request_id)
    if cached is not None:
        return _xml_response(cached)

    started_at = perf_counter()
    log_context = {"request_id": request_id, "collection": collection, "page": page}
    try:
        if collection == "products":
            records = await collections.fetch_products_page(
                page, settings.SITEMAP_PAGE_SIZE, request_id=request_id
            )
            path_prefix = PRODUCT_PATH_PREFIX
        else:
            records = await collections.fetch_blog_posts_page(
                page, settings.SITEMAP_PAGE_SIZE, request_id=request_id
            )
            path_prefix = BLOG_POST_PATH_PREFIX

        if not records:
            _logger.warning("sitemap_page_empty", extra=log_context)
            return _not_found()

        xml = render_sitemap_xml(
            site_url, records, path_prefix=path_prefix, request_id=request_id
        )
    except Exception:
        _logger.exception(
            "sitemap_page_failed",
            extra={
                **log_context,
                "duration_ms": round((perf_counter() - started_at) * 1000, 2),
            },
        )
        return _error_response()

    await cache.set(site_url, path, xml)
    _logger.info(
        "sitemap_page_generated",
        extra={
            **log_context,
            "urls": len(records),
            "duration_ms": round((perf_counter() - started_at) * 1000, 2),
        },
    )
    return _xml_response(xml)


__all__ = ["parse_sitemap_page", "router"]
