"""Render sitemap index and URL-set documents from paginated records."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Final
from urllib.parse import quote, urlsplit

from lxml import etree  # type: ignore[import-untyped]

from catalog_publishing.utils.timestamps import format_timestamp, parse_timestamp

SITEMAP_NAMESPACE: Final[str] = "http://www.sitemaps.org/schemas/sitemap/0.9"
PRODUCT_PATH_PREFIX: Final[str] = "/p/"
BLOG_POST_PATH_PREFIX: Final[str] = "/blog/"
BLOG_CATEGORY_PATH_PREFIX: Final[str] = "/bc/"
_SLUG_SAFE_CHARACTERS: Final[str] = "/-_.~!$&'()*+,;=:@"

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SitemapRecord:
    """One published row destined for a sitemap page."""

    id: int | str | None
    slug: str
    lastmod: datetime | str | None = None


@dataclass(slots=True, frozen=True)
class SitemapUrlEntry:
    loc: str
    lastmod: str | None = None


@dataclass(slots=True, frozen=True)
class SitemapIndexEntry:
    loc: str
    lastmod: str | None = None


def is_absolute_http_url(url: str) -> bool:
    parsed_url = urlsplit(url)
    return parsed_url.scheme in {"http", "https"} and bool(parsed_url.netloc)


def build_page_url(site_url: str, path_prefix: str, slug: str) -> str | None:
    """Return the absolute URL for ``slug`` or ``None`` when it cannot be built."""

    trimmed_slug = slug.strip() if isinstance(slug, str) else ""
    if not trimmed_slug:
        return None

    url = f"{site_url.rstrip('/')}{path_prefix}{quote(trimmed_slug, safe=_SLUG_SAFE_CHARACTERS)}"
    if not is_absolute_http_url(url):
        return None
    return url


def resolve_last_modified(record: SitemapRecord) -> str | None:
    parsed = parse_timestamp(record.lastmod)
    if parsed is None:
        return None
    return format_timestamp(parsed)


def compute_chunk_last_modified(records: Iterable[SitemapRecord]) -> str | None:
    """Return the latest valid timestamp across ``records``.

    Unparseable timestamps are ignored; ``None`` means no record had one.
    """

    latest: datetime | None = None
    for record in records:
        parsed = parse_timestamp(record.lastmod)
        if parsed is None:
            continue
        if latest is None or parsed > latest:
            latest = parsed

    if latest is None:
        return None
    return format_timestamp(latest)


def _new_root(tag_name: str) -> etree._Element:
    return etree.Element(f"{{{SITEMAP_NAMESPACE}}}{tag_name}", nsmap={None: SITEMAP_NAMESPACE})


def _append_entry(
    root: etree._Element,
    *,
    tag_name: str,
    loc: str,
    lastmod: str | None,
) -> bool:
    element = etree.SubElement(root, f"{{{SITEMAP_NAMESPACE}}}{tag_name}")
    try:
        etree.SubElement(element, f"{{{SITEMAP_NAMESPACE}}}loc").text = loc
        if lastmod:
            etree.SubElement(element, f"{{{SITEMAP_NAMESPACE}}}lastmod").text = lastmod
    except ValueError:
        root.remove(element)
        logger.warning("Skipping sitemap entry with XML-incompatible value: %r", loc)
        return False
    return True


def _serialize(root: etree._Element) -> str:
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        pretty_print=True,
    ).decode("utf-8")


def render_urlset_xml(entries: Iterable[SitemapUrlEntry]) -> str:
    """Render a ``<urlset>``; ``lastmod`` is omitted for entries without one."""

    root = _new_root("urlset")
    for entry in entries:
        _append_entry(root, tag_name="url", loc=entry.loc, lastmod=entry.lastmod)
    return _serialize(root)


def render_sitemap_xml(
    site_url: str,
    records: Sequence[SitemapRecord],
    *,
    path_prefix: str = PRODUCT_PATH_PREFIX,
    request_id: str | None = None,
) -> str:
    """Render one sitemap page of records, skipping rows with unusable slugs."""

    entries: list[SitemapUrlEntry] = []
    for record in records:
        loc = build_page_url(site_url, path_prefix, record.slug)
        if loc is None:
            logger.warning(
                "sitemap_record_skipped",
                extra={"request_id": request_id, "record_id": record.id},
            )
            continue
        entries.append(SitemapUrlEntry(loc=loc, lastmod=resolve_last_modified(record)))

    return render_urlset_xml(entries)


def render_sitemap_index_xml(entries: Iterable[SitemapIndexEntry]) -> str:
    root = _new_root("sitemapindex")
    for entry in entries:
        _append_entry(root, tag_name="sitemap", loc=entry.loc, lastmod=entry.lastmod)
    return _serialize(root)


__all__ = [
    "BLOG_CATEGORY_PATH_PREFIX",
    "BLOG_POST_PATH_PREFIX",
    "PRODUCT_PATH_PREFIX",
    "SITEMAP_NAMESPACE",
    "SitemapIndexEntry",
    "SitemapRecord",
    "SitemapUrlEntry",
    "build_page_url",
    "compute_chunk_last_modified",
    "is_absolute_http_url",
    "render_sitemap_index_xml",
    "render_sitemap_xml",
    "render_urlset_xml",
    "resolve_last_modified",
]
