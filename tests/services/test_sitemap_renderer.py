"""Tests for sitemap XML rendering helpers."""

from __future__ import annotations

from datetime import UTC, datetime

from lxml import etree  # type: ignore[import-untyped]

from catalog_publishing.services.sitemap_renderer import (
    BLOG_POST_PATH_PREFIX,
    SITEMAP_NAMESPACE,
    SitemapIndexEntry,
    SitemapRecord,
    build_page_url,
    compute_chunk_last_modified,
    render_sitemap_index_xml,
    render_sitemap_xml,
)

_NS = {"sm": SITEMAP_NAMESPACE}


def test_render_sitemap_xml_builds_absolute_product_urls() -> None:
    records = [
        SitemapRecord(id=1, slug="red-shoe", lastmod=datetime(2025, 3, 1, 8, 30, tzinfo=UTC)),
        SitemapRecord(id=2, slug="blue hat", lastmod=None),
    ]

    xml = render_sitemap_xml("https://shop.example.com", records)
    root = etree.fromstring(xml.encode("utf-8"))

    assert xml.startswith("<?xml version='1.0' encoding='UTF-8'?>")
    assert root.tag == f"{{{SITEMAP_NAMESPACE}}}urlset"
    locs = root.xpath("//sm:url/sm:loc/text()", namespaces=_NS)
    assert locs == [
        "https://shop.example.com/p/red-shoe",
        "https://shop.example.com/p/blue%20hat",
    ]
    lastmods = root.xpath("//sm:url/sm:lastmod/text()", namespaces=_NS)
    assert lastmods == ["2025-03-01T08:30:00.000Z"]


def test_render_sitemap_xml_skips_blank_slugs_and_escapes_markup() -> None:
    records = [
        SitemapRecord(id=1, slug="   "),
        SitemapRecord(id=2, slug="fish&chips"),
    ]

    xml = render_sitemap_xml(
        "https://shop.example.com", records, path_prefix=BLOG_POST_PATH_PREFIX
    )

    assert "fish&amp;chips" in xml
    assert xml.count("<url>") == 1
    assert "/blog/fish" in xml


def test_build_page_url_rejects_relative_site_urls() -> None:
    assert build_page_url("shop.example.com", "/p/", "item") is None
    assert build_page_url("https://shop.example.com/", "/p/", " item ") == (
        "https://shop.example.com/p/item"
    )


def test_compute_chunk_last_modified_ignores_unparseable_values() -> None:
    records = [
        SitemapRecord(id=1, slug="a", lastmod="not-a-date"),
        SitemapRecord(id=2, slug="b", lastmod="2025-01-02T00:00:00Z"),
        SitemapRecord(id=3, slug="c", lastmod=datetime(2024, 12, 31, tzinfo=UTC)),
    ]

    assert compute_chunk_last_modified(records) == "2025-01-02T00:00:00.000Z"
    assert compute_chunk_last_modified([SitemapRecord(id=4, slug="d")]) is None


def test_render_sitemap_index_xml_omits_missing_lastmod() -> None:
    xml = render_sitemap_index_xml(
        [
            SitemapIndexEntry(
                loc="https://shop.example.com/sitemaps/sitemap-1.xml",
                lastmod="2025-01-02T00:00:00.000Z",
            ),
            SitemapIndexEntry(loc="https://shop.example.com/sitemaps/static.xml"),
        ]
    )
    root = etree.fromstring(xml.encode("utf-8"))

    assert root.tag == f"{{{SITEMAP_NAMESPACE}}}sitemapindex"
    sitemaps = root.findall("sm:sitemap", namespaces=_NS)
    assert len(sitemaps) == 2
    assert sitemaps[0].find("sm:lastmod", namespaces=_NS) is not None
    assert sitemaps[1].find("sm:lastmod", namespaces=_NS) is None
