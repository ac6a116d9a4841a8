"""Offset-paginated readers over published catalog rows for sitemap chunking."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
import logging
from typing import Any, Final

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_publishing.models import BlogPost, Category, CategoryType, Product
from catalog_publishing.services.sitemap_renderer import SitemapRecord

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

SITEMAP_PAGE_SIZE: Final[int] = 45_000
MAX_SITEMAP_PAGE_SIZE: Final[int] = 50_000
# Largest OFFSET a signed 64-bit SQL integer can hold.
MAX_PAGE_OFFSET: Final[int] = 2**63 - 1

logger = logging.getLogger("catalog_publishing.sitemap.collections")


@dataclass(slots=True, frozen=True)
class SitemapCollection:
    """Every non-empty page of a published collection, in page order."""

    batches: list[list[SitemapRecord]] = field(default_factory=list)
    total_count: int = 0

    @property
    def page_count(self) -> int:
        return len(self.batches)


def page_offset_in_range(page: int, page_size: int) -> bool:
    return (page - 1) * page_size <= MAX_PAGE_OFFSET


def _validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError("page must be 1 or greater")
    if page_size < 1 or page_size > MAX_SITEMAP_PAGE_SIZE:
        raise ValueError(
            f"page_size must be between 1 and {MAX_SITEMAP_PAGE_SIZE}"
        )
    if not page_offset_in_range(page, page_size):
        raise ValueError("page is beyond the largest addressable offset")


def _published_products_statement() -> Select[Any]:
    return (
        select(
            Product.id,
            Product.slug,
            func.coalesce(Product.last_update_at, Product.updated_at),
        )
        .where(Product.is_published.is_(True))
        .order_by(Product.id.asc())
    )


def _published_blog_posts_statement() -> Select[Any]:
    return (
        select(
            BlogPost.id,
            BlogPost.slug,
            func.coalesce(BlogPost.updated_at, BlogPost.published_at),
        )
        .where(BlogPost.is_published.is_(True))
        .order_by(BlogPost.id.asc())
    )


class SitemapCollectionService:
    """Page through published products, blog posts and blog categories.

    Pages are ordered by ascending id so page ``N`` always covers rows
    ``[(N - 1) * page_size, N * page_size)`` of the published set. An empty
    page marks the end of the collection.
    """

    def __init__(self, *, session_factory: SessionScopeFactory | None = None) -> None:
        if session_factory is None:
            from catalog_publishing.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory

    async def fetch_products_page(
        self,
        page: int,
        page_size: int = SITEMAP_PAGE_SIZE,
        *,
        request_id: str | None = None,
    ) -> list[SitemapRecord]:
        return await self._fetch_page(
            _published_products_statement(),
            page=page,
            page_size=page_size,
            collection="products",
            request_id=request_id,
        )

    async def fetch_blog_posts_page(
        self,
        page: int,
        page_size: int = SITEMAP_PAGE_SIZE,
        *,
        request_id: str | None = None,
    ) -> list[SitemapRecord]:
        return await self._fetch_page(
            _published_blog_posts_statement(),
            page=page,
            page_size=page_size,
            collection="blog_posts",
            request_id=request_id,
        )

    async def collect_products(
        self,
        *,
        page_size: int = SITEMAP_PAGE_SIZE,
        request_id: str | None = None,
    ) -> SitemapCollection:
        return await self._collect(
            self.fetch_products_page, page_size=page_size, request_id=request_id
        )

    async def collect_blog_posts(
        self,
        *,
        page_size: int = SITEMAP_PAGE_SIZE,
        request_id: str | None = None,
    ) -> SitemapCollection:
        return await self._collect(
            self.fetch_blog_posts_page, page_size=page_size, request_id=request_id
        )

    async def count_published_products(self) -> int:
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count(Product.id)).where(Product.is_published.is_(True))
            )
        return int(total or 0)

    async def fetch_blog_category_records(self) -> list[SitemapRecord]:
        statement = (
            select(
                Category.id,
                Category.slug,
                func.coalesce(Category.last_update_at, Category.updated_at),
            )
            .where(Category.is_published.is_(True))
            .where(Category.type == CategoryType.BLOG)
            .order_by(Category.id.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(statement)).all()
        return [SitemapRecord(id=row[0], slug=row[1], lastmod=row[2]) for row in rows]

    async def _fetch_page(
        self,
        statement: Select[Any],
        *,
        page: int,
        page_size: int,
        collection: str,
        request_id: str | None,
    ) -> list[SitemapRecord]:
        _validate_page(page, page_size)

        paged_statement = statement.offset((page - 1) * page_size).limit(page_size)
        async with self._session_factory() as session:
            rows = (await session.execute(paged_statement)).all()

        logger.debug(
            "sitemap_page_fetched",
            extra={
                "request_id": request_id,
                "collection": collection,
                "page": page,
                "rows": len(rows),
            },
        )
        return [SitemapRecord(id=row[0], slug=row[1], lastmod=row[2]) for row in rows]

    @staticmethod
    async def _collect(
        fetch_page: Callable[..., Any],
        *,
        page_size: int,
        request_id: str | None,
    ) -> SitemapCollection:
        batches: list[list[SitemapRecord]] = []
        total_count = 0
        page = 1
        while True:
            records: list[SitemapRecord] = await fetch_page(
                page, page_size, request_id=request_id
            )
            if not records:
                break

            batches.append(records)
            total_count += len(records)
            if len(records) < page_size:
                break
            page += 1

        return SitemapCollection(batches=batches, total_count=total_count)


__all__ = [
    "MAX_PAGE_OFFSET",
    "MAX_SITEMAP_PAGE_SIZE",
    "SITEMAP_PAGE_SIZE",
    "SitemapCollection",
    "SitemapCollectionService",
    "page_offset_in_range",
]
