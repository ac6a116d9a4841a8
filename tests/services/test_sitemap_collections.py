"""Tests for paginated sitemap collection reads."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog_publishing.models import Base, BlogPost, Category, CategoryType, Product
from catalog_publishing.services.sitemap_collections import (
    MAX_PAGE_OFFSET,
    SitemapCollectionService,
    page_offset_in_range,
)


@pytest.mark.asyncio
async def test_collections_page_published_rows_in_id_order(tmp_path: Path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'collections.sqlite'}"
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scoped_session() -> AsyncIterator[AsyncSession]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    updated = datetime(2025, 2, 1, 10, 0, tzinfo=UTC)
    async with scoped_session() as session:
        session.add_all(
            [
                Product(
                    slug=f"product-{index}",
                    is_published=index % 3 != 0,
                    last_update_at=updated,
                )
                for index in range(1, 9)
            ]
        )
        session.add_all(
            [
                BlogPost(slug="hello", is_published=True),
                BlogPost(slug="draft", is_published=False),
                Category(type=CategoryType.BLOG, slug="news", is_published=True),
                Category(type=CategoryType.PRODUCT, slug="shoes", is_published=True),
                Category(type=CategoryType.BLOG, slug="hidden", is_published=False),
            ]
        )

    service = SitemapCollectionService(session_factory=scoped_session)

    try:
        products = await service.collect_products(page_size=2)
        assert products.total_count == 6
        assert products.page_count == 3
        assert [record.slug for record in products.batches[0]] == ["product-1", "product-2"]
        assert [record.slug for record in products.batches[2]] == ["product-7", "product-8"]

        assert await service.fetch_products_page(4, 2) == []
        assert await service.count_published_products() == 6

        blog_posts = await service.collect_blog_posts(page_size=10)
        assert [record.slug for record in blog_posts.batches[0]] == ["hello"]
        assert blog_posts.batches[0][0].lastmod is not None

        categories = await service.fetch_blog_category_records()
        assert [record.slug for record in categories] == ["news"]

        with pytest.raises(ValueError):
            await service.fetch_products_page(0, 2)
        with pytest.raises(ValueError):
            await service.fetch_products_page(1, 50_001)
        with pytest.raises(ValueError):
            await service.fetch_products_page(99_999_999_999_999_999_999, 2)
        assert page_offset_in_range(MAX_PAGE_OFFSET // 2 + 1, 2) is True
        assert page_offset_in_range(MAX_PAGE_OFFSET // 2 + 2, 2) is False
    finally:
        await engine.dispose()
