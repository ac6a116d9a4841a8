"""Tests for the admin publishing routes."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.sqlite")
os.environ.setdefault("SECRET_KEY", "test-secret")

from catalog_publishing.api import publishing_router
from catalog_publishing.api.dependencies import _get_admin_token, get_session_factory
from catalog_publishing.config import Settings
from catalog_publishing.models import Base, Product
from catalog_publishing.schemas.publishing import PublishingActivityErrorItem
from catalog_publishing.services.algolia import AlgoliaError
from catalog_publishing.services.product_cache import ProductCache
from catalog_publishing.services.publish_state import LastPublishedBatchStore
from catalog_publishing.services.publishing_activity import PublishingActivityLog
from catalog_publishing.services.publishing_lock import PublishingKind, PublishingLockService
from catalog_publishing.services.sitemap_cache import InMemorySitemapCache

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
AUTH_HEADERS = {"Authorization": "Bearer test-admin-token"}


@dataclass
class _FakeAlgolia:
    existing: set[str] = field(default_factory=set)
    saved: list[dict[str, Any]] = field(default_factory=list)
    count_error: AlgoliaError | None = None
    index_name: str = "products"

    async def get_existing_object_ids(self, object_ids: Sequence[str]) -> set[str]:
        return {object_id for object_id in object_ids if object_id in self.existing}

    async def save_objects(self, objects: Sequence[dict[str, Any]]) -> None:
        self.saved.extend(objects)

    async def get_index_entry_count(self) -> int | None:
        if self.count_error is not None:
            raise self.count_error
        return len(self.existing) + len(self.saved)


@dataclass
class PublishingApiTestContext:
    app: FastAPI
    engine: AsyncEngine
    session_scope: SessionScopeFactory
    activity_log: PublishingActivityLog
    lock: PublishingLockService


async def _build_context(tmp_path: Path) -> PublishingApiTestContext:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'publishing-api.sqlite'}"
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

    async with scoped_session() as session:
        session.add_all(
            [
                Product(slug="live", title="Live", is_published=True),
                Product(slug="first", title="First"),
                Product(slug="second", title="Second"),
                Product(slug="third", title="Third"),
            ]
        )

    activity_log = PublishingActivityLog()
    lock = PublishingLockService()

    app = FastAPI()
    app.state.settings = Settings(
        DATABASE_URL=database_url,
        SECRET_KEY="test-admin-token",
        SITE_URL="https://shop.example.com",
    )
    app.state.sitemap_cache = InMemorySitemapCache()
    app.state.activity_log = activity_log
    app.state.publishing_lock = lock
    app.state.product_cache = ProductCache(session_factory=scoped_session)
    app.state.last_batch_store = LastPublishedBatchStore()
    app.state.cloudflare_client = None
    app.state.algolia_client = None
    app.include_router(publishing_router)
    app.dependency_overrides[get_session_factory] = lambda: scoped_session
    app.dependency_overrides[_get_admin_token] = lambda: "test-admin-token"

    return PublishingApiTestContext(
        app=app,
        engine=engine,
        session_scope=scoped_session,
        activity_log=activity_log,
        lock=lock,
    )


@pytest.mark.asyncio
async def test_publishing_endpoints_require_authorization(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            missing_auth_response = await client.post("/api/admin/publishing/sitemap")
            assert missing_auth_response.status_code == 401

            basic_auth_response = await client.get(
                "/api/admin/publishing/activity",
                headers={"Authorization": "Basic dXNlcjpwYXNz"},
            )
            assert basic_auth_response.status_code == 401

            invalid_auth_response = await client.get(
                "/api/admin/publishing/overview",
                headers={"Authorization": "Bearer wrong-token"},
            )
            assert invalid_auth_response.status_code == 403
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_sitemap_batch_endpoint_publishes_and_records_activity(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/admin/publishing/sitemap",
                json={"batchSize": 2},
                headers=AUTH_HEADERS,
            )
            assert response.status_code == 200
            payload = response.json()
            assert payload["ok"] is True
            assert payload["requested"] == 2
            assert payload["success"] == 2
            assert payload["slugs"] == ["first", "second"]
            assert payload["cloudflare"] == {"configured": False, "ok": False}
            assert "error_code" not in payload

            snake_case = await client.post(
                "/api/admin/publishing/sitemap",
                json={"batch_size": 5},
                headers=AUTH_HEADERS,
            )
            assert snake_case.json()["slugs"] == ["third"]

            malformed = await client.post(
                "/api/admin/publishing/sitemap",
                content=b"{not json",
                headers={**AUTH_HEADERS, "Content-Type": "application/json"},
            )
            assert malformed.status_code == 200
            assert malformed.json()["requested"] == 2000
            assert malformed.json()["message"] == "No pending products to publish."

            activity = await client.get("/api/admin/publishing/activity", headers=AUTH_HEADERS)
            assert activity.status_code == 200
            entries = activity.json()["entries"]
            assert [entry["id"] for entry in entries] == ["run-3", "run-2", "run-1"]
            assert entries[2]["type"] == "sitemap"
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_batch_endpoints_reject_non_object_bodies(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            for path in ("/api/admin/publishing/sitemap", "/api/admin/publishing/algolia"):
                response = await client.post(path, json=[1, 2], headers=AUTH_HEADERS)
                assert response.status_code == 400
                assert response.json()["error_code"] == "invalid_payload"

        assert await context.activity_log.list_entries() == []
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_batch_endpoint_reports_job_in_progress(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            with context.lock.hold(PublishingKind.SITEMAP):
                response = await client.post(
                    "/api/admin/publishing/sitemap", json={}, headers=AUTH_HEADERS
                )
                overview = await client.get(
                    "/api/admin/publishing/overview", headers=AUTH_HEADERS
                )

        assert response.status_code == 429
        payload = response.json()
        assert payload["ok"] is False
        assert payload["error_code"] == "job_in_progress"
        assert payload["processed"] == 0
        assert overview.json()["locks"] == {"sitemap": True, "algolia": False}
        assert await context.activity_log.list_entries() == []
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_algolia_batch_endpoint(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            unconfigured = await client.post(
                "/api/admin/publishing/algolia", json={"batchSize": 1}, headers=AUTH_HEADERS
            )
            assert unconfigured.status_code == 503
            assert unconfigured.json()["error_code"] == "missing_env"

            algolia = _FakeAlgolia()
            context.app.state.algolia_client = algolia
            response = await client.post(
                "/api/admin/publishing/algolia", json={"batchSize": 1}, headers=AUTH_HEADERS
            )

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] == 1
        assert payload["candidate_count"] == 1
        assert [item["objectID"] for item in algolia.saved] == ["live"]
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_activity_error_export(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    clean = await context.activity_log.record(
        type="sitemap",
        requested=1,
        processed=1,
        success=1,
        skipped=0,
        errors=0,
        duration_ms=1,
    )
    failed = await context.activity_log.record(
        type="algolia",
        requested=2,
        processed=2,
        success=1,
        skipped=0,
        errors=1,
        duration_ms=1,
        error_items=[
            PublishingActivityErrorItem(
                slug='say "hi"', message="Product not found", code="product_not_found"
            ),
        ],
    )

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            unknown = await client.get(
                "/api/admin/publishing/activity/run-99/errors", headers=AUTH_HEADERS
            )
            no_errors = await client.get(
                f"/api/admin/publishing/activity/{clean.id}/errors", headers=AUTH_HEADERS
            )
            export = await client.get(
                f"/api/admin/publishing/activity/{failed.id}/errors", headers=AUTH_HEADERS
            )

        assert unknown.status_code == 404
        assert unknown.json()["error_code"] == "not_found"
        assert no_errors.status_code == 404
        assert no_errors.json()["error_code"] == "no_errors"

        assert export.status_code == 200
        assert export.headers["content-type"] == "text/csv; charset=utf-8"
        assert export.headers["cache-control"] == "no-store"
        assert export.headers["content-disposition"] == (
            f'attachment; filename="publishing-errors-{failed.id}.csv"'
        )
        assert export.text == (
            '"slug","message","code","identifier"\n'
            '"say ""hi""","Product not found","product_not_found",""\n'
        )
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_overview_reports_counts_and_search_index(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            unconfigured = await client.get(
                "/api/admin/publishing/overview", headers=AUTH_HEADERS
            )

            context.app.state.algolia_client = _FakeAlgolia(existing={"live"})
            configured = await client.get("/api/admin/publishing/overview", headers=AUTH_HEADERS)

            context.app.state.algolia_client = _FakeAlgolia(
                count_error=AlgoliaError("nope", code="algolia_get_failed")
            )
            degraded = await client.get("/api/admin/publishing/overview", headers=AUTH_HEADERS)

        assert unconfigured.status_code == 200
        payload = unconfigured.json()
        assert payload["site"] == {"published": 1, "unpublished": 3}
        assert payload["algolia"]["configured"] is False
        assert payload["locks"] == {"sitemap": False, "algolia": False}

        assert configured.json()["algolia"]["index_count"] == 1
        assert configured.json()["algolia"]["index_name"] == "products"
        assert degraded.status_code == 200
        assert degraded.json()["algolia"]["error_code"] == "unknown_error"
    finally:
        await context.engine.dispose()
