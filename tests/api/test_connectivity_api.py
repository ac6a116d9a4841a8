"""Tests for the admin Cloudflare connectivity routes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

import httpx
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

from catalog_publishing.api import connectivity_router
from catalog_publishing.api.dependencies import get_session_factory
from catalog_publishing.config import Settings
from catalog_publishing.models import Base, Product
from catalog_publishing.services.cloudflare import (
    CLOUDFLARE_API_BASE,
    CloudflareClient,
    CloudflareCredentials,
)
from catalog_publishing.services.publish_state import LastPublishedBatchStore

ZONE_ID = "0123456789abcdef0123456789abcdef"
AUTH_HEADERS = {"Authorization": "Bearer test-admin-token"}


@dataclass
class ConnectivityApiTestContext:
    app: FastAPI
    engine: AsyncEngine
    last_batch_store: LastPublishedBatchStore
    requests: list[tuple[str, str, dict[str, Any] | None]]


async def _build_context(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    *,
    configured: bool = True,
    status_code: int = 200,
    body: dict[str, Any] | None = None,
    timeout: bool = False,
) -> ConnectivityApiTestContext:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'connectivity-api.sqlite'}"
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
            [Product(slug=f"item-{index}", is_published=True) for index in range(1, 4)]
        )

    requests: list[tuple[str, str, dict[str, Any] | None]] = []
    original_request = httpx.AsyncClient.request

    async def fake_request(
        self: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        if not str(url).startswith(CLOUDFLARE_API_BASE):
            return await original_request(self, method, url, **kwargs)

        json = kwargs.get("json")
        requests.append((method, url, json))
        if timeout:
            raise httpx.ReadTimeout("slow", request=httpx.Request(method, url))
        return httpx.Response(
            status_code=status_code,
            request=httpx.Request(method, url),
            json=body if body is not None else {"success": True, "result": {"name": "shop.com"}},
            headers={"cf-ray": "ray-abc"},
        )

    monkeypatch.setattr(httpx.AsyncClient, "request", fake_request)

    last_batch_store = LastPublishedBatchStore()
    app = FastAPI()
    app.state.settings = Settings(
        DATABASE_URL=database_url,
        SECRET_KEY="test-admin-token",
        SITE_URL="https://shop.example.com",
        SITEMAP_PAGE_SIZE=2,
        CLOUDFLARE_ZONE_ID=ZONE_ID if configured else None,
        CLOUDFLARE_API_TOKEN="cf-token" if configured else None,
    )
    app.state.cloudflare_client = (
        CloudflareClient(CloudflareCredentials(zone_id=ZONE_ID, api_token="cf-token"))
        if configured
        else None
    )
    app.state.last_batch_store = last_batch_store
    app.include_router(connectivity_router)
    app.dependency_overrides[get_session_factory] = lambda: scoped_session

    return ConnectivityApiTestContext(
        app=app, engine=engine, last_batch_store=last_batch_store, requests=requests
    )


@pytest.mark.asyncio
async def test_unconfigured_cloudflare_reports_missing_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    context = await _build_context(tmp_path, monkeypatch, configured=False)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            status_response = await client.get(
                "/api/admin/connectivity/cloudflare/status", headers=AUTH_HEADERS
            )
            test_response = await client.post(
                "/api/admin/connectivity/cloudflare/test", headers=AUTH_HEADERS
            )
            unauthenticated = await client.post("/api/admin/connectivity/cloudflare/test")

        assert status_response.json() == {
            "ok": True,
            "configured": False,
            "zone_id": None,
            "zone_id_short": None,
        }
        assert test_response.status_code == 503
        assert test_response.json()["error_code"] == "missing_env"
        assert unauthenticated.status_code == 401
        assert context.requests == []
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_connection_test_reports_zone_name(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    context = await _build_context(tmp_path, monkeypatch)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/admin/connectivity/cloudflare/test", headers=AUTH_HEADERS
            )

        assert response.status_code == 200
        payload = response.json()
        assert payload["zone_name"] == "shop.com"
        assert payload["zone_id_short"] == "012345…cdef"
        assert payload["ray_id"] == "ray-abc"
        assert payload["message"] == "Zone shop.com (012345…cdef) connected"
        assert context.requests[0][:2] == (
            "GET",
            f"https://api.cloudflare.com/client/v4/zones/{ZONE_ID}",
        )
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_purge_sitemaps_uses_published_page_count(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    context = await _build_context(tmp_path, monkeypatch)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/admin/connectivity/cloudflare/purge-sitemaps", headers=AUTH_HEADERS
            )

        assert response.status_code == 200
        payload = response.json()
        assert payload["purged"] == [
            "sitemap_index.xml",
            "sitemap.xml",
            "sitemaps/sitemap-1.xml",
            "sitemaps/sitemap-2.xml",
        ]
        assert payload["urls_purged"] == 4
        assert payload["base_url"] == "https://shop.example.com"
        assert payload["ray_ids"] == ["ray-abc"]
        assert context.requests[0][2] == {
            "files": [
                "https://shop.example.com/sitemap_index.xml",
                "https://shop.example.com/sitemap.xml",
                "https://shop.example.com/sitemaps/sitemap-1.xml",
                "https://shop.example.com/sitemaps/sitemap-2.xml",
            ]
        }
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_purge_last_batch(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    context = await _build_context(tmp_path, monkeypatch)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            empty = await client.post(
                "/api/admin/connectivity/cloudflare/purge-last-batch", headers=AUTH_HEADERS
            )

            context.last_batch_store.set(["item-1", "item-2"])
            purged = await client.post(
                "/api/admin/connectivity/cloudflare/purge-last-batch", headers=AUTH_HEADERS
            )

        assert empty.status_code == 404
        assert empty.json()["error_code"] == "no_last_batch"
        assert purged.status_code == 200
        assert purged.json()["urls_purged"] == 2
        assert context.requests[-1][2] == {
            "files": [
                "https://shop.example.com/p/item-1",
                "https://shop.example.com/p/item-2",
            ]
        }
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_purge_everything_maps_auth_failures_to_bad_gateway(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    context = await _build_context(
        tmp_path,
        monkeypatch,
        status_code=403,
        body={"success": False, "errors": [{"code": 10000, "message": "Authentication error"}]},
    )

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/admin/connectivity/cloudflare/purge-everything", headers=AUTH_HEADERS
            )

        assert response.status_code == 502
        payload = response.json()
        assert payload["ok"] is False
        assert payload["error_code"] == "auth_failed"
        assert payload["status"] == 403
        assert context.requests[0][2] == {"purge_everything": True}
    finally:
        await context.engine.dispose()


@pytest.mark.asyncio
async def test_timeouts_map_to_gateway_timeout(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    context = await _build_context(tmp_path, monkeypatch, timeout=True)

    try:
        transport = ASGITransport(app=context.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/admin/connectivity/cloudflare/purge-everything", headers=AUTH_HEADERS
            )

        assert response.status_code == 504
        assert response.json()["error_code"] == "timeout"
        assert len(context.requests) == 2
    finally:
        await context.engine.dispose()
