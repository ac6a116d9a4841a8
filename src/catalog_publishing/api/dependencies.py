"""Shared FastAPI dependencies: process-wide services and admin auth."""

from __future__ import annotations

from secrets import compare_digest

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from catalog_publishing.config import Settings, get_settings
from catalog_publishing.services.algolia import AlgoliaClient
from catalog_publishing.services.cloudflare import CloudflareClient
from catalog_publishing.services.product_cache import ProductCache
from catalog_publishing.services.publish_state import LastPublishedBatchStore
from catalog_publishing.services.publishing_activity import PublishingActivityLog
from catalog_publishing.services.publishing_lock import PublishingLockService
from catalog_publishing.services.site_url import SiteUrlUnavailableError, resolve_site_url
from catalog_publishing.services.sitemap_cache import SitemapCache
from catalog_publishing.services.sitemap_collections import (
    SessionScopeFactory,
    SitemapCollectionService,
)

_bearer_auth = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_sitemap_cache(request: Request) -> SitemapCache:
    return request.app.state.sitemap_cache


def get_publishing_lock(request: Request) -> PublishingLockService:
    return request.app.state.publishing_lock


def get_activity_log(request: Request) -> PublishingActivityLog:
    return request.app.state.activity_log


def get_product_cache(request: Request) -> ProductCache:
    return request.app.state.product_cache


def get_last_batch_store(request: Request) -> LastPublishedBatchStore:
    return request.app.state.last_batch_store


def get_cloudflare_client(request: Request) -> CloudflareClient | None:
    return request.app.state.cloudflare_client


def get_algolia_client(request: Request) -> AlgoliaClient | None:
    return request.app.state.algolia_client


def get_session_factory() -> SessionScopeFactory:
    from catalog_publishing.database import session_scope

    return session_scope


def get_sitemap_collections(
    session_factory: SessionScopeFactory = Depends(get_session_factory),
) -> SitemapCollectionService:
    return SitemapCollectionService(session_factory=session_factory)


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def get_site_url(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> str:
    try:
        return resolve_site_url(request.headers, configured_site_url=settings.SITE_URL)
    except SiteUrlUnavailableError as error:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(error),
        ) from error


def get_optional_site_url(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> str | None:
    try:
        return resolve_site_url(request.headers, configured_site_url=settings.SITE_URL)
    except SiteUrlUnavailableError:
        return None


def _get_admin_token(settings: Settings = Depends(get_app_settings)) -> str:
    return settings.SECRET_KEY.get_secret_value()


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_auth),
    expected_token: str = Depends(_get_admin_token),
) -> None:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization credentials",
        )

    if credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization scheme must be Bearer",
        )

    if compare_digest(credentials.credentials, expected_token):
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not authorized to manage publishing",
    )
