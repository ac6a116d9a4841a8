"""Cloudflare cache purge client for sitemap and product URLs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
from time import perf_counter
from typing import Any, Final

import httpx

from catalog_publishing.config import Settings
from catalog_publishing.services.sitemap_renderer import PRODUCT_PATH_PREFIX, build_page_url

CLOUDFLARE_API_BASE: Final[str] = "https://api.cloudflare.com/client/v4"
PURGE_CHUNK_SIZE: Final[int] = 2000
MAX_PURGE_RETRIES: Final[int] = 1
DEFAULT_TIMEOUT_SECONDS: Final[float] = 20.0

_logger = logging.getLogger("catalog_publishing.cloudflare")


@dataclass(slots=True, frozen=True)
class CloudflareCredentials:
    zone_id: str
    api_token: str


@dataclass(slots=True, frozen=True)
class CloudflareRequestResult:
    """Outcome of one HTTP round trip to the Cloudflare API."""

    ok: bool
    duration_ms: int
    status_code: int | None = None
    ray_id: str | None = None
    body: dict[str, Any] | None = None
    error_code: str | None = None
    error_details: Any = None


@dataclass(slots=True, frozen=True)
class PurgeExecutionResult:
    """Aggregated outcome of a chunked purge."""

    ok: bool
    duration_ms: int
    ray_ids: list[str] = field(default_factory=list)
    status_code: int | None = None
    error_code: str | None = None
    error_details: Any = None


@dataclass(slots=True, frozen=True)
class SitemapPurgeList:
    base_url: str
    urls: list[str]
    labels: list[str]


def get_cloudflare_credentials(settings: Settings) -> CloudflareCredentials | None:
    """Return credentials only when both zone id and token are configured."""

    token = (
        settings.CLOUDFLARE_API_TOKEN.get_secret_value().strip()
        if settings.CLOUDFLARE_API_TOKEN is not None
        else ""
    )
    zone_id = (settings.CLOUDFLARE_ZONE_ID or "").strip()
    if not zone_id or not token:
        return None
    return CloudflareCredentials(zone_id=zone_id, api_token=token)


def abbreviate_zone_id(zone_id: str) -> str:
    trimmed = zone_id.strip()
    if len(trimmed) <= 12:
        return trimmed
    return f"{trimmed[:6]}…{trimmed[-4:]}"


def _chunked(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[index : index + size]) for index in range(0, len(items), size)]


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


def _should_retry(result: CloudflareRequestResult) -> bool:
    if result.error_code == "timeout":
        return True
    status_code = result.status_code or 0
    return 500 <= status_code < 600


def build_sitemap_purge_list(base_url: str, product_page_count: int) -> SitemapPurgeList:
    """List the sitemap documents a product publish makes stale.

    Both index URLs are always purged, followed by every product page.
    """

    origin = base_url.rstrip("/")
    labels = ["sitemap_index.xml", "sitemap.xml"]
    labels.extend(
        f"sitemaps/sitemap-{page}.xml" for page in range(1, product_page_count + 1)
    )
    return SitemapPurgeList(
        base_url=origin,
        urls=[f"{origin}/{label}" for label in labels],
        labels=labels,
    )


def build_product_urls(base_url: str, slugs: Sequence[str]) -> tuple[list[str], list[str]]:
    """Return ``(urls, slugs)`` for the slugs that yield a valid product URL."""

    urls: list[str] = []
    kept_slugs: list[str] = []
    for slug in slugs:
        url = build_page_url(base_url, PRODUCT_PATH_PREFIX, slug)
        if url is None:
            continue
        urls.append(url)
        kept_slugs.append(slug)
    return urls, kept_slugs


class CloudflareClient:
    """Thin async wrapper over the zone endpoints used for cache purging."""

    def __init__(
        self,
        credentials: CloudflareCredentials,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str | None = None,
        api_base: str = CLOUDFLARE_API_BASE,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")

        self._credentials = credentials
        self._timeout = httpx.Timeout(timeout_seconds)
        self._user_agent = user_agent
        self._api_base = api_base.rstrip("/")

    @property
    def zone_id(self) -> str:
        return self._credentials.zone_id

    @property
    def zone_id_short(self) -> str:
        return abbreviate_zone_id(self._credentials.zone_id)

    @classmethod
    def from_settings(cls, settings: Settings) -> CloudflareClient | None:
        credentials = get_cloudflare_credentials(settings)
        if credentials is None:
            return None
        return cls(
            credentials,
            timeout_seconds=settings.CLOUDFLARE_TIMEOUT_SECONDS,
            user_agent=settings.OUTBOUND_HTTP_USER_AGENT,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._credentials.api_token}",
            "Content-Type": "application/json",
        }
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
    ) -> CloudflareRequestResult:
        started_at = perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    f"{self._api_base}{path}",
                    headers=self._headers(),
                    json=payload,
                )
        except httpx.TimeoutException:
            return CloudflareRequestResult(
                ok=False, duration_ms=_elapsed_ms(started_at), error_code="timeout"
            )
        except httpx.HTTPError as exc:
            return CloudflareRequestResult(
                ok=False,
                duration_ms=_elapsed_ms(started_at),
                error_code="network_error",
                error_details={"message": str(exc)},
            )

        duration_ms = _elapsed_ms(started_at)
        ray_id = response.headers.get("cf-ray")
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = None

        if response.is_success and body is not None and body.get("success") is True:
            return CloudflareRequestResult(
                ok=True,
                duration_ms=duration_ms,
                status_code=response.status_code,
                ray_id=ray_id,
                body=body,
            )

        error_code = (
            "auth_failed"
            if response.status_code in {httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN}
            else "api_error"
        )
        return CloudflareRequestResult(
            ok=False,
            duration_ms=duration_ms,
            status_code=response.status_code,
            ray_id=ray_id,
            body=body,
            error_code=error_code,
            error_details=body.get("errors") if body is not None else None,
        )

    async def test_connection(self) -> CloudflareRequestResult:
        result = await self._request("GET", f"/zones/{self._credentials.zone_id}")
        log_context = {
            "zone": self.zone_id_short,
            "duration_ms": result.duration_ms,
            "ray_id": result.ray_id,
            "status_code": result.status_code,
            "error_code": result.error_code,
        }
        if result.ok:
            _logger.info("cloudflare_test_connection", extra=log_context)
        else:
            _logger.warning("cloudflare_test_connection_failed", extra=log_context)
        return result

    async def _purge(self, payload: dict[str, Any], *, label: str) -> CloudflareRequestResult:
        url_count = len(payload.get("files") or ())
        mode = "everything" if payload.get("purge_everything") else "files"
        for attempt in range(MAX_PURGE_RETRIES + 1):
            result = await self._request(
                "POST",
                f"/zones/{self._credentials.zone_id}/purge_cache",
                payload=payload,
            )
            log_context = {
                "label": label,
                "zone": self.zone_id_short,
                "urls": url_count,
                "mode": mode,
                "duration_ms": result.duration_ms,
                "ray_id": result.ray_id,
                "attempt": attempt + 1,
            }
            if result.ok:
                _logger.info("cloudflare_purge_completed", extra=log_context)
                return result

            _logger.warning(
                "cloudflare_purge_failed",
                extra={
                    **log_context,
                    "status_code": result.status_code,
                    "error_code": result.error_code,
                },
            )
            if attempt >= MAX_PURGE_RETRIES or not _should_retry(result):
                return result

        raise RuntimeError("purge retry loop exited without a result")

    async def purge_files(self, urls: Sequence[str], *, label: str) -> PurgeExecutionResult:
        """Purge ``urls`` in chunks, stopping at the first failed chunk."""

        if not urls:
            return PurgeExecutionResult(ok=True, duration_ms=0)

        started_at = perf_counter()
        ray_ids: list[str] = []
        for chunk in _chunked(urls, PURGE_CHUNK_SIZE):
            result = await self._purge({"files": chunk}, label=label)
            if not result.ok:
                return PurgeExecutionResult(
                    ok=False,
                    duration_ms=_elapsed_ms(started_at),
                    ray_ids=ray_ids,
                    status_code=result.status_code,
                    error_code=result.error_code or "api_error",
                    error_details=result.error_details,
                )
            if result.ray_id:
                ray_ids.append(result.ray_id)

        return PurgeExecutionResult(
            ok=True, duration_ms=_elapsed_ms(started_at), ray_ids=ray_ids
        )

    async def purge_everything(self, *, label: str) -> PurgeExecutionResult:
        started_at = perf_counter()
        result = await self._purge({"purge_everything": True}, label=label)
        return PurgeExecutionResult(
            ok=result.ok,
            duration_ms=_elapsed_ms(started_at),
            ray_ids=[result.ray_id] if result.ray_id else [],
            status_code=result.status_code,
            error_code=None if result.ok else result.error_code or "api_error",
            error_details=None if result.ok else result.error_details,
        )


__all__ = [
    "CLOUDFLARE_API_BASE",
    "CloudflareClient",
    "CloudflareCredentials",
    "CloudflareRequestResult",
    "PURGE_CHUNK_SIZE",
    "PurgeExecutionResult",
    "SitemapPurgeList",
    "abbreviate_zone_id",
    "build_product_urls",
    "build_sitemap_purge_list",
    "get_cloudflare_credentials",
]
