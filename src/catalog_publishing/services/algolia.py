"""Minimal Algolia REST client used by the search index publish batch."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import Any, Final
from urllib.parse import quote

import httpx

from catalog_publishing.config import Settings

GET_OBJECTS_CHUNK_SIZE: Final[int] = 1000
SAVE_OBJECTS_CHUNK_SIZE: Final[int] = 500
DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0

_logger = logging.getLogger("catalog_publishing.algolia")


class AlgoliaError(Exception):
    """Base Algolia failure carrying a stable error code."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "unknown_error",
        status_code: int | None = None,
    ) -> None:
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class AlgoliaTimeoutError(AlgoliaError):
    def __init__(self, message: str = "Algolia request timed out") -> None:
        super().__init__(message, code="timeout")


class AlgoliaAuthError(AlgoliaError):
    def __init__(self, status_code: int) -> None:
        super().__init__(
            "Algolia authentication failed",
            code="auth_failed",
            status_code=status_code,
        )


@dataclass(slots=True, frozen=True)
class AlgoliaConfig:
    app_id: str
    admin_api_key: str
    index_name: str


def get_algolia_config(settings: Settings) -> AlgoliaConfig | None:
    """Return the config only when app id, admin key and index are all set."""

    admin_api_key = (
        settings.ALGOLIA_ADMIN_API_KEY.get_secret_value().strip()
        if settings.ALGOLIA_ADMIN_API_KEY is not None
        else ""
    )
    app_id = (settings.ALGOLIA_APP_ID or "").strip()
    index_name = (settings.ALGOLIA_INDEX_NAME or "").strip()
    if not app_id or not admin_api_key or not index_name:
        return None
    return AlgoliaConfig(app_id=app_id, admin_api_key=admin_api_key, index_name=index_name)


def _chunked(items: Sequence[Any], size: int) -> list[list[Any]]:
    return [list(items[index : index + size]) for index in range(0, len(items), size)]


class AlgoliaClient:
    def __init__(
        self,
        config: AlgoliaConfig,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")

        self._config = config
        self._timeout = httpx.Timeout(timeout_seconds)
        self._user_agent = user_agent
        self._base_url = f"https://{config.app_id}.algolia.net/1"

    @property
    def index_name(self) -> str:
        return self._config.index_name

    @classmethod
    def from_settings(cls, settings: Settings) -> AlgoliaClient | None:
        config = get_algolia_config(settings)
        if config is None:
            return None
        return cls(
            config,
            timeout_seconds=settings.ALGOLIA_TIMEOUT_SECONDS,
            user_agent=settings.OUTBOUND_HTTP_USER_AGENT,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "X-Algolia-Application-Id": self._config.app_id,
            "X-Algolia-API-Key": self._config.admin_api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
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
        failure_code: str,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    headers=self._headers(),
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            _logger.warning("algolia_request_timeout", extra={"path": path})
            raise AlgoliaTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise AlgoliaError(str(exc), code="network_error") from exc

        if response.status_code in {httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN}:
            raise AlgoliaAuthError(response.status_code)
        if response.status_code == httpx.codes.NOT_FOUND:
            raise AlgoliaError(
                "Algolia index not found",
                code="index_not_found",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise AlgoliaError(
                response.text or f"Algolia request failed with status {response.status_code}",
                code=failure_code,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def list_indices(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/indexes", failure_code="unknown_error")
        items = body.get("items")
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    async def get_index_entry_count(self) -> int | None:
        """Return the entry count of the configured index.

        Raises ``AlgoliaError`` with code ``index_not_found`` when the index is
        missing from the application's index list.
        """

        for item in await self.list_indices():
            if item.get("name") == self._config.index_name:
                entries = item.get("entries")
                return int(entries) if isinstance(entries, int) else None
        raise AlgoliaError("Algolia index not found", code="index_not_found")

    async def get_existing_object_ids(self, object_ids: Sequence[str]) -> set[str]:
        existing: set[str] = set()
        for chunk in _chunked(object_ids, GET_OBJECTS_CHUNK_SIZE):
            body = await self._request(
                "POST",
                "/indexes/*/objects",
                payload={
                    "requests": [
                        {"indexName": self._config.index_name, "objectID": object_id}
                        for object_id in chunk
                    ]
                },
                failure_code="algolia_get_failed",
            )
            results = body.get("results")
            for result in results if isinstance(results, list) else []:
                if not isinstance(result, dict):
                    continue
                object_id = result.get("objectID")
                if isinstance(object_id, str) and not result.get("notFound"):
                    existing.add(object_id)
        return existing

    async def save_objects(self, objects: Sequence[dict[str, Any]]) -> None:
        index_path = quote(self._config.index_name, safe="")
        for chunk in _chunked(objects, SAVE_OBJECTS_CHUNK_SIZE):
            await self._request(
                "POST",
                f"/indexes/{index_path}/batch",
                payload={
                    "requests": [
                        {"action": "updateObject", "body": body} for body in chunk
                    ]
                },
                failure_code="algolia_save_failed",
            )
            _logger.info("algolia_objects_saved", extra={"objects": len(chunk)})


__all__ = [
    "AlgoliaAuthError",
    "AlgoliaClient",
    "AlgoliaConfig",
    "AlgoliaError",
    "AlgoliaTimeoutError",
    "GET_OBJECTS_CHUNK_SIZE",
    "SAVE_OBJECTS_CHUNK_SIZE",
    "get_algolia_config",
]
