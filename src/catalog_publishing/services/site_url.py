"""Resolve the public site origin used in absolute sitemap and purge URLs."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import urlsplit


class SiteUrlUnavailableError(RuntimeError):
    """Raised when neither configuration nor request headers name an origin."""


def _first_header_value(value: str | None) -> str | None:
    if not value:
        return None
    first = value.split(",", maxsplit=1)[0].strip()
    return first or None


def normalize_base_url(value: str) -> str | None:
    parsed = urlsplit(value.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}".rstrip("/")


def resolve_site_url(
    headers: Mapping[str, str],
    *,
    configured_site_url: str | None = None,
) -> str:
    """Return ``scheme://host`` for the current request.

    A configured ``SITE_URL`` always wins. Otherwise the origin comes from
    ``x-forwarded-host`` (or ``host``) and ``x-forwarded-proto``, defaulting to
    ``http`` for localhost and ``https`` everywhere else.
    """

    if configured_site_url:
        normalized = normalize_base_url(configured_site_url)
        if normalized is not None:
            return normalized

    host = _first_header_value(headers.get("x-forwarded-host")) or _first_header_value(
        headers.get("host")
    )
    if host is None:
        raise SiteUrlUnavailableError("Unable to resolve site URL")

    proto = _first_header_value(headers.get("x-forwarded-proto")) or (
        "http" if "localhost" in host else "https"
    )
    return f"{proto}://{host}".rstrip("/")


__all__ = ["SiteUrlUnavailableError", "normalize_base_url", "resolve_site_url"]
