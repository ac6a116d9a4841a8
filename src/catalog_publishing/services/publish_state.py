"""Remember the slugs flipped by the most recent sitemap publish batch."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass(slots=True, frozen=True)
class PublishedBatch:
    slugs: tuple[str, ...]
    created_at: datetime


def sanitize_slugs(slugs: Iterable[object]) -> list[str]:
    """Trim, drop blanks and deduplicate while keeping first-seen order."""

    seen: set[str] = set()
    sanitized: list[str] = []
    for slug in slugs:
        if not isinstance(slug, str):
            continue
        trimmed = slug.strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        sanitized.append(trimmed)
    return sanitized


class LastPublishedBatchStore:
    """Process-local holder for the last published batch.

    Setting an empty (after sanitizing) batch forgets the previous one.
    """

    def __init__(self, *, now_factory: Callable[[], datetime] | None = None) -> None:
        self._now_factory = now_factory or (lambda: datetime.now(UTC))
        self._batch: PublishedBatch | None = None

    def set(self, slugs: Iterable[object], *, created_at: datetime | None = None) -> None:
        sanitized = sanitize_slugs(slugs)
        if not sanitized:
            self._batch = None
            return
        self._batch = PublishedBatch(
            slugs=tuple(sanitized),
            created_at=created_at or self._now_factory(),
        )

    def get(self) -> PublishedBatch | None:
        return self._batch

    def clear(self) -> None:
        self._batch = None


__all__ = ["LastPublishedBatchStore", "PublishedBatch", "sanitize_slugs"]
