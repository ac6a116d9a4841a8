"""Process-wide, non-blocking mutual exclusion for publish batches."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
import logging


class PublishingKind(str, Enum):
    """Batch kinds; each kind has its own exclusion domain."""

    SITEMAP = "sitemap"
    ALGOLIA = "algolia"


class PublishingJobInProgressError(RuntimeError):
    """Raised when a batch of the same kind is already running."""

    error_code = "job_in_progress"

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"A {kind} publishing batch is already running")


_logger = logging.getLogger("catalog_publishing.publishing.lock")


def _kind_value(kind: PublishingKind | str) -> str:
    return kind.value if isinstance(kind, PublishingKind) else str(kind)


class PublishingLockService:
    """Named in-memory locks keyed by batch kind.

    ``acquire`` never waits: a held kind returns ``False`` immediately.
    ``release`` is idempotent so cleanup paths can call it unconditionally.
    Not shared across processes.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def acquire(self, kind: PublishingKind | str) -> bool:
        key = _kind_value(kind)
        if key in self._held:
            _logger.info("publishing_lock_contended", extra={"kind": key})
            return False

        self._held.add(key)
        return True

    def release(self, kind: PublishingKind | str) -> None:
        self._held.discard(_kind_value(kind))

    def is_active(self, kind: PublishingKind | str) -> bool:
        return _kind_value(kind) in self._held

    @contextmanager
    def hold(self, kind: PublishingKind | str) -> Iterator[None]:
        """Hold ``kind`` for the block or raise ``PublishingJobInProgressError``."""

        if not self.acquire(kind):
            raise PublishingJobInProgressError(_kind_value(kind))
        try:
            yield
        finally:
            self.release(kind)


__all__ = [
    "PublishingJobInProgressError",
    "PublishingKind",
    "PublishingLockService",
]
