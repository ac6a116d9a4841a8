"""Capped, append-only ledger of publish batch outcomes."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
import copy
from dataclasses import dataclass, field
import json
import logging
import re
from typing import Any, Final, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from catalog_publishing.schemas.publishing import (
    PublishingActivityEntry,
    PublishingActivityErrorItem,
    PublishingActivityType,
)
from catalog_publishing.utils.timestamps import utc_now_iso

MAX_ACTIVITY_ENTRIES: Final[int] = 40
DEFAULT_ACTIVITY_REDIS_KEY: Final[str] = "catalog_publishing:activity"
_RUN_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^run-(\d+)$")

_logger = logging.getLogger("catalog_publishing.publishing.activity")


class ActivityStoreUnavailableError(RuntimeError):
    """Raised by durable stores when the backend cannot be reached."""


@dataclass(slots=True)
class ActivitySnapshot:
    """Serialized ledger state: the id counter plus newest-first raw entries."""

    counter: int = 0
    entries: list[dict[str, Any]] = field(default_factory=list)


class ActivityStore(Protocol):
    async def load(self) -> ActivitySnapshot: ...

    async def save(self, snapshot: ActivitySnapshot) -> None: ...


class InMemoryActivityStore:
    """Single-process store; copies on every read and write."""

    def __init__(self) -> None:
        self._snapshot = ActivitySnapshot()

    async def load(self) -> ActivitySnapshot:
        return copy.deepcopy(self._snapshot)

    async def save(self, snapshot: ActivitySnapshot) -> None:
        self._snapshot = copy.deepcopy(snapshot)


class RedisActivityStore:
    """Durable store keeping the whole ledger as one JSON blob under one key."""

    def __init__(self, client: Redis, *, key: str = DEFAULT_ACTIVITY_REDIS_KEY) -> None:
        self._client = client
        self._key = key

    async def load(self) -> ActivitySnapshot:
        try:
            raw_value = await self._client.get(self._key)
        except RedisError as error:
            raise ActivityStoreUnavailableError(str(error)) from error

        if raw_value is None:
            return ActivitySnapshot()

        try:
            payload = json.loads(raw_value)
        except (TypeError, ValueError):
            _logger.warning("activity_store_blob_unreadable", extra={"key": self._key})
            return ActivitySnapshot()

        if not isinstance(payload, dict):
            return ActivitySnapshot()

        counter = payload.get("counter")
        entries = payload.get("entries")
        return ActivitySnapshot(
            counter=counter if isinstance(counter, int) and counter > 0 else 0,
            entries=[item for item in entries if isinstance(item, dict)]
            if isinstance(entries, list)
            else [],
        )

    async def save(self, snapshot: ActivitySnapshot) -> None:
        blob = json.dumps(
            {"counter": snapshot.counter, "entries": snapshot.entries},
            default=str,
        )
        try:
            await self._client.set(self._key, blob)
        except RedisError as error:
            raise ActivityStoreUnavailableError(str(error)) from error


def _run_number(entry_id: str) -> int:
    match = _RUN_ID_PATTERN.match(entry_id)
    return int(match.group(1)) if match else 0


def _restore_entries(raw_entries: Sequence[dict[str, Any]]) -> list[PublishingActivityEntry]:
    restored: list[PublishingActivityEntry] = []
    for raw_entry in raw_entries:
        try:
            restored.append(PublishingActivityEntry.model_validate(raw_entry))
        except ValidationError:
            _logger.warning(
                "activity_entry_dropped",
                extra={"activity_id": raw_entry.get("id")},
            )
    return restored


class PublishingActivityLog:
    """Record and query batch runs, newest first, capped at ``capacity``.

    Ids are ``run-1``, ``run-2``, ... and are never reused within a process,
    including after eviction or ``clear``. When the configured store is
    unreachable the log keeps working against an in-process mirror.
    """

    def __init__(
        self,
        store: ActivityStore | None = None,
        *,
        capacity: int = MAX_ACTIVITY_ENTRIES,
        now_factory: Callable[[], str] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be 1 or greater")

        self._store: ActivityStore = store or InMemoryActivityStore()
        self._fallback = InMemoryActivityStore()
        self._capacity = capacity
        self._now_factory = now_factory or utc_now_iso
        self._counter = 0
        self._lock = asyncio.Lock()

    async def record(
        self,
        *,
        type: PublishingActivityType,
        requested: int,
        processed: int,
        success: int,
        skipped: int,
        errors: int,
        duration_ms: int,
        message: str | None = None,
        metadata: dict[str, Any] | None = None,
        error_items: Sequence[PublishingActivityErrorItem] | None = None,
        finished_at: str | None = None,
    ) -> PublishingActivityEntry:
        async with self._lock:
            snapshot = await self._load_snapshot()
            existing = _restore_entries(snapshot.entries)
            highest_seen = max(
                [self._counter, snapshot.counter]
                + [_run_number(entry.id) for entry in existing]
            )
            counter = highest_seen + 1

            entry = PublishingActivityEntry(
                id=f"run-{counter}",
                type=type,
                requested=requested,
                processed=processed,
                success=success,
                skipped=skipped,
                errors=errors,
                duration_ms=duration_ms,
                finished_at=finished_at or self._now_factory(),
                message=message,
                metadata=copy.deepcopy(metadata) if metadata is not None else None,
                error_items=[item.model_copy(deep=True) for item in error_items or ()],
            )

            retained = [entry, *existing][: self._capacity]
            self._counter = counter
            await self._save_snapshot(
                ActivitySnapshot(
                    counter=counter,
                    entries=[item.model_dump(mode="json") for item in retained],
                )
            )

        _logger.info(
            "publishing_activity_recorded",
            extra={"activity_id": entry.id, "kind": entry.type},
        )
        return entry.model_copy(deep=True)

    async def list_entries(self) -> list[PublishingActivityEntry]:
        snapshot = await self._load_snapshot()
        return _restore_entries(snapshot.entries)

    async def get_by_id(self, entry_id: str) -> PublishingActivityEntry | None:
        for entry in await self.list_entries():
            if entry.id == entry_id:
                return entry
        return None

    async def clear(self) -> None:
        async with self._lock:
            snapshot = await self._load_snapshot()
            self._counter = max(self._counter, snapshot.counter)
            await self._save_snapshot(ActivitySnapshot(counter=self._counter))

    async def _load_snapshot(self) -> ActivitySnapshot:
        try:
            return await self._store.load()
        except ActivityStoreUnavailableError:
            _logger.warning("activity_store_read_failed", exc_info=True)
            return await self._fallback.load()

    async def _save_snapshot(self, snapshot: ActivitySnapshot) -> None:
        await self._fallback.save(snapshot)
        if self._store is self._fallback:
            return
        try:
            await self._store.save(snapshot)
        except ActivityStoreUnavailableError:
            _logger.warning("activity_store_write_failed", exc_info=True)


__all__ = [
    "ActivitySnapshot",
    "ActivityStore",
    "ActivityStoreUnavailableError",
    "InMemoryActivityStore",
    "MAX_ACTIVITY_ENTRIES",
    "PublishingActivityLog",
    "RedisActivityStore",
]
