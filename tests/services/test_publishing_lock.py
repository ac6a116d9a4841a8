"""Tests for per-kind publish batch locks."""

from __future__ import annotations

import pytest

from catalog_publishing.services.publishing_lock import (
    PublishingJobInProgressError,
    PublishingKind,
    PublishingLockService,
)


def test_acquire_is_exclusive_per_kind() -> None:
    lock = PublishingLockService()

    assert lock.acquire(PublishingKind.SITEMAP) is True
    assert lock.acquire("sitemap") is False
    assert lock.acquire(PublishingKind.ALGOLIA) is True
    assert lock.is_active(PublishingKind.SITEMAP)

    lock.release(PublishingKind.SITEMAP)
    lock.release(PublishingKind.SITEMAP)

    assert lock.is_active("sitemap") is False
    assert lock.acquire(PublishingKind.SITEMAP) is True


def test_hold_releases_after_errors_and_rejects_contention() -> None:
    lock = PublishingLockService()

    with pytest.raises(RuntimeError, match="boom"):
        with lock.hold(PublishingKind.ALGOLIA):
            raise RuntimeError("boom")
    assert lock.is_active(PublishingKind.ALGOLIA) is False

    with lock.hold(PublishingKind.ALGOLIA):
        with pytest.raises(PublishingJobInProgressError) as exc_info:
            with lock.hold(PublishingKind.ALGOLIA):
                pass
    assert exc_info.value.kind == "algolia"
    assert exc_info.value.error_code == "job_in_progress"
