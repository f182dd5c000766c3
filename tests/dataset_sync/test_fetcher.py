"""Artifact downloads and progress reporting."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

import pytest

from NexusSDE.DatasetSync.artifacts import ArtifactKind
from NexusSDE.DatasetSync.errors import RecordFieldMissing, TransportError
from NexusSDE.DatasetSync.fetcher import ArtifactFetcher, ProgressTracker
from NexusSDE.DatasetSync.staging import StagingArea

from tests.dataset_sync.fakes import FakeRecordStore, make_release


@pytest.fixture
def staging(tmp_path: Path) -> StagingArea:
    return StagingArea(tmp_path / "staging")


def test_fetch_writes_archive_into_staging(fake_store: FakeRecordStore, staging: StagingArea) -> None:
    release = fake_store.publish(make_release(200))
    fractions: List[float] = []

    path = asyncio.run(
        ArtifactFetcher(fake_store, staging).fetch(release.record_id, ArtifactKind.DATABASE, fractions.append)
    )

    assert path == staging.root / "sde.zip"
    assert path.read_bytes() == release.sde_zip
    assert fractions == sorted(fractions)
    assert fractions[-1] == 1.0
    assert fake_store.count("download", "sde_file") == 1


def test_fetch_uses_the_icon_field(fake_store: FakeRecordStore, staging: StagingArea) -> None:
    release = fake_store.publish(make_release(200))

    path = asyncio.run(ArtifactFetcher(fake_store, staging).fetch(release.record_id, ArtifactKind.ICONS))

    assert path.name == "icons.zip"
    assert path.read_bytes() == release.icons_zip


def test_fetch_failures_propagate_unchanged(fake_store: FakeRecordStore, staging: StagingArea) -> None:
    release = fake_store.publish(make_release(200))
    failure = TransportError("connection reset", retryable=True)
    fake_store.failures[(release.record_id, "sde_file")] = failure

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(ArtifactFetcher(fake_store, staging).fetch(release.record_id, ArtifactKind.DATABASE))

    assert excinfo.value is failure
    assert fake_store.count("download") == 1


def test_missing_asset_field(fake_store: FakeRecordStore, staging: StagingArea) -> None:
    with pytest.raises(RecordFieldMissing):
        asyncio.run(ArtifactFetcher(fake_store, staging).fetch("ghost", ArtifactKind.ICONS))


def test_progress_tracker_is_monotonic_and_clamped() -> None:
    seen: List[float] = []
    tracker = ProgressTracker(seen.append, artifact="database")

    for done in (10, 50, 40, 100, 150):
        tracker.update(done, 100)
    tracker.update(10, None)
    tracker.finish()

    assert seen == [0.1, 0.5, 1.0, 1.0]


def test_progress_tracker_without_total_only_finishes() -> None:
    seen: List[float] = []
    tracker = ProgressTracker(seen.append)

    tracker.update(4096, None)
    tracker.update(8192, 0)
    tracker.finish()

    assert seen == [1.0]
