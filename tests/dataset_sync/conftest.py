"""Shared fixtures for the dataset_sync test suite."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from NexusSDE.DatasetSync.context import SyncContext, build_context
from NexusSDE.DatasetSync.settings import SyncConfig, build_config
from tests.dataset_sync.fakes import CLIENT_VERSION, FakeClock, FakeRecordStore, write_baseline


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer ``SDESYNC_*`` variables out of the tests."""

    for name in list(os.environ):
        if name.upper().startswith("SDESYNC_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def baseline_root(tmp_path: Path) -> Path:
    return write_baseline(tmp_path / "baseline")


@pytest.fixture
def sync_config(tmp_path: Path, baseline_root: Path) -> SyncConfig:
    return build_config(
        {
            "storage": {"baseline_root": str(baseline_root), "data_root": str(tmp_path / "data")},
            "remote": {"base_url": "https://records.test/api", "client_version": CLIENT_VERSION},
            "checker": {"cooldown_seconds": 60},
        }
    )


@pytest.fixture
def context_factory(
    fake_store: FakeRecordStore, clock: FakeClock
) -> Callable[[SyncConfig], SyncContext]:
    def _factory(config: SyncConfig) -> SyncContext:
        return build_context(config, store=fake_store, clock=clock)

    return _factory


@pytest.fixture
def sync_context(
    sync_config: SyncConfig, context_factory: Callable[[SyncConfig], SyncContext]
) -> SyncContext:
    return context_factory(sync_config)
