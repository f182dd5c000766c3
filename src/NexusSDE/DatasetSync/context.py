"""Explicit wiring of the synchronisation components.

:func:`build_context` is the single place where configuration turns into
objects. Callers build one :class:`SyncContext` at startup and pass it (or
its members) to whatever needs them; no component looks up shared state on
its own.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx

from .checker import CooldownGate, UpdateChecker
from .datasets import BaselineDataset, LocalDataset
from .events import EventLog
from .fetcher import ArtifactFetcher
from .pipeline import UpdatePipeline
from .remote import RemoteMetadataResolver
from .resolver import DataSourceResolver, DatasetLock
from .settings import SyncConfig
from .staging import StagingArea
from .store import HttpRecordStore, RecordStore

__all__ = ["SyncContext", "build_context", "UPDATE_LOCK_NAME"]

UPDATE_LOCK_NAME = "update.lock"


@dataclass
class SyncContext:
    """Every long-lived component of one process."""

    config: SyncConfig
    resolver: DataSourceResolver
    staging: StagingArea
    store: RecordStore
    remote: RemoteMetadataResolver
    fetcher: ArtifactFetcher
    checker: UpdateChecker
    events: EventLog
    pipeline: UpdatePipeline

    @property
    def update_lock_path(self) -> Path:
        return self.config.storage.state_dir / UPDATE_LOCK_NAME

    async def aclose(self) -> None:
        """Release network resources held by the record store."""

        close = getattr(self.store, "aclose", None)
        if close is not None:
            await close()


def build_context(
    config: SyncConfig,
    *,
    store: Optional[RecordStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
) -> SyncContext:
    """Assemble a :class:`SyncContext` from ``config``.

    Args:
        config: Validated configuration.
        store: Record store to use instead of the HTTP client.
        transport: HTTPX transport override for the default HTTP store.
        clock: Epoch-seconds clock used by the cooldown gate.

    Returns:
        Fully wired context.
    """

    storage = config.storage
    lock = DatasetLock()
    resolver = DataSourceResolver(
        BaselineDataset(storage.baseline_root),
        LocalDataset(storage.local_root),
        lock=lock,
    )
    staging = StagingArea(storage.staging_dir)
    record_store: RecordStore = store if store is not None else HttpRecordStore(
        config.remote, transport=transport
    )
    remote = RemoteMetadataResolver(
        record_store,
        staging,
        record_type=config.remote.record_type,
        client_version=config.remote.client_version,
        policy=config.remote.eligibility,
    )
    fetcher = ArtifactFetcher(record_store, staging)
    gate = CooldownGate(
        storage.state_dir / config.checker.state_file,
        interval_seconds=config.checker.cooldown_seconds,
        clock=clock,
    )
    checker = UpdateChecker(resolver, remote, gate)
    events = EventLog()
    pipeline = UpdatePipeline(
        resolver,
        remote,
        fetcher,
        staging,
        checker=checker,
        events=events,
        lock_path=storage.state_dir / UPDATE_LOCK_NAME,
    )
    return SyncContext(
        config=config,
        resolver=resolver,
        staging=staging,
        store=record_store,
        remote=remote,
        fetcher=fetcher,
        checker=checker,
        events=events,
        pipeline=pipeline,
    )
