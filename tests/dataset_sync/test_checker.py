"""Update check states and the cooldown gate."""

from __future__ import annotations

import asyncio

import pytest

from NexusSDE.DatasetSync.artifacts import ArtifactKind
from NexusSDE.DatasetSync.checker import CooldownGate, UpdateStatus, pending_artifacts
from NexusSDE.DatasetSync.context import SyncContext
from NexusSDE.DatasetSync.errors import TransportError
from NexusSDE.DatasetSync.versioning import VersionTuple

from tests.dataset_sync.fakes import FakeClock, FakeRecordStore, make_descriptor, make_release


def test_initial_state_is_not_checked(sync_context: SyncContext) -> None:
    assert sync_context.checker.status is UpdateStatus.NOT_CHECKED


def test_no_eligible_release_arms_the_cooldown(
    sync_context: SyncContext, fake_store: FakeRecordStore, clock: FakeClock
) -> None:
    checker = sync_context.checker

    result = asyncio.run(checker.check())

    assert result.status is UpdateStatus.NO_UPDATE
    assert checker.gate.last_checked() == clock.now
    assert fake_store.count("query") == 1

    again = asyncio.run(checker.check())
    assert again.status is UpdateStatus.NO_UPDATE
    assert fake_store.count("query") == 1

    clock.advance(61)
    asyncio.run(checker.check())
    assert fake_store.count("query") == 2


def test_force_bypasses_the_cooldown(sync_context: SyncContext, fake_store: FakeRecordStore) -> None:
    checker = sync_context.checker
    asyncio.run(checker.check())

    fake_store.publish(make_release(101))
    result = asyncio.run(checker.check(force=True))

    assert result.status is UpdateStatus.HAS_UPDATE
    assert fake_store.count("query") == 2


def test_failed_check_does_not_arm_the_cooldown(
    sync_context: SyncContext, fake_store: FakeRecordStore
) -> None:
    checker = sync_context.checker
    fake_store.query_error = TransportError("store unreachable", retryable=True)

    result = asyncio.run(checker.check())

    assert result.status is UpdateStatus.CHECK_FAILED
    assert "store unreachable" in (result.error or "")
    assert checker.gate.last_checked() is None

    fake_store.query_error = None
    assert asyncio.run(checker.check()).status is UpdateStatus.NO_UPDATE
    assert fake_store.count("query") == 2


def test_unavailable_metadata_fails_the_check(
    sync_context: SyncContext, fake_store: FakeRecordStore
) -> None:
    fake_store.publish(make_release(101), inline=False, metadata_file=False)

    result = asyncio.run(sync_context.checker.check())

    assert result.status is UpdateStatus.CHECK_FAILED
    assert sync_context.checker.gate.last_checked() is None


def test_newer_build_is_an_update(sync_context: SyncContext, fake_store: FakeRecordStore) -> None:
    release = fake_store.publish(make_release(100, 1))

    result = asyncio.run(sync_context.checker.check())

    assert result.has_update
    assert result.updates == (ArtifactKind.DATABASE,)
    assert result.record is not None and result.record.record_id == release.record_id
    assert result.remote_descriptor == release.descriptor
    assert result.current[ArtifactKind.DATABASE] == VersionTuple(100, 0)


def test_newer_icons_alone_are_an_update(sync_context: SyncContext, fake_store: FakeRecordStore) -> None:
    fake_store.publish(make_release(100, 0, icon_version=6))

    result = asyncio.run(sync_context.checker.check())

    assert result.status is UpdateStatus.HAS_UPDATE
    assert result.updates == (ArtifactKind.ICONS,)


def test_same_release_is_no_update(sync_context: SyncContext, fake_store: FakeRecordStore) -> None:
    fake_store.publish(make_release(100, 0, icon_version=5))

    result = asyncio.run(sync_context.checker.check())

    assert result.status is UpdateStatus.NO_UPDATE
    assert result.record is not None
    assert sync_context.checker.gate.is_cooling_down()


def test_clear_cooldown_resets_state(sync_context: SyncContext, fake_store: FakeRecordStore) -> None:
    checker = sync_context.checker
    asyncio.run(checker.check())

    checker.clear_cooldown()

    assert checker.status is UpdateStatus.NOT_CHECKED
    assert not checker.gate.state_path.exists()
    asyncio.run(checker.check())
    assert fake_store.count("query") == 2


def test_new_checker_honours_a_persisted_cooldown(
    sync_context: SyncContext, context_factory, fake_store: FakeRecordStore
) -> None:
    asyncio.run(sync_context.checker.check())

    restarted = context_factory(sync_context.config).checker
    result = asyncio.run(restarted.check())

    assert restarted.status is UpdateStatus.NO_UPDATE
    assert result.from_cooldown
    assert fake_store.count("query") == 1


def test_failed_check_is_not_throttled_after_restart(
    sync_context: SyncContext, context_factory, fake_store: FakeRecordStore, clock: FakeClock
) -> None:
    assert asyncio.run(sync_context.checker.check()).status is UpdateStatus.NO_UPDATE
    clock.advance(10)
    fake_store.query_error = TransportError("store unreachable", retryable=True)

    failed = asyncio.run(sync_context.checker.check(force=True))

    assert failed.status is UpdateStatus.CHECK_FAILED
    assert sync_context.checker.gate.last_checked() is None

    fake_store.query_error = None
    fake_store.publish(make_release(101))
    restarted = context_factory(sync_context.config).checker

    assert restarted.status is UpdateStatus.NOT_CHECKED
    result = asyncio.run(restarted.check())
    assert result.status is UpdateStatus.HAS_UPDATE
    assert not result.from_cooldown
    assert fake_store.count("query") == 3


def test_unexpected_error_leaves_check_failed(
    sync_context: SyncContext, monkeypatch: pytest.MonkeyPatch
) -> None:
    checker = sync_context.checker

    def _disk_full() -> None:
        raise OSError("disk full")

    monkeypatch.setattr(checker.gate, "record_no_update", _disk_full)

    with pytest.raises(OSError, match="disk full"):
        asyncio.run(checker.check())

    assert checker.status is UpdateStatus.CHECK_FAILED
    assert checker.result.error == "disk full"


def test_check_in_progress_is_not_duplicated(
    sync_context: SyncContext, fake_store: FakeRecordStore
) -> None:
    release = fake_store.publish(make_release(101), inline=False)
    checker = sync_context.checker

    async def scenario():
        gate = asyncio.Event()
        fake_store.gates[(release.record_id, "metadata_file")] = gate
        first = asyncio.ensure_future(checker.check())
        await asyncio.sleep(0)
        concurrent = await checker.check()
        gate.set()
        return concurrent, await first

    concurrent, final = asyncio.run(scenario())

    assert concurrent.status is UpdateStatus.CHECKING
    assert final.status is UpdateStatus.HAS_UPDATE
    assert fake_store.count("query") == 1


def test_cooldown_gate_tolerates_corrupt_state(tmp_path, clock: FakeClock) -> None:
    state = tmp_path / "update_check.json"
    state.write_text("garbage", encoding="utf-8")
    gate = CooldownGate(state, interval_seconds=60, clock=clock)

    assert gate.last_checked() is None
    assert not gate.is_cooling_down()

    gate.record_no_update()
    assert gate.is_cooling_down()
    clock.advance(60.5)
    assert not gate.is_cooling_down()


def test_pending_artifacts_compares_each_dimension() -> None:
    current = {ArtifactKind.DATABASE: VersionTuple(100, 0), ArtifactKind.ICONS: 5}

    assert pending_artifacts(make_descriptor(100, 0, 5), current) == ()
    assert pending_artifacts(make_descriptor(99, 9, 6), current) == (ArtifactKind.ICONS,)
    assert set(pending_artifacts(make_descriptor(101, 0, 6), current)) == {
        ArtifactKind.DATABASE,
        ArtifactKind.ICONS,
    }
