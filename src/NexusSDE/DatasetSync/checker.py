# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.checker",
#   "purpose": "Update availability state machine with a persisted cooldown gate",
#   "sections": [
#     {"id": "status", "name": "UpdateStatus", "anchor": "class-updatestatus", "kind": "class"},
#     {"id": "result", "name": "UpdateCheckResult", "anchor": "class-updatecheckresult", "kind": "class"},
#     {"id": "gate", "name": "CooldownGate", "anchor": "class-cooldowngate", "kind": "class"},
#     {"id": "checker", "name": "UpdateChecker", "anchor": "class-updatechecker", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Update checks.

:class:`UpdateChecker` moves through ``NOT_CHECKED -> CHECKING ->
{NO_UPDATE, HAS_UPDATE, CHECK_FAILED}`` once per check. An update exists when
any artifact's remote version component is newer than the one currently in
effect (database by ``(build, patch)``, icons by strictly greater integer).

Throttling lives in :class:`CooldownGate`, which owns the clock and the
persisted timestamp of the last check that found nothing. Only a NO_UPDATE
result arms the gate. A failed check disarms it, so the next check in this
or any later process queries the store again.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .artifacts import ARTIFACTS, ArtifactKind
from .descriptor import DatasetDescriptor
from .errors import DatasetSyncError
from .remote import RemoteMetadataResolver
from .resolver import DataSourceResolver
from .store import RemoteReleaseRecord

__all__ = [
    "UpdateStatus",
    "UpdateCheckResult",
    "CooldownGate",
    "UpdateChecker",
    "pending_artifacts",
]

logger = logging.getLogger(__name__)


class UpdateStatus(str, enum.Enum):
    NOT_CHECKED = "not_checked"
    CHECKING = "checking"
    NO_UPDATE = "no_update"
    HAS_UPDATE = "has_update"
    CHECK_FAILED = "check_failed"


@dataclass(frozen=True)
class UpdateCheckResult:
    """Snapshot of the checker after (or instead of) a check.

    Attributes:
        status: State reached.
        current: Version component in effect per artifact kind.
        record: Newest eligible remote record, when one was found.
        remote_descriptor: Descriptor of :attr:`record`.
        updates: Artifact kinds whose remote version is newer.
        error: Readable failure reason for ``CHECK_FAILED``.
        from_cooldown: True when the result was served without a remote query.
    """

    status: UpdateStatus
    current: Dict[ArtifactKind, object] = field(default_factory=dict)
    record: Optional[RemoteReleaseRecord] = None
    remote_descriptor: Optional[DatasetDescriptor] = None
    updates: Tuple[ArtifactKind, ...] = ()
    error: Optional[str] = None
    from_cooldown: bool = False

    @property
    def has_update(self) -> bool:
        return self.status is UpdateStatus.HAS_UPDATE


def pending_artifacts(
    remote: DatasetDescriptor, current: Dict[ArtifactKind, object]
) -> Tuple[ArtifactKind, ...]:
    """Artifact kinds whose version component advanced in ``remote``."""

    pending = []
    for spec in ARTIFACTS:
        local_component = current.get(spec.kind, spec.initial_version)
        if spec.is_newer(spec.version_of(remote), local_component):
            pending.append(spec.kind)
    return tuple(pending)


class CooldownGate:
    """Persisted timestamp of the last check that found no update.

    Args:
        state_path: JSON file holding ``{"last_no_update_at": <epoch seconds>}``.
        interval_seconds: Cooldown length.
        clock: Source of epoch seconds, injectable for tests.
    """

    def __init__(
        self,
        state_path: Path,
        interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state_path = Path(state_path)
        self.interval_seconds = interval_seconds
        self._clock = clock

    def last_checked(self) -> Optional[float]:
        try:
            payload = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        value = payload.get("last_no_update_at") if isinstance(payload, dict) else None
        return float(value) if isinstance(value, (int, float)) else None

    def is_cooling_down(self) -> bool:
        last = self.last_checked()
        if last is None:
            return False
        elapsed = self._clock() - last
        return 0 <= elapsed <= self.interval_seconds

    def record_no_update(self) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_path.with_suffix(self.state_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps({"last_no_update_at": self._clock()}), encoding="utf-8")
        os.replace(tmp_path, self.state_path)

    def clear(self) -> None:
        self.state_path.unlink(missing_ok=True)


class UpdateChecker:
    """Decide whether a newer release is available.

    Args:
        resolver: Local arbitration, source of the versions in effect.
        remote: Remote metadata resolver.
        gate: Cooldown gate; a fresh gate restores a ``NO_UPDATE`` state so a
            new process honours the cooldown armed by a previous one.
    """

    def __init__(
        self,
        resolver: DataSourceResolver,
        remote: RemoteMetadataResolver,
        gate: CooldownGate,
    ) -> None:
        self.resolver = resolver
        self.remote = remote
        self.gate = gate
        self._checking = False
        if gate.is_cooling_down():
            self._result = UpdateCheckResult(UpdateStatus.NO_UPDATE, from_cooldown=True)
        else:
            self._result = UpdateCheckResult(UpdateStatus.NOT_CHECKED)

    @property
    def status(self) -> UpdateStatus:
        return self._result.status

    @property
    def result(self) -> UpdateCheckResult:
        return self._result

    def clear_cooldown(self) -> None:
        """Forget the last check so the next one queries the store."""

        self.gate.clear()
        self._result = UpdateCheckResult(UpdateStatus.NOT_CHECKED)
        logger.info("update check cooldown cleared", extra={"stage": "check"})

    async def check(self, force: bool = False) -> UpdateCheckResult:
        """Run one update check.

        Args:
            force: Bypass the cooldown.

        Returns:
            The resulting snapshot. While another check is in progress the
            current ``CHECKING`` snapshot is returned without querying.
        """

        if self._checking:
            return self._result
        if not force and self._result.status is UpdateStatus.NO_UPDATE and self.gate.is_cooling_down():
            logger.info("checked recently with no update, skipping", extra={"stage": "check"})
            return self._result

        self._checking = True
        self._result = UpdateCheckResult(UpdateStatus.CHECKING)
        try:
            self._result = await self._run_check()
        except Exception as exc:
            self._result = UpdateCheckResult(UpdateStatus.CHECK_FAILED, error=str(exc))
            raise
        finally:
            self._checking = False
        return self._result

    async def _run_check(self) -> UpdateCheckResult:
        current: Dict[ArtifactKind, object] = {}
        try:
            current = await asyncio.to_thread(self.resolver.current_versions)
            record = await self.remote.latest_eligible_record()
            if record is None:
                self.gate.record_no_update()
                return UpdateCheckResult(UpdateStatus.NO_UPDATE, current=current)

            descriptor = await self.remote.resolve_descriptor(record.record_id)
        except DatasetSyncError as exc:
            self.gate.clear()
            logger.error(
                "update check failed: %s",
                exc,
                extra={"stage": "check", "status": UpdateStatus.CHECK_FAILED.value},
            )
            return UpdateCheckResult(UpdateStatus.CHECK_FAILED, current=current, error=str(exc))

        updates = pending_artifacts(descriptor, current)
        if updates:
            logger.info(
                "update available: %s (%s)",
                descriptor.version.release_tag,
                ", ".join(kind.value for kind in updates),
                extra={"stage": "check", "record_id": record.record_id},
            )
            return UpdateCheckResult(
                UpdateStatus.HAS_UPDATE,
                current=current,
                record=record,
                remote_descriptor=descriptor,
                updates=updates,
            )

        self.gate.record_no_update()
        logger.info(
            "dataset is current at %s",
            descriptor.version.release_tag,
            extra={"stage": "check", "record_id": record.record_id},
        )
        return UpdateCheckResult(
            UpdateStatus.NO_UPDATE,
            current=current,
            record=record,
            remote_descriptor=descriptor,
        )
