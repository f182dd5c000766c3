# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.pipeline",
#   "purpose": "Single-flight update orchestration: fetch, verify, extract, commit per artifact",
#   "sections": [
#     {"id": "status", "name": "PipelineStatus", "anchor": "class-pipelinestatus", "kind": "class"},
#     {"id": "outcome", "name": "ArtifactOutcome", "anchor": "class-artifactoutcome", "kind": "class"},
#     {"id": "report", "name": "PipelineReport", "anchor": "class-pipelinereport", "kind": "class"},
#     {"id": "pipeline", "name": "UpdatePipeline", "anchor": "class-updatepipeline", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Update orchestration.

For every row of :data:`~NexusSDE.DatasetSync.artifacts.ARTIFACTS` whose
version component advanced, :class:`UpdatePipeline` runs::

    fetch -> verify -> extract (staged sibling) -> commit -> drop download

The commit writes the descriptor into the staged tree and renames it over the
live directory while holding the resolver's :class:`DatasetLock`, so readers
never observe a tree without its descriptor. Once a commit has started,
cancellation of the run is deferred until the commit has finished.

Artifacts are independent: a failure is recorded for that artifact and the
run moves on; artifacts committed earlier in the run stay committed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from filelock import FileLock, Timeout

from .archive import discard_stale_trees, extract_to_staging, swap_into_place
from .artifacts import ARTIFACTS, ArtifactKind, ArtifactSpec
from .cancellation import CancellationToken, OperationCancelled
from .checker import UpdateChecker, UpdateCheckResult
from .descriptor import DESCRIPTOR_FILENAME, DatasetDescriptor, read_descriptor, write_descriptor
from .errors import ConcurrentRunRejected, DatasetSyncError, NoEligibleRelease
from .events import EventLog, UpdateEvent
from .fetcher import ArtifactFetcher
from .integrity import ensure_verified
from .remote import RemoteMetadataResolver
from .resolver import DataSourceResolver
from .staging import StagingArea
from .store import RemoteReleaseRecord

__all__ = [
    "PipelineStatus",
    "ArtifactState",
    "ArtifactOutcome",
    "PipelineReport",
    "UpdatePipeline",
]

logger = logging.getLogger(__name__)

ReloadListener = Callable[[], None]


class PipelineStatus(str, enum.Enum):
    UP_TO_DATE = "up_to_date"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ArtifactState(str, enum.Enum):
    SKIPPED = "skipped"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass(frozen=True)
class ArtifactOutcome:
    """Result of one artifact within a run."""

    kind: ArtifactKind
    state: ArtifactState
    version: Optional[object] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class PipelineReport:
    """Aggregated result of :meth:`UpdatePipeline.run`."""

    status: PipelineStatus
    record_id: Optional[str] = None
    descriptor: Optional[DatasetDescriptor] = None
    outcomes: List[ArtifactOutcome] = field(default_factory=list)
    events: List[UpdateEvent] = field(default_factory=list)
    error: Optional[str] = None

    def outcome(self, kind: ArtifactKind) -> Optional[ArtifactOutcome]:
        for item in self.outcomes:
            if item.kind is kind:
                return item
        return None

    @property
    def failures(self) -> List[ArtifactOutcome]:
        return [item for item in self.outcomes if item.state is ArtifactState.FAILED]

    @property
    def installed(self) -> List[ArtifactOutcome]:
        return [item for item in self.outcomes if item.state is ArtifactState.INSTALLED]


def _summarize(outcomes: List[ArtifactOutcome]) -> PipelineStatus:
    installed = any(item.state is ArtifactState.INSTALLED for item in outcomes)
    failed = any(item.state is ArtifactState.FAILED for item in outcomes)
    if failed:
        return PipelineStatus.PARTIAL if installed else PipelineStatus.FAILED
    if installed:
        return PipelineStatus.SUCCESS
    return PipelineStatus.UP_TO_DATE


class UpdatePipeline:
    """Download and install newer artifacts of the latest eligible release.

    Args:
        resolver: Data source resolver; its lock guards every commit.
        remote: Remote metadata resolver.
        fetcher: Artifact downloader writing into ``staging``.
        staging: Scratch directory, cleared at the start of every run.
        checker: Update checker whose cooldown is cleared after a full success.
        events: Event log receiving the run's event stream.
        lock_path: Lock file making runs single-flight across processes too.
    """

    def __init__(
        self,
        resolver: DataSourceResolver,
        remote: RemoteMetadataResolver,
        fetcher: ArtifactFetcher,
        staging: StagingArea,
        *,
        checker: Optional[UpdateChecker] = None,
        events: Optional[EventLog] = None,
        lock_path: Optional[Path] = None,
    ) -> None:
        self.resolver = resolver
        self.remote = remote
        self.fetcher = fetcher
        self.staging = staging
        self.checker = checker
        self.events = events or EventLog()
        self._run_lock = threading.Lock()
        self._lock_path = lock_path
        self._reload_listeners: List[ReloadListener] = []

    def add_reload_listener(self, listener: ReloadListener) -> None:
        """Register a callable invoked after a run installed every pending artifact."""
        self._reload_listeners.append(listener)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def run(self, check_result: Optional[UpdateCheckResult] = None) -> PipelineReport:
        """Run one update.

        Args:
            check_result: Result of a preceding check; its record and
                descriptor are reused instead of querying the store again.

        Returns:
            Report whose status is ``UP_TO_DATE``, ``SUCCESS``, ``PARTIAL``,
            or ``FAILED``.

        Raises:
            ConcurrentRunRejected: If another run is in progress.
        """

        if not self._run_lock.acquire(blocking=False):
            raise ConcurrentRunRejected("An update is already running")
        process_lock: Optional[FileLock] = None
        try:
            if self._lock_path is not None:
                self._lock_path.parent.mkdir(parents=True, exist_ok=True)
                process_lock = FileLock(str(self._lock_path), timeout=0)
                try:
                    process_lock.acquire()
                except Timeout as exc:
                    process_lock = None
                    raise ConcurrentRunRejected(
                        "An update is already running in another process"
                    ) from exc
            self.events.clear()
            report = await self._run(check_result)
            report.events = self.events.events
        finally:
            if process_lock is not None:
                process_lock.release()
            self._run_lock.release()
        return report

    async def _run(self, check_result: Optional[UpdateCheckResult]) -> PipelineReport:
        self.events.info("preparing update")
        await asyncio.to_thread(self._prepare_directories)

        try:
            record, descriptor = await self._resolve_release(check_result)
        except NoEligibleRelease as exc:
            self.events.info(f"already current ({exc})")
            return PipelineReport(PipelineStatus.UP_TO_DATE)
        except DatasetSyncError as exc:
            self.events.error(f"could not resolve release: {exc}")
            return PipelineReport(PipelineStatus.FAILED, error=str(exc))

        self.events.info(f"latest release {descriptor.version.release_tag} (record {record.record_id})")
        current = await asyncio.to_thread(self.resolver.current_versions)

        outcomes: List[ArtifactOutcome] = []
        for spec in ARTIFACTS:
            outcomes.append(await self._update_artifact(spec, record, descriptor, current))

        status = _summarize(outcomes)
        report = PipelineReport(status, record_id=record.record_id, descriptor=descriptor, outcomes=outcomes)
        if status is PipelineStatus.SUCCESS:
            self.events.success(f"dataset updated to {descriptor.version.release_tag}")
            if self.checker is not None:
                self.checker.clear_cooldown()
            for listener in list(self._reload_listeners):
                listener()
        elif status is PipelineStatus.UP_TO_DATE:
            self.events.info("all artifacts are current")
        elif status is PipelineStatus.PARTIAL:
            failed = ", ".join(item.kind.value for item in report.failures)
            self.events.warning(f"update partially applied; failed: {failed}")
        else:
            self.events.error("update failed; previous dataset remains in use")
        return report

    def _prepare_directories(self) -> None:
        self.staging.clear()
        for spec in ARTIFACTS:
            discard_stale_trees(self.resolver.local.artifact_dir(spec.kind))

    async def _resolve_release(
        self, check_result: Optional[UpdateCheckResult]
    ) -> Tuple[RemoteReleaseRecord, DatasetDescriptor]:
        if (
            check_result is not None
            and check_result.record is not None
            and check_result.remote_descriptor is not None
        ):
            return check_result.record, check_result.remote_descriptor
        record = await self.remote.require_latest_eligible()
        descriptor = await self.remote.resolve_descriptor(record.record_id)
        return record, descriptor

    async def _update_artifact(
        self,
        spec: ArtifactSpec,
        record: RemoteReleaseRecord,
        descriptor: DatasetDescriptor,
        current: Dict[ArtifactKind, object],
    ) -> ArtifactOutcome:
        name = spec.kind.value
        remote_version = spec.version_of(descriptor)
        local_version = current.get(spec.kind, spec.initial_version)
        if not spec.is_newer(remote_version, local_version):
            self.events.info(f"current at {local_version}, skipping", artifact=name)
            return ArtifactOutcome(spec.kind, ArtifactState.SKIPPED, version=local_version)

        archive: Optional[Path] = None
        staged: Optional[Path] = None
        try:
            self.events.info(f"downloading {local_version} -> {remote_version}", artifact=name)
            archive = await self.fetcher.fetch(
                record.record_id,
                spec.kind,
                lambda fraction: self.events.progress("downloading", fraction, artifact=name),
            )

            self.events.info("verifying SHA-256", artifact=name)
            await asyncio.to_thread(
                ensure_verified, archive, descriptor.content_hash(spec.kind), artifact=spec.archive_name
            )
            self.events.success("checksum verified", artifact=name)

            self.events.info("extracting", artifact=name)
            staged = await self._extract(spec, archive)

            installed = await self._descriptor_to_install(spec, record, descriptor)
            await self._commit(spec, staged, installed)
            self.events.success(f"updated to {remote_version}", artifact=name)
            return ArtifactOutcome(spec.kind, ArtifactState.INSTALLED, version=remote_version)
        except (DatasetSyncError, OSError) as exc:
            self.events.error(f"{exc}", artifact=name)
            return ArtifactOutcome(
                spec.kind,
                ArtifactState.FAILED,
                version=local_version,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            if archive is not None:
                archive.unlink(missing_ok=True)
            # a committed tree has been renamed away from its staged path
            if staged is not None and staged.exists():
                shutil.rmtree(staged, ignore_errors=True)

    async def _extract(self, spec: ArtifactSpec, archive: Path) -> Path:
        token = CancellationToken()
        destination = self.resolver.local.artifact_dir(spec.kind)
        name = spec.kind.value
        work = asyncio.ensure_future(
            asyncio.to_thread(
                extract_to_staging,
                archive,
                destination,
                on_progress=lambda fraction: self.events.progress("extracting", fraction, artifact=name),
                cancellation=token,
            )
        )
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            token.cancel()
            try:
                leftover = await work
            except (OperationCancelled, DatasetSyncError, OSError):
                leftover = None
            if leftover is not None:
                shutil.rmtree(leftover, ignore_errors=True)
            raise

    async def _descriptor_to_install(
        self,
        spec: ArtifactSpec,
        record: RemoteReleaseRecord,
        resolved: DatasetDescriptor,
    ) -> DatasetDescriptor:
        """Pick the descriptor written next to the committed tree.

        Artifacts flagged ``saves_published_descriptor`` store the record's
        published descriptor file; when it cannot be fetched or decoded the
        already resolved descriptor is stored instead.
        """

        if not spec.saves_published_descriptor:
            return resolved
        name = spec.kind.value
        path: Optional[Path] = None
        try:
            path = await self.remote.fetch_descriptor_file(record.record_id)
            published = await asyncio.to_thread(read_descriptor, path)
        except DatasetSyncError as exc:
            self.events.warning(f"published descriptor unavailable, using resolved metadata: {exc}", artifact=name)
            return resolved
        finally:
            if path is not None:
                path.unlink(missing_ok=True)
        if (
            published.version != resolved.version
            or published.icon_version != resolved.icon_version
            or published.content_hashes != resolved.content_hashes
        ):
            self.events.warning("published descriptor disagrees with record metadata, using record metadata", artifact=name)
            return resolved
        return published

    def _install(self, spec: ArtifactSpec, staged: Path, descriptor: DatasetDescriptor) -> None:
        with self.resolver.lock:
            write_descriptor(staged / DESCRIPTOR_FILENAME, descriptor)
            swap_into_place(staged, self.resolver.local.artifact_dir(spec.kind))
        logger.info(
            "committed %s",
            spec.directory,
            extra={"stage": "commit", "artifact": spec.kind.value},
        )

    async def _commit(self, spec: ArtifactSpec, staged: Path, descriptor: DatasetDescriptor) -> None:
        commit = asyncio.ensure_future(asyncio.to_thread(self._install, spec, staged, descriptor))
        try:
            await asyncio.shield(commit)
        except asyncio.CancelledError:
            await commit
            raise
