# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.resolver",
#   "purpose": "Arbitrate between baseline and local datasets on every resource lookup",
#   "sections": [
#     {"id": "datasetlock", "name": "DatasetLock", "anchor": "class-datasetlock", "kind": "class"},
#     {"id": "authority", "name": "Authority", "anchor": "class-authority", "kind": "class"},
#     {"id": "resolver", "name": "DataSourceResolver", "anchor": "class-datasourceresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Data source arbitration.

Every lookup re-evaluates which dataset owns the requested resource: the
local copy of an artifact is authoritative when its descriptor is readable and
its version is at least the baseline's. A local tree that lost that contest
(missing or corrupt descriptor, or a baseline that moved past it after an
application upgrade) is deleted on the spot.

Nothing is cached between calls, so the answer always reflects the files on
disk at the time of the call. Resolution, pipeline commits, and resets share a
single :class:`DatasetLock`.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, Optional

from .artifacts import ARTIFACTS, ArtifactKind, ResourceKind, artifact_spec, owning_artifact
from .datasets import BaselineDataset, LocalDataset
from .descriptor import DatasetDescriptor

__all__ = ["DatasetLock", "Authority", "AuthorityDecision", "DataSourceResolver"]

logger = logging.getLogger(__name__)


class DatasetLock:
    """Coarse re-entrant lock guarding the local dataset.

    Usable as a context manager; re-entrant so a commit may resolve paths
    while holding it.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def __enter__(self) -> "DatasetLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


class Authority(str, enum.Enum):
    BASELINE = "baseline"
    LOCAL = "local"


@dataclass(frozen=True)
class AuthorityDecision:
    """Which dataset owns an artifact and the descriptor backing that choice."""

    kind: ArtifactKind
    authority: Authority
    descriptor: Optional[DatasetDescriptor]
    reclaimed_bytes: int = 0


class DataSourceResolver:
    """Resolve dataset-relative resource paths against baseline and local roots.

    Args:
        baseline: Dataset shipped with the application; never modified.
        local: Downloaded dataset; trees may be deleted by the resolver.
        lock: Lock shared with the update pipeline.

    Examples:
        >>> resolver = DataSourceResolver(BaselineDataset(Path("/app/sde")), LocalDataset(Path("/data/local")))
        >>> resolver.resolve_path(ResourceKind.DB, "item_db_en.sqlite")  # doctest: +SKIP
        PosixPath('/app/sde/sde/db/item_db_en.sqlite')
    """

    def __init__(
        self,
        baseline: BaselineDataset,
        local: LocalDataset,
        lock: Optional[DatasetLock] = None,
    ) -> None:
        self.baseline = baseline
        self.local = local
        self.lock = lock or DatasetLock()

    def authority(self, kind: ArtifactKind) -> AuthorityDecision:
        """Decide which dataset owns ``kind``, deleting a superseded local tree."""

        spec = artifact_spec(kind)
        with self.lock:
            baseline_descriptor = self.baseline.descriptor_for(spec.kind)
            if not self.local.has_artifact(spec.kind):
                return AuthorityDecision(spec.kind, Authority.BASELINE, baseline_descriptor)

            local_descriptor = self.local.descriptor_for(spec.kind)
            if local_descriptor is not None:
                if baseline_descriptor is None:
                    return AuthorityDecision(spec.kind, Authority.LOCAL, local_descriptor)
                baseline_component = spec.version_of(baseline_descriptor)
                local_component = spec.version_of(local_descriptor)
                if not spec.is_newer(baseline_component, local_component):
                    return AuthorityDecision(spec.kind, Authority.LOCAL, local_descriptor)
                reason = "baseline is newer"
            else:
                reason = "local descriptor missing or unreadable"

            reclaimed = self.local.remove_artifact(spec.kind)
            logger.info(
                "discarded local %s tree (%s), reclaimed %d bytes",
                spec.kind.value,
                reason,
                reclaimed,
                extra={"stage": "resolve", "artifact": spec.kind.value},
            )
            return AuthorityDecision(
                spec.kind, Authority.BASELINE, baseline_descriptor, reclaimed_bytes=reclaimed
            )

    def authoritative_descriptor(self, kind: ArtifactKind) -> Optional[DatasetDescriptor]:
        return self.authority(kind).descriptor

    def current_versions(self) -> Dict[ArtifactKind, object]:
        """Version component currently in effect for each artifact kind.

        Unreadable descriptors count as version zero so that any published
        release is considered newer.
        """

        versions: Dict[ArtifactKind, object] = {}
        for spec in ARTIFACTS:
            descriptor = self.authoritative_descriptor(spec.kind)
            if descriptor is not None:
                versions[spec.kind] = spec.version_of(descriptor)
            else:
                versions[spec.kind] = spec.initial_version
        return versions

    def resolve_path(self, resource: ResourceKind, name: str) -> Path:
        """Return the path of ``name`` in the dataset authoritative for ``resource``.

        Args:
            resource: Resource kind (``db``, ``localization``, ``maps``, ``icons``).
            name: File name relative to the resource directory.

        Returns:
            Local path when the local copy is authoritative and holds the file,
            otherwise the baseline path (which is returned even if absent).

        Raises:
            ValueError: If ``name`` escapes the resource directory.
        """

        kind, subpath = owning_artifact(resource)
        relative = _safe_relative(name)
        with self.lock:
            decision = self.authority(kind)
            if decision.authority is Authority.LOCAL:
                candidate = self.local.root.joinpath(*subpath.parts, *relative.parts)
                if candidate.exists():
                    return candidate
            return self.baseline.root.joinpath(*subpath.parts, *relative.parts)

    def reset(self) -> int:
        """Delete the entire local dataset; the baseline becomes authoritative."""

        with self.lock:
            reclaimed = self.local.reset()
        logger.info(
            "local dataset reset, reclaimed %d bytes",
            reclaimed,
            extra={"stage": "reset"},
        )
        return reclaimed


def _safe_relative(name: str) -> PurePosixPath:
    relative = PurePosixPath(name.replace("\\", "/"))
    if not name or relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"Resource name must be a relative path inside the dataset: {name!r}")
    return relative
