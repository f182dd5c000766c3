"""Table of managed artifact kinds.

Every release carries one archive per :class:`ArtifactKind`. The rest of the
package (resolver, checker, pipeline) iterates :data:`ARTIFACTS` instead of
hard coding a database step and an icon step, so adding a kind means adding a
row here.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Callable, Dict, Tuple, Union

from .versioning import ZERO_VERSION, VersionTuple, icon_is_newer

if TYPE_CHECKING:  # pragma: no cover
    from .descriptor import DatasetDescriptor

__all__ = [
    "ArtifactKind",
    "ArtifactSpec",
    "ARTIFACTS",
    "ResourceKind",
    "artifact_spec",
    "owning_artifact",
]


class ArtifactKind(str, enum.Enum):
    """Closed set of archives published with a release."""

    DATABASE = "database"
    ICONS = "icons"


VersionComponent = Union[VersionTuple, int]


@dataclass(frozen=True)
class ArtifactSpec:
    """How one artifact kind is fetched, verified, and laid out on disk.

    Attributes:
        kind: Artifact kind described by this row.
        remote_field: Asset field on the release record holding the archive.
        archive_name: File name used in staging and in published checksum maps.
        directory: Directory below a dataset root the archive expands into.
        hash_key: Descriptor key carrying the published SHA-256 digest.
        version_of: Extracts the version component this artifact follows.
        is_newer: ``is_newer(remote, local)`` on two version components.
        initial_version: Version assumed when no readable descriptor exists.
        saves_published_descriptor: Whether the record's descriptor file is
            stored next to the extracted tree.
    """

    kind: ArtifactKind
    remote_field: str
    archive_name: str
    directory: str
    hash_key: str
    version_of: Callable[["DatasetDescriptor"], VersionComponent]
    is_newer: Callable[[VersionComponent, VersionComponent], bool]
    initial_version: VersionComponent
    saves_published_descriptor: bool = False


ARTIFACTS: Tuple[ArtifactSpec, ...] = (
    ArtifactSpec(
        kind=ArtifactKind.ICONS,
        remote_field="icons_file",
        archive_name="icons.zip",
        directory="icons",
        hash_key="icon_sha256",
        version_of=lambda descriptor: descriptor.icon_version,
        is_newer=lambda remote, local: icon_is_newer(remote, local),  # type: ignore[arg-type]
        initial_version=0,
        saves_published_descriptor=True,
    ),
    ArtifactSpec(
        kind=ArtifactKind.DATABASE,
        remote_field="sde_file",
        archive_name="sde.zip",
        directory="sde",
        hash_key="sde_sha256",
        version_of=lambda descriptor: descriptor.version,
        is_newer=lambda remote, local: remote > local,  # type: ignore[operator]
        initial_version=ZERO_VERSION,
    ),
)

_BY_KIND: Dict[ArtifactKind, ArtifactSpec] = {spec.kind: spec for spec in ARTIFACTS}


def artifact_spec(kind: ArtifactKind) -> ArtifactSpec:
    """Return the table row for ``kind``."""
    return _BY_KIND[ArtifactKind(kind)]


class ResourceKind(str, enum.Enum):
    """Kinds of files callers look up through the data source resolver."""

    DB = "db"
    LOCALIZATION = "localization"
    MAPS = "maps"
    ICONS = "icons"


# resource kind -> (owning artifact, path below the dataset root)
_RESOURCE_LAYOUT: Dict[ResourceKind, Tuple[ArtifactKind, PurePosixPath]] = {
    ResourceKind.DB: (ArtifactKind.DATABASE, PurePosixPath("sde/db")),
    ResourceKind.LOCALIZATION: (ArtifactKind.DATABASE, PurePosixPath("sde/localization")),
    ResourceKind.MAPS: (ArtifactKind.DATABASE, PurePosixPath("sde/maps")),
    ResourceKind.ICONS: (ArtifactKind.ICONS, PurePosixPath("icons")),
}


def owning_artifact(resource: ResourceKind) -> Tuple[ArtifactKind, PurePosixPath]:
    """Return the artifact that owns ``resource`` and its relative directory."""
    return _RESOURCE_LAYOUT[ResourceKind(resource)]
