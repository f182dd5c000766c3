"""On-disk dataset roots: the shipped baseline and the downloaded local copy."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .artifacts import ArtifactKind, artifact_spec
from .descriptor import DESCRIPTOR_FILENAME, DatasetDescriptor, try_read_descriptor

__all__ = ["BaselineDataset", "LocalDataset", "directory_size"]

logger = logging.getLogger(__name__)


def directory_size(path: Path) -> int:
    """Return the total size in bytes of regular files below ``path``."""

    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).stat().st_size
            except OSError:
                continue
    return total


class BaselineDataset:
    """Read-only dataset shipped with the application.

    One descriptor at the root covers every artifact directory.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def descriptor_path(self) -> Path:
        return self.root / DESCRIPTOR_FILENAME

    def descriptor(self) -> Optional[DatasetDescriptor]:
        return try_read_descriptor(self.descriptor_path)

    def descriptor_for(self, kind: ArtifactKind) -> Optional[DatasetDescriptor]:
        return self.descriptor()

    def artifact_dir(self, kind: ArtifactKind) -> Path:
        return self.root / artifact_spec(kind).directory

    def __repr__(self) -> str:
        return f"BaselineDataset(root={str(self.root)!r})"


class LocalDataset:
    """Writable dataset assembled from downloaded artifacts.

    Each artifact directory is committed independently and carries its own
    descriptor sidecar, so the database and icon trees may come from different
    releases.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def artifact_dir(self, kind: ArtifactKind) -> Path:
        return self.root / artifact_spec(kind).directory

    def descriptor_path(self, kind: ArtifactKind) -> Path:
        return self.artifact_dir(kind) / DESCRIPTOR_FILENAME

    def has_artifact(self, kind: ArtifactKind) -> bool:
        return self.artifact_dir(kind).is_dir()

    def descriptor_for(self, kind: ArtifactKind) -> Optional[DatasetDescriptor]:
        return try_read_descriptor(self.descriptor_path(kind))

    def remove_artifact(self, kind: ArtifactKind) -> int:
        """Delete the tree of ``kind`` and return the number of bytes reclaimed."""

        target = self.artifact_dir(kind)
        if not target.exists():
            return 0
        reclaimed = directory_size(target)
        shutil.rmtree(target)
        return reclaimed

    def reset(self) -> int:
        """Delete the whole local root and return the number of bytes reclaimed."""

        if not self.root.exists():
            return 0
        reclaimed = directory_size(self.root)
        shutil.rmtree(self.root)
        return reclaimed

    def __repr__(self) -> str:
        return f"LocalDataset(root={str(self.root)!r})"
