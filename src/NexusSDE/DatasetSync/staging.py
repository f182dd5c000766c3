"""Scratch directory for downloads awaiting verification."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .artifacts import ArtifactKind, artifact_spec
from .datasets import directory_size

__all__ = ["StagingArea"]

logger = logging.getLogger(__name__)


class StagingArea:
    """Directory receiving downloaded archives before they are verified.

    Files here are never read by the resolver; the whole directory is cleared
    at the start of every update run.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def ensure(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def archive_path(self, kind: ArtifactKind) -> Path:
        return self.root / artifact_spec(kind).archive_name

    def descriptor_path(self, record_id: str) -> Path:
        safe_id = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in record_id)
        return self.root / f"{safe_id}-metadata.json"

    def clear(self) -> int:
        """Remove everything in the staging directory; return bytes reclaimed."""

        if not self.root.exists():
            self.ensure()
            return 0
        reclaimed = directory_size(self.root)
        shutil.rmtree(self.root)
        self.ensure()
        if reclaimed:
            logger.debug(
                "staging cleared, reclaimed %d bytes",
                reclaimed,
                extra={"stage": "staging"},
            )
        return reclaimed
