"""Artifact downloads into the staging area."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .artifacts import ArtifactKind, artifact_spec
from .staging import StagingArea
from .store import RecordStore

__all__ = ["ArtifactFetcher", "ProgressTracker"]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_LOG_PERCENT_STEP = 10.0


class ProgressTracker:
    """Turn byte counts into monotonic fractions in ``[0, 1]``.

    Unknown totals report nothing until :meth:`finish`, which always reports
    1.0.
    """

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        *,
        artifact: str = "",
    ) -> None:
        self._callback = callback
        self._artifact = artifact
        self._last = 0.0
        self._next_log = _LOG_PERCENT_STEP

    def update(self, done: int, total: Optional[int]) -> None:
        if not total or total <= 0:
            return
        fraction = min(1.0, max(0.0, done / total))
        if fraction <= self._last:
            return
        self._last = fraction
        if fraction * 100 >= self._next_log:
            logger.debug(
                "download progress",
                extra={"stage": "download", "artifact": self._artifact, "progress": round(fraction, 3)},
            )
            while self._next_log <= fraction * 100:
                self._next_log += _LOG_PERCENT_STEP
        if self._callback is not None:
            self._callback(fraction)

    def finish(self) -> None:
        self._last = 1.0
        if self._callback is not None:
            self._callback(1.0)


class ArtifactFetcher:
    """Download a release artifact into the staging area.

    Downloads are neither resumed nor retried: any failure propagates to the
    caller unchanged and leaves no file behind.
    """

    def __init__(self, store: RecordStore, staging: StagingArea) -> None:
        self.store = store
        self.staging = staging

    async def fetch(
        self,
        record_id: str,
        kind: ArtifactKind,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Download artifact ``kind`` of ``record_id`` and return the staged path.

        Args:
            record_id: Release record to download from.
            kind: Artifact kind; selects the asset field and staging file name.
            on_progress: Receives monotonic fractions, finishing with 1.0.

        Returns:
            Path of the complete download inside the staging area.
        """

        spec = artifact_spec(kind)
        self.staging.ensure()
        destination = self.staging.archive_path(spec.kind)
        destination.unlink(missing_ok=True)
        tracker = ProgressTracker(on_progress, artifact=spec.kind.value)
        logger.info(
            "downloading %s",
            spec.archive_name,
            extra={"stage": "download", "artifact": spec.kind.value, "record_id": record_id},
        )
        size = await self.store.download_asset(
            record_id, spec.remote_field, destination, tracker.update
        )
        tracker.finish()
        logger.info(
            "downloaded %s (%d bytes)",
            spec.archive_name,
            size,
            extra={"stage": "download", "artifact": spec.kind.value, "record_id": record_id},
        )
        return destination
