# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.archive",
#   "purpose": "Safe zip extraction into a staged sibling directory and atomic directory swap",
#   "sections": [
#     {"id": "validate", "name": "_validate_member_path", "anchor": "function-validate-member-path", "kind": "function"},
#     {"id": "extract-to-staging", "name": "extract_to_staging", "anchor": "function-extract-to-staging", "kind": "function"},
#     {"id": "swap", "name": "swap_into_place", "anchor": "function-swap-into-place", "kind": "function"},
#     {"id": "extract", "name": "extract", "anchor": "function-extract", "kind": "function"},
#     {"id": "cleanup", "name": "discard_stale_trees", "anchor": "function-discard-stale-trees", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Archive extraction for dataset artifacts.

Archives never expand directly into a live dataset directory. Members are
written to a hidden sibling (``.<name>.staged-<id>``) which is renamed over the
destination only once extraction finished and produced at least one file.
Readers therefore see either the previous tree or the new one, never a
half-written mixture.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import uuid
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .errors import ExtractionFailure

__all__ = [
    "ProgressCallback",
    "extract",
    "extract_to_staging",
    "swap_into_place",
    "discard_stale_trees",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_STAGED_MARKER = ".staged-"
_BACKUP_MARKER = ".old-"
_COPY_CHUNK = 1 << 20
MAX_COMPRESSION_RATIO = 100.0


def _validate_member_path(member_name: str) -> Path:
    """Validate archive member paths to prevent traversal attacks."""

    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute() or (relative.parts and relative.parts[0].endswith(":")):
        raise ExtractionFailure(f"Unsafe absolute path detected in archive: {member_name}")
    parts = [part for part in relative.parts if part != "."]
    if not parts:
        raise ExtractionFailure(f"Empty path detected in archive: {member_name}")
    if any(part in {"", ".."} for part in parts):
        raise ExtractionFailure(f"Unsafe path detected in archive: {member_name}")
    return Path(*parts)


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _check_compression_ratio(archive: Path, members: List[zipfile.ZipInfo], limit: float) -> None:
    """Reject archives that expand beyond ``limit`` times their compressed size."""

    total_uncompressed = sum(int(info.file_size) for info in members if not info.is_dir())
    compressed_size = max(
        archive.stat().st_size,
        sum(int(info.compress_size) for info in members),
    )
    if compressed_size <= 0:
        return
    ratio = total_uncompressed / float(compressed_size)
    if ratio > limit:
        logger.error(
            "archive compression ratio too high",
            extra={
                "stage": "extract",
                "extra_fields": {
                    "archive": archive.name,
                    "ratio": round(ratio, 2),
                    "compressed_bytes": compressed_size,
                    "uncompressed_bytes": total_uncompressed,
                    "limit": limit,
                },
            },
        )
        raise ExtractionFailure(
            f"Archive {archive.name} expands to {total_uncompressed} bytes, "
            f"exceeding {limit}:1 compression ratio"
        )


class _Progress:
    """Clamp and de-duplicate fractional progress reports."""

    def __init__(self, callback: Optional[ProgressCallback]) -> None:
        self._callback = callback
        self._last = 0.0

    def report(self, fraction: float) -> None:
        value = min(1.0, max(self._last, fraction))
        if self._callback is not None and (value > self._last or value == 1.0):
            self._callback(value)
        self._last = value


def _sibling(destination: Path, marker: str) -> Path:
    return destination.with_name(f".{destination.name}{marker}{uuid.uuid4().hex[:8]}")


def extract_to_staging(
    archive: Path,
    destination: Path,
    *,
    on_progress: Optional[ProgressCallback] = None,
    cancellation: Optional[CancellationToken] = None,
    max_compression_ratio: float = MAX_COMPRESSION_RATIO,
) -> Path:
    """Expand ``archive`` into a fresh sibling directory of ``destination``.

    Args:
        archive: Zip archive to expand.
        destination: Directory the archive is meant to replace eventually.
        on_progress: Receives monotonic fractions in ``[0, 1]``, ending at 1.0.
        cancellation: Polled between members; a cancelled token aborts the
            extraction and removes the partial tree.
        max_compression_ratio: Upper bound on uncompressed size divided by
            archive size.

    Returns:
        Path of the staged directory holding the extracted members.

    Raises:
        ExtractionFailure: If the archive is corrupt, contains unsafe members,
            exceeds ``max_compression_ratio``, or yields no files.
        OperationCancelled: If ``cancellation`` fired during extraction.
    """

    destination.parent.mkdir(parents=True, exist_ok=True)
    staged = _sibling(destination, _STAGED_MARKER)
    staged.mkdir()
    progress = _Progress(on_progress)
    try:
        try:
            with zipfile.ZipFile(archive) as bundle:
                members = bundle.infolist()
                _check_compression_ratio(archive, members, max_compression_ratio)
                total_bytes = sum(info.file_size for info in members) or len(members) or 1
                done = 0
                files_written = 0
                for info in members:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    relative = _validate_member_path(info.filename)
                    if _is_symlink(info):
                        raise ExtractionFailure(
                            f"Symbolic link member rejected in archive: {info.filename}"
                        )
                    target = staged / relative
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with bundle.open(info) as source, target.open("wb") as sink:
                            shutil.copyfileobj(source, sink, _COPY_CHUNK)
                        files_written += 1
                    done += info.file_size if info.file_size else 1
                    progress.report(done / total_bytes)
        except zipfile.BadZipFile as exc:
            raise ExtractionFailure(f"Archive {archive.name} is corrupt: {exc}") from exc
        except OSError as exc:
            raise ExtractionFailure(f"Failed to extract {archive.name}: {exc}") from exc
        if files_written == 0:
            raise ExtractionFailure(f"Archive {archive.name} contains no files")
    except BaseException:
        shutil.rmtree(staged, ignore_errors=True)
        raise
    progress.report(1.0)
    logger.debug(
        "archive staged",
        extra={"stage": "extract", "extra_fields": {"archive": archive.name, "files": files_written}},
    )
    return staged


def swap_into_place(staged: Path, destination: Path) -> None:
    """Install ``staged`` at ``destination`` using directory renames.

    The previous tree, when present, is renamed aside first and removed once
    the staged tree is in place. If the second rename fails the previous tree
    is restored before the error propagates.
    """

    backup: Optional[Path] = None
    if destination.exists():
        backup = _sibling(destination, _BACKUP_MARKER)
        os.rename(destination, backup)
    try:
        os.rename(staged, destination)
    except OSError:
        if backup is not None:
            os.rename(backup, destination)
        raise
    if backup is not None:
        shutil.rmtree(backup, ignore_errors=True)


def extract(
    archive: Path,
    destination: Path,
    on_progress: Optional[ProgressCallback] = None,
    *,
    cancellation: Optional[CancellationToken] = None,
) -> None:
    """Extract ``archive`` and atomically replace ``destination`` with the result."""

    staged = extract_to_staging(
        archive, destination, on_progress=on_progress, cancellation=cancellation
    )
    try:
        swap_into_place(staged, destination)
    except OSError as exc:
        shutil.rmtree(staged, ignore_errors=True)
        raise ExtractionFailure(f"Failed to install {destination.name}: {exc}") from exc


def discard_stale_trees(destination: Path) -> int:
    """Remove staged or backup siblings left behind by an interrupted run.

    Returns:
        Number of directories removed.
    """

    parent = destination.parent
    if not parent.is_dir():
        return 0
    removed = 0
    prefixes = (f".{destination.name}{_STAGED_MARKER}", f".{destination.name}{_BACKUP_MARKER}")
    for candidate in parent.iterdir():
        if candidate.is_dir() and candidate.name.startswith(prefixes):
            shutil.rmtree(candidate, ignore_errors=True)
            removed += 1
    return removed
