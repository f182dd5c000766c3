# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.errors",
#   "purpose": "Exception hierarchy for dataset resolution, release checks, and updates",
#   "sections": [
#     {"id": "base", "name": "DatasetSyncError", "anchor": "class-datasetsyncerror", "kind": "class"},
#     {"id": "transport", "name": "TransportError", "anchor": "class-transporterror", "kind": "class"},
#     {"id": "pipeline", "name": "Pipeline errors", "anchor": "PIPE", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across release checks, downloads, and commits.

The synchronisation pipeline spans remote record queries, artifact downloads,
integrity checks, archive extraction, and the final swap of a dataset tree.
Each failure mode gets its own subclass so callers (the CLI, the pipeline's
per-artifact bookkeeping) can react to categories without string matching.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "DatasetSyncError",
    "ConfigError",
    "UserConfigError",
    "TransportError",
    "RecordFieldMissing",
    "NoEligibleRelease",
    "MetadataUnavailable",
    "DescriptorError",
    "IntegrityMismatch",
    "ExtractionFailure",
    "ConcurrentRunRejected",
]


class DatasetSyncError(RuntimeError):
    """Base exception for dataset synchronisation failures."""


class ConfigError(DatasetSyncError):
    """Raised when configuration inputs cannot be located or parsed."""


class UserConfigError(ConfigError):
    """Raised when user-supplied configuration values are invalid."""


class TransportError(DatasetSyncError):
    """Raised when the remote record store cannot be reached or answers badly."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after = retry_after


class RecordFieldMissing(TransportError):
    """Raised when a release record does not carry the requested asset field."""

    def __init__(self, record_id: str, field: str) -> None:
        super().__init__(
            f"Record {record_id} has no asset field '{field}'",
            status_code=404,
            retryable=False,
        )
        self.record_id = record_id
        self.field = field


class NoEligibleRelease(DatasetSyncError):
    """Raised when an update is requested but no record matches the client version."""


class MetadataUnavailable(DatasetSyncError):
    """Raised when neither inline nor file metadata of a record can be decoded."""

    def __init__(self, record_id: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Metadata for record {record_id} is unavailable{detail}")
        self.record_id = record_id


class DescriptorError(DatasetSyncError):
    """Raised when a dataset descriptor document is missing fields or malformed."""


class IntegrityMismatch(DatasetSyncError):
    """Raised when a downloaded artifact does not hash to its published digest."""

    def __init__(self, artifact: str, expected: str, actual: str) -> None:
        super().__init__(
            f"SHA-256 mismatch for {artifact}: expected {expected}, got {actual}"
        )
        self.artifact = artifact
        self.expected = expected
        self.actual = actual


class ExtractionFailure(DatasetSyncError):
    """Raised when an archive is corrupt, unsafe, or expands to nothing."""


class ConcurrentRunRejected(DatasetSyncError):
    """Raised when an update is started while another one is still running."""
