"""SHA-256 verification of downloaded archives."""

from __future__ import annotations

import hashlib
from pathlib import Path

from .errors import IntegrityMismatch

__all__ = ["sha256_file", "verify", "ensure_verified"]

_CHUNK_SIZE = 1 << 20


def sha256_file(path: Path) -> str:
    """Compute the SHA-256 digest for the provided file."""

    hasher = hashlib.sha256()
    with path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify(path: Path, expected_hex: str) -> bool:
    """Return True when ``path`` hashes to ``expected_hex`` (case-insensitive).

    Examples:
        >>> import tempfile
        >>> p = Path(tempfile.mkstemp()[1]); _ = p.write_bytes(b"")
        >>> verify(p, "E3B0C44298FC1C149AFBF4C8996FB92427AE41E4649B934CA495991B7852B855")
        True
    """

    return sha256_file(path) == expected_hex.strip().lower()


def ensure_verified(path: Path, expected_hex: str, *, artifact: str) -> str:
    """Verify ``path`` and return its digest, raising :class:`IntegrityMismatch` otherwise."""

    actual = sha256_file(path)
    if actual != expected_hex.strip().lower():
        raise IntegrityMismatch(artifact, expected_hex, actual)
    return actual
