"""SHA-256 verification of staged archives."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from NexusSDE.DatasetSync.errors import IntegrityMismatch
from NexusSDE.DatasetSync.integrity import ensure_verified, sha256_file, verify


def test_sha256_file_streams_large_files(tmp_path: Path) -> None:
    payload = b"x" * ((1 << 20) * 2 + 17)
    target = tmp_path / "big.bin"
    target.write_bytes(payload)

    assert sha256_file(target) == hashlib.sha256(payload).hexdigest()


def test_verify_is_case_insensitive(tmp_path: Path) -> None:
    target = tmp_path / "sde.zip"
    target.write_bytes(b"archive")
    digest = hashlib.sha256(b"archive").hexdigest()

    assert verify(target, digest)
    assert verify(target, digest.upper())
    assert not verify(target, "0" * 64)


def test_ensure_verified_reports_both_digests(tmp_path: Path) -> None:
    target = tmp_path / "icons.zip"
    target.write_bytes(b"tampered")

    with pytest.raises(IntegrityMismatch) as excinfo:
        ensure_verified(target, "0" * 64, artifact="icons.zip")

    error = excinfo.value
    assert error.artifact == "icons.zip"
    assert error.expected == "0" * 64
    assert error.actual == hashlib.sha256(b"tampered").hexdigest()


def test_ensure_verified_returns_digest(tmp_path: Path) -> None:
    target = tmp_path / "sde.zip"
    target.write_bytes(b"ok")
    digest = hashlib.sha256(b"ok").hexdigest()

    assert ensure_verified(target, digest.upper(), artifact="sde.zip") == digest
