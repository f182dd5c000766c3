"""Descriptor parsing and sidecar I/O."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from NexusSDE.DatasetSync.artifacts import ArtifactKind
from NexusSDE.DatasetSync.descriptor import (
    parse_descriptor,
    read_descriptor,
    try_read_descriptor,
    write_descriptor,
)
from NexusSDE.DatasetSync.errors import DescriptorError
from NexusSDE.DatasetSync.versioning import VersionTuple

from tests.dataset_sync.fakes import make_descriptor

SDE_HASH = "0123456789abcdef" * 4
ICON_HASH = "FEDCBA9876543210" * 4


def _payload(**overrides):
    data = {
        "build_number": 3064089,
        "patch_number": 1,
        "icon_version": 7,
        "release_date": "2025-05-02",
        "sde_sha256": SDE_HASH,
        "icon_sha256": ICON_HASH,
    }
    data.update(overrides)
    return data


def test_parse_descriptor_reads_published_document() -> None:
    descriptor = parse_descriptor(json.dumps(_payload(unknown_key="ignored")))

    assert descriptor.version == VersionTuple(3064089, 1)
    assert descriptor.icon_version == 7
    assert descriptor.content_hash(ArtifactKind.DATABASE) == SDE_HASH
    # digest case is preserved as published
    assert descriptor.content_hashes[ArtifactKind.ICONS] == ICON_HASH


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[1, 2]",
        json.dumps({k: v for k, v in _payload().items() if k != "sde_sha256"}),
        json.dumps(_payload(build_number=-1)),
        json.dumps(_payload(icon_sha256="abc")),
    ],
)
def test_parse_descriptor_rejects_malformed_documents(payload: str) -> None:
    with pytest.raises(DescriptorError):
        parse_descriptor(payload)


def test_write_then_read_preserves_fields(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "metadata.json"
    descriptor = make_descriptor(12, 3, 4)

    write_descriptor(target, descriptor)

    assert read_descriptor(target) == descriptor
    assert not target.with_suffix(".json.tmp").exists()


def test_try_read_descriptor_tolerates_missing_and_corrupt(tmp_path: Path) -> None:
    missing = tmp_path / "metadata.json"
    assert try_read_descriptor(missing) is None

    missing.write_text("{ truncated", encoding="utf-8")
    assert try_read_descriptor(missing) is None


def test_read_descriptor_raises_for_missing_file(tmp_path: Path) -> None:
    with pytest.raises(DescriptorError):
        read_descriptor(tmp_path / "absent.json")
