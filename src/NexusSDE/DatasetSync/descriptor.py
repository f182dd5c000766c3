# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.descriptor",
#   "purpose": "Dataset descriptor model and its JSON sidecar I/O",
#   "sections": [
#     {"id": "model", "name": "DatasetDescriptor", "anchor": "class-datasetdescriptor", "kind": "class"},
#     {"id": "parse", "name": "parse_descriptor", "anchor": "function-parse-descriptor", "kind": "function"},
#     {"id": "read", "name": "read_descriptor", "anchor": "function-read-descriptor", "kind": "function"},
#     {"id": "write", "name": "write_descriptor", "anchor": "function-write-descriptor", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Dataset descriptor documents.

A descriptor names the release a dataset tree came from and the digests of
its archives. It is published by the release tooling as ``metadata.json``::

    {
      "build_number": 3064089, "patch_number": 1,
      "icon_version": 7, "release_date": "2025-05-02",
      "sde_sha256": "...", "icon_sha256": "..."
    }

The baseline dataset carries one at its root; each committed local artifact
tree carries its own copy, written only after extraction succeeded.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .artifacts import ARTIFACTS, ArtifactKind, artifact_spec
from .errors import DescriptorError
from .versioning import VersionTuple

__all__ = [
    "DESCRIPTOR_FILENAME",
    "DatasetDescriptor",
    "parse_descriptor",
    "read_descriptor",
    "try_read_descriptor",
    "write_descriptor",
]

DESCRIPTOR_FILENAME = "metadata.json"

_HEX_DIGEST = re.compile(r"^[0-9a-fA-F]{64}$")


class DatasetDescriptor(BaseModel):
    """Version and integrity information for one dataset release."""

    build_number: int = Field(ge=0)
    patch_number: int = Field(ge=0)
    icon_version: int = Field(ge=0)
    release_date: str = ""
    sde_sha256: str
    icon_sha256: str

    @field_validator("sde_sha256", "icon_sha256")
    @classmethod
    def validate_digest(cls, value: str) -> str:
        """Digests must be 64 hex characters; case is preserved."""

        stripped = value.strip()
        if not _HEX_DIGEST.match(stripped):
            raise ValueError("expected a 64 character hexadecimal SHA-256 digest")
        return stripped

    @property
    def version(self) -> VersionTuple:
        return VersionTuple(self.build_number, self.patch_number)

    @property
    def content_hashes(self) -> Dict[ArtifactKind, str]:
        """Published digest per managed artifact kind."""
        return {spec.kind: getattr(self, spec.hash_key) for spec in ARTIFACTS}

    def content_hash(self, kind: ArtifactKind) -> str:
        return getattr(self, artifact_spec(kind).hash_key)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)

    model_config = {"frozen": True, "extra": "ignore"}


def parse_descriptor(payload: Union[str, bytes]) -> DatasetDescriptor:
    """Decode descriptor JSON.

    Raises:
        DescriptorError: If the payload is not JSON or misses required fields.
    """

    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise DescriptorError(f"Descriptor is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DescriptorError("Descriptor must be a JSON object")
    try:
        return DatasetDescriptor.model_validate(data)
    except ValidationError as exc:
        raise DescriptorError(f"Descriptor is incomplete: {exc.error_count()} invalid field(s)") from exc


def read_descriptor(path: Path) -> DatasetDescriptor:
    """Read and decode the descriptor stored at ``path``."""

    try:
        payload = path.read_bytes()
    except OSError as exc:
        raise DescriptorError(f"Descriptor {path} cannot be read: {exc}") from exc
    return parse_descriptor(payload)


def try_read_descriptor(path: Path) -> Optional[DatasetDescriptor]:
    """Return the descriptor at ``path`` or ``None`` when it is missing or corrupt."""

    if not path.is_file():
        return None
    try:
        return read_descriptor(path)
    except DescriptorError:
        return None


def write_descriptor(path: Path, descriptor: DatasetDescriptor) -> None:
    """Atomically write ``descriptor`` to ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(descriptor.to_json() + "\n", encoding="utf-8")
    os.replace(tmp_path, path)
