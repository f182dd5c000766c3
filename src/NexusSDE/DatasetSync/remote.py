# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.remote",
#   "purpose": "Locate the newest installable release and resolve its descriptor",
#   "sections": [
#     {"id": "resolver", "name": "RemoteMetadataResolver", "anchor": "class-remotemetadataresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Remote release metadata.

:class:`RemoteMetadataResolver` answers two questions for the checker and the
pipeline: which record is the newest release this client may install, and
what does that release contain. "No eligible record" is a normal answer
(``None``) while an unreachable store raises :class:`TransportError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .descriptor import DatasetDescriptor, parse_descriptor, read_descriptor
from .errors import DescriptorError, MetadataUnavailable, NoEligibleRelease, RecordFieldMissing
from .staging import StagingArea
from .store import RecordStore, RemoteReleaseRecord
from .versioning import EligibilityPolicy, is_eligible

__all__ = [
    "INLINE_METADATA_FIELD",
    "METADATA_FILE_FIELD",
    "RemoteMetadataResolver",
]

logger = logging.getLogger(__name__)

INLINE_METADATA_FIELD = "metadata_json"
METADATA_FILE_FIELD = "metadata_file"

# Records inspected client-side when the store cannot filter by policy.
_AT_MOST_QUERY_LIMIT = 50


class RemoteMetadataResolver:
    """Find eligible releases and decode their descriptors.

    Args:
        store: Release record store.
        staging: Staging area receiving downloaded descriptor files.
        record_type: Record type holding releases.
        client_version: Version of the running client.
        policy: Eligibility policy applied to ``minimum_app_version``.
    """

    def __init__(
        self,
        store: RecordStore,
        staging: StagingArea,
        *,
        record_type: str,
        client_version: str,
        policy: EligibilityPolicy = "exact",
    ) -> None:
        self.store = store
        self.staging = staging
        self.record_type = record_type
        self.client_version = client_version
        self.policy = policy

    async def latest_eligible_record(self) -> Optional[RemoteReleaseRecord]:
        """Return the newest record installable by this client, if any.

        The store is asked to filter and sort, and the answer is filtered and
        sorted again locally so a lax store cannot hand back an ineligible or
        older record.
        """

        if self.policy == "exact":
            records = await self.store.query_records(
                self.record_type, minimum_app_version=self.client_version, limit=1
            )
        else:
            records = await self.store.query_records(
                self.record_type, limit=_AT_MOST_QUERY_LIMIT
            )
        eligible = [
            record
            for record in records
            if is_eligible(record.minimum_app_version, self.client_version, self.policy)
        ]
        if not eligible:
            logger.info(
                "no eligible release for client %s",
                self.client_version,
                extra={"stage": "check"},
            )
            return None
        return max(eligible, key=lambda record: record.version)

    async def find_latest_eligible(self) -> Optional[str]:
        """Return the record id of the newest eligible release, or ``None``."""

        record = await self.latest_eligible_record()
        return record.record_id if record is not None else None

    async def require_latest_eligible(self) -> RemoteReleaseRecord:
        """Like :meth:`latest_eligible_record` but raise :class:`NoEligibleRelease` on ``None``."""

        record = await self.latest_eligible_record()
        if record is None:
            raise NoEligibleRelease(
                f"No {self.record_type} record is eligible for client {self.client_version}"
            )
        return record

    async def fetch_descriptor_file(
        self, record_id: str, destination: Optional[Path] = None
    ) -> Path:
        """Download the descriptor asset of ``record_id``.

        Raises:
            RecordFieldMissing: If the record has no descriptor file.
            TransportError: If the download fails.
        """

        target = destination or self.staging.descriptor_path(record_id)
        self.staging.ensure()
        await self.store.download_asset(record_id, METADATA_FILE_FIELD, target)
        return target

    async def resolve_descriptor(self, record_id: str) -> DatasetDescriptor:
        """Return the descriptor of ``record_id``.

        The inline ``metadata_json`` field is tried first; when it is absent
        or undecodable the ``metadata_file`` asset is downloaded, decoded, and
        deleted again.

        Raises:
            MetadataUnavailable: If neither source yields a valid descriptor.
            TransportError: If the store cannot be reached.
        """

        inline = await self.store.fetch_inline_field(record_id, INLINE_METADATA_FIELD)
        if inline:
            try:
                return parse_descriptor(inline)
            except DescriptorError as exc:
                logger.warning(
                    "inline metadata of %s is invalid, falling back to metadata file: %s",
                    record_id,
                    exc,
                    extra={"stage": "metadata", "record_id": record_id},
                )

        try:
            path = await self.fetch_descriptor_file(record_id)
        except RecordFieldMissing as exc:
            raise MetadataUnavailable(record_id, "no inline metadata and no metadata file") from exc
        try:
            return read_descriptor(path)
        except DescriptorError as exc:
            raise MetadataUnavailable(record_id, str(exc)) from exc
        finally:
            path.unlink(missing_ok=True)
