# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.store",
#   "purpose": "Release record store abstraction and its HTTPX implementation",
#   "sections": [
#     {"id": "record", "name": "RemoteReleaseRecord", "anchor": "class-remotereleaserecord", "kind": "class"},
#     {"id": "protocol", "name": "RecordStore", "anchor": "class-recordstore", "kind": "class"},
#     {"id": "http", "name": "HttpRecordStore", "anchor": "class-httprecordstore", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Release record store.

Releases are published as records in a remote store. A record carries the
release version, the minimum client version able to install it, an optional
inline ``metadata_json`` field, and binary asset fields (``sde_file``,
``icons_file``, ``metadata_file``).

:class:`RecordStore` is the seam the rest of the package depends on;
:class:`HttpRecordStore` binds it to the store's HTTP API::

    GET  records/query?record_type=T&limit=N[&minimum_app_version=V]&sort=-version
    GET  records/{id}?fields=metadata_json
    GET  records/{id}/assets/{field}
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from .errors import RecordFieldMissing, TransportError
from .network.client import build_async_client
from .network.retry import RETRYABLE_STATUS_CODES, create_async_retry_policy, parse_retry_after_value
from .settings import RemoteStoreSettings
from .versioning import VersionTuple

__all__ = [
    "RemoteReleaseRecord",
    "ChunkCallback",
    "RecordStore",
    "HttpRecordStore",
]

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[int, Optional[int]], None]

_STREAM_CHUNK = 1 << 16


@dataclass(frozen=True)
class RemoteReleaseRecord:
    """Summary of one release record as returned by a query."""

    record_id: str
    build_number: int
    patch_number: int
    minimum_app_version: str

    @property
    def version(self) -> VersionTuple:
        return VersionTuple(self.build_number, self.patch_number)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RemoteReleaseRecord":
        """Build a record from its JSON representation.

        Raises:
            TransportError: If required keys are missing or mistyped.
        """
        try:
            return cls(
                record_id=str(payload["record_id"]),
                build_number=int(payload["build_number"]),
                patch_number=int(payload["patch_number"]),
                minimum_app_version=str(payload.get("minimum_app_version", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError(f"Malformed release record in store response: {exc}") from exc


class RecordStore(Protocol):
    """Operations the synchronisation pipeline needs from a release store."""

    async def query_records(
        self,
        record_type: str,
        *,
        minimum_app_version: Optional[str] = None,
        limit: int = 1,
    ) -> List[RemoteReleaseRecord]:
        """Return records of ``record_type`` ordered by version, newest first."""
        ...

    async def fetch_inline_field(self, record_id: str, field: str) -> Optional[str]:
        """Return the string value of ``field`` on ``record_id`` or ``None``."""
        ...

    async def download_asset(
        self,
        record_id: str,
        field: str,
        destination: Path,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> int:
        """Stream asset ``field`` of ``record_id`` into ``destination``; return bytes written."""
        ...


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.status_code < 400:
        return
    retryable = response.status_code in RETRYABLE_STATUS_CODES
    retry_after = None
    if retryable:
        retry_after = parse_retry_after_value(response.headers.get("Retry-After"))
    raise TransportError(
        f"{what} failed with HTTP {response.status_code}",
        status_code=response.status_code,
        retryable=retryable,
        retry_after=retry_after,
    )


class HttpRecordStore:
    """Record store client built on ``httpx.AsyncClient``.

    Args:
        settings: Remote store configuration.
        client: Pre-built client; when omitted one is created (and owned).
        transport: Transport override used when building the client.
        retry_wait: Optional Tenacity wait strategy for JSON requests.

    Examples:
        >>> async def latest(settings):  # doctest: +SKIP
        ...     async with HttpRecordStore(settings) as store:
        ...         return await store.query_records("SDE_Record", limit=1)
    """

    def __init__(
        self,
        settings: RemoteStoreSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait: Any = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or build_async_client(settings, transport=transport)
        self._retry_wait = retry_wait

    async def __aenter__(self) -> "HttpRecordStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _retry_policy(self):
        return create_async_retry_policy(
            max_attempts=self._settings.max_attempts,
            max_delay_seconds=self._settings.max_retry_delay_sec,
            wait=self._retry_wait,
        )

    async def _get_json(self, path: str, params: Dict[str, Any], what: str) -> Any:
        async for attempt in self._retry_policy():
            with attempt:
                try:
                    response = await self._client.get(path, params=params)
                except httpx.TimeoutException as exc:
                    raise TransportError(f"{what} timed out: {exc}", retryable=True) from exc
                except httpx.TransportError as exc:
                    raise TransportError(f"{what} failed: {exc}", retryable=True) from exc
                _raise_for_status(response, what)
                try:
                    return response.json()
                except ValueError as exc:
                    raise TransportError(f"{what} returned invalid JSON") from exc
        raise TransportError(f"{what} was not attempted")  # pragma: no cover

    async def query_records(
        self,
        record_type: str,
        *,
        minimum_app_version: Optional[str] = None,
        limit: int = 1,
    ) -> List[RemoteReleaseRecord]:
        params: Dict[str, Any] = {
            "record_type": record_type,
            "sort": "-version",
            "limit": limit,
        }
        if minimum_app_version is not None:
            params["minimum_app_version"] = minimum_app_version
        payload = await self._get_json("records/query", params, "record query")
        if not isinstance(payload, dict) or not isinstance(payload.get("records"), list):
            raise TransportError("record query returned an unexpected document")
        return [RemoteReleaseRecord.from_payload(item) for item in payload["records"]]

    async def fetch_inline_field(self, record_id: str, field: str) -> Optional[str]:
        payload = await self._get_json(
            f"records/{record_id}", {"fields": field}, f"lookup of {field} on {record_id}"
        )
        fields = payload.get("fields") if isinstance(payload, dict) else None
        if not isinstance(fields, dict):
            return None
        value = fields.get(field)
        return value if isinstance(value, str) and value else None

    async def download_asset(
        self,
        record_id: str,
        field: str,
        destination: Path,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> int:
        part_path = destination.with_suffix(destination.suffix + ".part")
        part_path.parent.mkdir(parents=True, exist_ok=True)
        timeout = httpx.Timeout(self._settings.timeout_sec, read=self._settings.download_timeout_sec)
        written = 0
        try:
            async with self._client.stream(
                "GET", f"records/{record_id}/assets/{field}", timeout=timeout
            ) as response:
                if response.status_code == 404:
                    raise RecordFieldMissing(record_id, field)
                _raise_for_status(response, f"download of {field}")
                length = response.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None
                with part_path.open("wb") as sink:
                    async for chunk in response.aiter_bytes(_STREAM_CHUNK):
                        if not chunk:
                            continue
                        sink.write(chunk)
                        written += len(chunk)
                        if on_chunk is not None:
                            on_chunk(written, total)
        except httpx.HTTPError as exc:
            part_path.unlink(missing_ok=True)
            raise TransportError(f"download of {field} failed: {exc}", retryable=True) from exc
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        os.replace(part_path, destination)
        logger.debug(
            "asset downloaded",
            extra={"stage": "download", "record_id": record_id, "extra_fields": {"field": field, "bytes": written}},
        )
        return written
