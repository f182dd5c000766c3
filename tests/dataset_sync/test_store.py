"""HTTP record store client against an ``httpx.MockTransport``."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional, Tuple

import httpx
import pytest
from tenacity import wait_none

from NexusSDE.DatasetSync.errors import RecordFieldMissing, TransportError
from NexusSDE.DatasetSync.network.retry import create_async_retry_policy, parse_retry_after_value
from NexusSDE.DatasetSync.settings import RemoteStoreSettings
from NexusSDE.DatasetSync.store import HttpRecordStore, RemoteReleaseRecord
from NexusSDE.DatasetSync.versioning import VersionTuple

RECORDS = {
    "records": [
        {
            "record_id": "rec-2",
            "build_number": 3064090,
            "patch_number": 0,
            "minimum_app_version": "1.8.1",
        }
    ]
}


def _settings(**overrides) -> RemoteStoreSettings:
    values = {"base_url": "https://records.test/api/", "max_attempts": 3}
    values.update(overrides)
    return RemoteStoreSettings(**values)


def _store(handler, **overrides) -> HttpRecordStore:
    return HttpRecordStore(
        _settings(**overrides),
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
    )


def test_query_records_sends_filters_and_parses_records() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=RECORDS)

    async def scenario() -> List[RemoteReleaseRecord]:
        async with _store(handler, api_token="s3cret") as store:
            return await store.query_records("SDE_Record", minimum_app_version="1.8.1", limit=1)

    records = asyncio.run(scenario())

    assert records == [RemoteReleaseRecord("rec-2", 3064090, 0, "1.8.1")]
    assert records[0].version == VersionTuple(3064090, 0)
    request = seen[0]
    assert request.url.path == "/api/records/query"
    assert request.url.params["record_type"] == "SDE_Record"
    assert request.url.params["minimum_app_version"] == "1.8.1"
    assert request.url.params["limit"] == "1"
    assert request.url.params["sort"] == "-version"
    assert request.headers["Authorization"] == "Bearer s3cret"
    assert request.headers["User-Agent"].startswith("sdesync/")


def test_query_retries_server_errors() -> None:
    statuses = [503, 502, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json=RECORDS)

    async def scenario():
        async with _store(handler) as store:
            return await store.query_records("SDE_Record")

    assert [record.record_id for record in asyncio.run(scenario())] == ["rec-2"]
    assert statuses == []


def test_query_gives_up_after_max_attempts() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(500)

    async def scenario():
        async with _store(handler, max_attempts=2) as store:
            return await store.query_records("SDE_Record")

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status_code == 500
    assert attempts["count"] == 2


def test_client_errors_are_not_retried() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(403)

    async def scenario():
        async with _store(handler) as store:
            return await store.query_records("SDE_Record")

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(scenario())

    assert not excinfo.value.retryable
    assert attempts["count"] == 1


def test_connection_errors_become_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async def scenario():
        async with _store(handler, max_attempts=1) as store:
            return await store.query_records("SDE_Record")

    with pytest.raises(TransportError, match="record query failed"):
        asyncio.run(scenario())


def test_malformed_query_document_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"records": [{"record_id": "x"}]})

    async def scenario():
        async with _store(handler) as store:
            return await store.query_records("SDE_Record")

    with pytest.raises(TransportError, match="Malformed"):
        asyncio.run(scenario())


@pytest.mark.parametrize(
    "document, expected",
    [
        ({"fields": {"metadata_json": '{"a": 1}'}}, '{"a": 1}'),
        ({"fields": {"metadata_json": ""}}, None),
        ({"fields": {}}, None),
        ({"unexpected": True}, None),
    ],
)
def test_fetch_inline_field(document: dict, expected: Optional[str]) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=document)

    async def scenario():
        async with _store(handler) as store:
            return await store.fetch_inline_field("rec-2", "metadata_json")

    assert asyncio.run(scenario()) == expected
    assert seen[0].url.path == "/api/records/rec-2"
    assert seen[0].url.params["fields"] == "metadata_json"


def test_download_asset_streams_to_destination(tmp_path: Path) -> None:
    payload = b"z" * 200_000
    progress: List[Tuple[int, Optional[int]]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/records/rec-2/assets/sde_file"
        return httpx.Response(200, content=payload, headers={"Content-Length": str(len(payload))})

    destination = tmp_path / "staging" / "sde.zip"

    async def scenario() -> int:
        async with _store(handler) as store:
            return await store.download_asset(
                "rec-2", "sde_file", destination, lambda done, total: progress.append((done, total))
            )

    assert asyncio.run(scenario()) == len(payload)
    assert destination.read_bytes() == payload
    assert not destination.with_suffix(".zip.part").exists()
    assert progress[-1] == (len(payload), len(payload))
    assert [done for done, _ in progress] == sorted(done for done, _ in progress)


def test_download_of_missing_field_raises_record_field_missing(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "no such field"})

    destination = tmp_path / "metadata.json"

    async def scenario():
        async with _store(handler) as store:
            await store.download_asset("rec-2", "metadata_file", destination)

    with pytest.raises(RecordFieldMissing) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.field == "metadata_file"
    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []


def test_download_is_not_retried(tmp_path: Path) -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(503)

    async def scenario():
        async with _store(handler) as store:
            await store.download_asset("rec-2", "icons_file", tmp_path / "icons.zip")

    with pytest.raises(TransportError):
        asyncio.run(scenario())

    assert attempts["count"] == 1
    assert list(tmp_path.iterdir()) == []


def test_retry_after_header_is_honoured() -> None:
    waits: List[float] = []

    async def scenario() -> None:
        policy = create_async_retry_policy(max_attempts=2, max_delay_seconds=5).copy(
            sleep=_recording_sleep(waits)
        )
        async for attempt in policy:
            with attempt:
                if attempt.retry_state.attempt_number == 1:
                    raise TransportError("busy", status_code=429, retryable=True, retry_after=2.0)

    asyncio.run(scenario())

    assert waits == [2.0]


def _recording_sleep(waits: List[float]):
    async def _sleep(seconds: float) -> None:
        waits.append(seconds)

    return _sleep


@pytest.mark.parametrize(
    "value, expected",
    [(None, None), ("", None), ("3", 3.0), ("-4", 0.0), ("garbage", None)],
)
def test_parse_retry_after_value(value: Optional[str], expected: Optional[float]) -> None:
    assert parse_retry_after_value(value) == expected


def test_record_payload_round_trip_through_json() -> None:
    record = RemoteReleaseRecord.from_payload(json.loads(json.dumps(RECORDS["records"][0])))
    assert record.minimum_app_version == "1.8.1"
