"""HTTPX client factory for the release record store.

Unlike a process-wide singleton, each :class:`~NexusSDE.DatasetSync.store.HttpRecordStore`
owns the client built here and closes it with the store.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from NexusSDE.DatasetSync import __version__
from NexusSDE.DatasetSync.settings import RemoteStoreSettings

logger = logging.getLogger(__name__)

MAX_CONNECTIONS = 8
MAX_KEEPALIVE_CONNECTIONS = 4


def _default_headers(settings: RemoteStoreSettings) -> Dict[str, str]:
    headers = {
        "User-Agent": f"sdesync/{__version__}",
        "Accept": "application/json",
    }
    if settings.api_token:
        headers["Authorization"] = f"Bearer {settings.api_token}"
    return headers


def build_async_client(
    settings: RemoteStoreSettings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` bound to the configured record store.

    Args:
        settings: Remote store configuration (base URL, token, timeouts).
        transport: Optional transport override, e.g. ``httpx.MockTransport``
            in tests.

    Returns:
        Client whose relative URLs resolve against ``settings.base_url``.
    """

    timeout = httpx.Timeout(settings.timeout_sec, connect=min(10.0, settings.timeout_sec))
    limits = httpx.Limits(
        max_connections=MAX_CONNECTIONS,
        max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
    )
    logger.debug(
        "building record store client",
        extra={"stage": "network", "extra_fields": {"base_url": settings.base_url}},
    )
    return httpx.AsyncClient(
        base_url=settings.base_url + "/",
        headers=_default_headers(settings),
        timeout=timeout,
        limits=limits,
        follow_redirects=True,
        transport=transport,
    )


__all__ = ["build_async_client"]
