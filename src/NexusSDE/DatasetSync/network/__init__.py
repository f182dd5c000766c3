"""Network subsystem: async HTTP client factory and retry policies.

The record store client is built on:
- HTTPX: async HTTP client with connection pooling and streaming bodies
- Tenacity: retry policies with full-jitter exponential backoff

Modules:
- client: ``httpx.AsyncClient`` factory configured from :class:`RemoteStoreSettings`
- retry: Tenacity-based retry policy for idempotent JSON requests
"""

from NexusSDE.DatasetSync.network.client import build_async_client
from NexusSDE.DatasetSync.network.retry import create_async_retry_policy

__all__ = ["build_async_client", "create_async_retry_policy"]
