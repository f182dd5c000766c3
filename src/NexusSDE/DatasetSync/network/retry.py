"""Network retry policies: Tenacity-based backoff for record store requests.

Only idempotent JSON requests (record queries and field lookups) go through
these policies. Artifact downloads are never retried here: a failed download
surfaces to the pipeline, which records the artifact as failed.

Retried failures:
- Connection errors and timeouts (raised as retryable :class:`TransportError`)
- Rate limiting (429, with Retry-After support)
- Server errors (5xx)

Example:
    >>> policy = create_async_retry_policy(max_attempts=4, max_delay_seconds=30)
    >>> async for attempt in policy:  # doctest: +SKIP
    ...     with attempt:
    ...         response = await client.get(url)
"""

import email.utils
import logging
from datetime import datetime, timezone
from typing import Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from NexusSDE.DatasetSync.errors import TransportError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def parse_retry_after_value(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header value into a delay in seconds."""
    if not value:
        return None

    try:
        delay = float(int(value))
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delay = (dt - datetime.now(timezone.utc)).total_seconds()

    return max(0.0, delay)


class _RetryAfterOrBackoff(wait_base):
    """Wait strategy that honours Retry-After before falling back to backoff."""

    def __init__(self, fallback_wait: wait_base, max_delay_seconds: float) -> None:
        self._fallback_wait = fallback_wait
        self._max_delay_seconds = max_delay_seconds

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        delay = getattr(exc, "retry_after", None)
        if delay is not None:
            return min(float(delay), float(self._max_delay_seconds))
        return float(self._fallback_wait(retry_state))


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and exc.retryable


def create_async_retry_policy(
    max_attempts: int = 4,
    max_delay_seconds: float = 30.0,
    wait: Optional[wait_base] = None,
) -> AsyncRetrying:
    """Create a Tenacity retry policy for async record store requests.

    Args:
        max_attempts: Maximum number of attempts.
        max_delay_seconds: Overall deadline measured from the first attempt.
        wait: Replacement wait strategy; defaults to Retry-After aware
            full-jitter exponential backoff.

    Returns:
        Configured ``AsyncRetrying`` for use as ``async for attempt in policy``.
    """

    wait_strategy = wait or _RetryAfterOrBackoff(
        fallback_wait=wait_random_exponential(
            multiplier=0.5,
            max=min(30.0, max_delay_seconds),
        ),
        max_delay_seconds=max_delay_seconds,
    )

    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts) | stop_after_delay(max_delay_seconds),
        wait=wait_strategy,
        retry=retry_if_exception(_is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        # Re-raise original exception on final failure (don't wrap in RetryError)
        reraise=True,
    )


__all__ = ["RETRYABLE_STATUS_CODES", "create_async_retry_policy", "parse_retry_after_value"]
