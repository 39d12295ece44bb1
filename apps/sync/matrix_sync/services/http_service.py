"""Backoff helper for Sheets API calls.

The transport sends each request once by default. Callers that want retries
pass max_attempts > 1 and the request is routed through send_with_backoff.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

# Sheets quota errors surface as 429; the rest are transient backend failures
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


def backoff_delay(attempt: int, *, base_delay: float, max_delay: float) -> float:
    """Exponential delay with up to 50% jitter, capped at max_delay."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay += random.uniform(0, delay / 2)
    return delay


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


async def send_with_backoff(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_statuses: frozenset[int] | set[int] | None = None,
) -> httpx.Response:
    """
    Call `send` until it returns a non-retryable response or attempts run out.

    Request errors are re-raised after the final attempt; a retryable status
    on the final attempt is returned to the caller for normal error decoding.
    A Retry-After header on the response overrides the computed delay (still
    capped at max_delay).
    """
    statuses = retry_statuses or RETRYABLE_STATUSES
    attempts = max(1, max_attempts)

    for attempt in range(attempts):
        is_last = attempt >= attempts - 1
        try:
            response = await send()
        except httpx.RequestError as exc:
            if is_last:
                raise
            delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
            logger.warning(
                "Sheets request failed (attempt %s/%s), retrying in %.2fs",
                attempt + 1,
                attempts,
                delay,
                exc_info=exc,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code not in statuses or is_last:
            return response

        delay = _retry_after_seconds(response)
        if delay is None:
            delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
        delay = min(delay, max_delay)
        logger.warning(
            "Sheets request returned %s (attempt %s/%s), retrying in %.2fs",
            response.status_code,
            attempt + 1,
            attempts,
            delay,
        )
        if delay:
            await asyncio.sleep(delay)

    return response
