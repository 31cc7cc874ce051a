"""
Bounded-retry HTTP for network-calling collaborators.

Retryable outcomes (5xx, 429, transport errors and timeouts) are retried
with exponential backoff, ``base_delay * 2**attempt``, up to a small fixed
attempt cap. Anything else is returned to the caller as-is. Exhausting the
cap raises CollaboratorUnavailable, which callers turn into a
"could not confirm" outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .exceptions import CollaboratorUnavailable

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 0.2
DEFAULT_TIMEOUT_SECONDS = 7.0


def attempt_timeout(
    call_budget: float, attempts: int = MAX_ATTEMPTS, base_delay: float = BASE_DELAY_SECONDS
) -> float:
    """Per-request timeout that fits every attempt and backoff inside ``call_budget``."""
    backoff = sum(base_delay * (2**attempt) for attempt in range(attempts - 1))
    return max((call_budget - backoff) / attempts, 0.1)


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


async def request_with_retry(
    client: httpx.AsyncClient | None,
    method: str,
    url: str,
    *,
    attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY_SECONDS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    **kwargs: Any,
) -> httpx.Response:
    """Issue a request, retrying transient failures. Raises CollaboratorUnavailable past the cap."""
    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            return await _attempt_loop(owned, method, url, attempts, base_delay, timeout, kwargs)
    return await _attempt_loop(client, method, url, attempts, base_delay, timeout, kwargs)


async def _attempt_loop(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    attempts: int,
    base_delay: float,
    timeout: float,
    kwargs: dict[str, Any],
) -> httpx.Response:
    last_error = ""
    for attempt in range(attempts):
        try:
            response = await client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TransportError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        else:
            if not is_retryable_status(response.status_code):
                return response
            last_error = f"HTTP {response.status_code}"

        logger.warning("%s %s failed (attempt %d/%d): %s", method, url, attempt + 1, attempts, last_error)
        if attempt + 1 < attempts:
            await asyncio.sleep(base_delay * (2**attempt))

    raise CollaboratorUnavailable(
        f"{method} {url} failed after {attempts} attempts",
        details={"last_error": last_error, "attempts": attempts},
    )
