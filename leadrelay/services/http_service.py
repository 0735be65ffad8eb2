"""HTTP helpers with retry/backoff for third-party APIs (Resend, Google, ElevenLabs)."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
DEFAULT_TIMEOUT_SECONDS = 20.0


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
    label: str = "HTTP request",
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries.

    Retries transport errors and retryable statuses; the last response (or
    exception) is returned/raised once attempts run out.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            logger.warning("%s failed, retrying", label, exc_info=exc)
            delay = _backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            logger.warning("%s returned %s, retrying", label, response.status_code)
            delay = _backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response


def error_detail(response: httpx.Response) -> str | None:
    """Best-effort extraction of a provider error message."""
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("status")
    detail = data.get("detail")
    if isinstance(detail, dict):
        return detail.get("message")
    return data.get("message") or error or (detail if isinstance(detail, str) else None)
