"""Bounded exponential backoff for transient Google Sheets API failures."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRIABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 15.0


def error_status(exc: BaseException) -> int:
    """Extract an HTTP status from an exception, or 0 when it carries none.

    Understands ``RemoteSheetError.status_code``, googleapiclient's
    ``HttpError.resp.status`` and httpx's ``HTTPStatusError.response.status_code``.
    """
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "resp", None), "status", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    try:
        return int(status) if status is not None else 0
    except (TypeError, ValueError):
        return 0


def is_retriable(exc: BaseException) -> bool:
    return error_status(exc) in RETRIABLE_STATUSES


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before the retry that follows failed attempt number ``attempt`` (1-based)."""
    return min(max_delay, base_delay * 2**attempt)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``operation()``, retrying retriable failures with exponential backoff.

    Non-retriable errors propagate on first occurrence. A retriable error is
    retried until ``max_attempts`` attempts have been made, after which the
    last error propagates. The operation must be safe to repeat.
    """
    if max_attempts < 1:
        msg = f"max_attempts must be >= 1, got {max_attempts}"
        raise ValueError(msg)

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            attempt += 1
            status = error_status(exc)
            if status not in RETRIABLE_STATUSES or attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Sheets API error (status %d), retrying in %.2fs (attempt %d/%d)",
                status,
                delay,
                attempt,
                max_attempts,
            )
            await sleep(delay)
