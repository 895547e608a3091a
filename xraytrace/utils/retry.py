from __future__ import annotations

import asyncio
import socket
from typing import Sequence

from ..errors import NotFoundError

# Matched case-insensitively against the error message and its code attributes.
RETRYABLE_SIGNATURES: tuple[str, ...] = (
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "connection reset",
    "rate_limit_exceeded",
    "rate limit",
    "service_unavailable",
    "service unavailable",
    "timeout",
    "timed out",
    "429",
    "503",
    "502",
)

# DNS failures surface as socket.gaierror, which is not a ConnectionError.
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    socket.gaierror,
    TimeoutError,
    asyncio.TimeoutError,
)


def compute_backoff(attempt: int, delays: Sequence[int]) -> float:
    """Return the delay in seconds before retrying after ``attempt`` failed.

    ``delays`` holds milliseconds indexed by attempt (1-based); attempts
    past the end of the table reuse the last entry.
    """
    index = min(max(attempt, 1), len(delays)) - 1
    return delays[index] / 1000


def _error_codes(error: BaseException) -> list[str]:
    codes = []
    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if value is not None:
            codes.append(str(value).lower())
    return codes


def is_retryable_error(error: BaseException) -> bool:
    """Return ``True`` when ``error`` looks like a transient failure."""
    if isinstance(error, NotFoundError):
        return False
    if isinstance(error, RETRYABLE_EXCEPTIONS):
        return True

    message = str(error).lower()
    codes = _error_codes(error)
    return any(
        pattern.lower() in message or pattern.lower() in codes
        for pattern in RETRYABLE_SIGNATURES
    )
