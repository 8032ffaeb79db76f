from __future__ import annotations

import threading
from typing import Callable, Optional, TypeVar

import requests

from ...utils.logging import get_logger
from .base import LLMError

T = TypeVar("T")
logger = get_logger("digest.ai.retry")


class RetriesExhausted(Exception):
    """Every attempt failed with a retryable error; ``last_error`` holds the final one."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RetryCancelled(Exception):
    """The cancel event was set while waiting to retry."""


def is_retryable(exc: BaseException) -> bool:
    """Classify an error from a completion call as transient or permanent."""
    if isinstance(exc, LLMError):
        return exc.retryable
    transient = (
        requests.Timeout,
        requests.ConnectionError,
        requests.exceptions.ChunkedEncodingError,
        requests.exceptions.ContentDecodingError,
        TimeoutError,
        ConnectionError,
    )
    return isinstance(exc, transient)


def backoff_delay(attempt: int, base: float) -> float:
    """Delay before retry number ``attempt + 1``: base, 2*base, 4*base..."""
    return base * (2 ** attempt)


def with_retries(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff: float = 2.0,
    cancel: Optional[threading.Event] = None,
    label: str = "AI call",
) -> T:
    """Call ``fn`` up to ``max_attempts`` times with exponential backoff.

    Permanent errors propagate unchanged on the first occurrence. The backoff
    sleep wakes early when ``cancel`` is set, raising ``RetryCancelled``.
    """
    cancel = cancel or threading.Event()
    for attempt in range(max_attempts):
        try:
            return fn()
        except Exception as exc:  # noqa: BLE001 - classified below
            if not is_retryable(exc):
                raise
            if attempt + 1 >= max_attempts:
                raise RetriesExhausted(max_attempts, exc) from exc
            delay = backoff_delay(attempt, backoff)
            logger.warning(
                "%s failed (attempt %s/%s): %s; retrying in %.1fs", label, attempt + 1, max_attempts, exc, delay
            )
            if cancel.wait(delay):
                raise RetryCancelled(f"{label} cancelled during backoff") from exc
    raise RetriesExhausted(max_attempts, RuntimeError("no attempts made"))
