from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import requests


class LLMError(Exception):
    """Failure of a completion call.

    ``retryable`` is True for rate limits, server errors, timeouts, broken
    connections and empty completions; everything else will fail again.
    """

    def __init__(self, message: str, *, status: Optional[int] = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable


# the response started but its body broke off in transit
_BROKEN_BODY_ERRORS = (requests.exceptions.ChunkedEncodingError, requests.exceptions.ContentDecodingError)


def status_is_retryable(status: int) -> bool:
    return status == 429 or status >= 500


class AIClient(ABC):
    """Abstract completion client used by the summarizer."""

    name = "ai"

    @abstractmethod
    def complete(self, prompt: str, *, timeout: float) -> str:
        """Return the model's completion for ``prompt`` or raise ``LLMError``."""

    def _post(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout: float,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        try:
            resp = requests.post(url, json=payload, headers=dict(headers or {}), timeout=timeout)
        except requests.Timeout as exc:
            raise LLMError(f"{self.name} request timed out after {timeout}s", retryable=True) from exc
        except requests.ConnectionError as exc:
            raise LLMError(f"{self.name} connection error: {exc}", retryable=True) from exc
        except _BROKEN_BODY_ERRORS as exc:
            raise LLMError(f"{self.name} response broken off: {exc}", retryable=True) from exc
        except requests.RequestException as exc:
            raise LLMError(f"{self.name} request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise LLMError(
                f"{self.name} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status=resp.status_code,
                retryable=status_is_retryable(resp.status_code),
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise LLMError(f"{self.name} returned invalid JSON", status=resp.status_code, retryable=True) from exc
