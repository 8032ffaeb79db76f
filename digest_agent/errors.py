"""Exception taxonomy for a digest run.

Item- and source-level errors are folded into the run report by the
orchestrator. Subclasses of :class:`FatalError` abort the whole run.
"""

from __future__ import annotations

from typing import Optional


class DigestAgentError(Exception):
    """Base class for all errors raised by the agent."""


class SourceUnavailable(DigestAgentError):
    """A source could not be fetched at all (network failure, non-2xx after retries)."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind}: {reason}")
        self.kind = kind
        self.reason = reason


class ExtractionFailed(DigestAgentError):
    """Network or parse error while extracting an item's text."""


class ExtractionEmpty(DigestAgentError):
    """Extraction succeeded but produced no usable text."""


class SummarizationTransient(DigestAgentError):
    """Summarization kept failing with retryable errors until attempts ran out."""


class PublishFailed(DigestAgentError):
    """Upload of a finished document failed after the fixed number of attempts."""


class RunCancelled(DigestAgentError):
    """The run deadline passed or the run was aborted while the item waited."""


class FatalError(DigestAgentError):
    """An error that will recur for every item; the run must stop."""


class SummarizationFatal(FatalError):
    """Non-retryable LLM error such as rejected credentials or a malformed request."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class PublishFatal(FatalError):
    """The storage backend rejected our credentials."""


class ConfigurationMissing(FatalError):
    """A required configuration key is absent or invalid."""
