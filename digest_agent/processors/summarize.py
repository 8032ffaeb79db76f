from __future__ import annotations

import threading
from typing import Dict, Optional

from ..errors import RunCancelled, SummarizationFatal, SummarizationTransient
from ..models import RawItem, SourceKind, SummaryArtifact, utcnow
from ..output.markdown import format_document
from ..utils.logging import get_logger
from .ai import AIClient, LLMError
from .ai.retry import RetriesExhausted, RetryCancelled, with_retries
from .normalize import truncate_words

logger = get_logger("digest.processors.summarize")

_COMMON_RULES = (
    "Write 3-5 concise sentences in plain markdown prose, without headings or code fences. "
    "Preserve the original language of the text. Do not invent facts that are not in the text.\n\n"
)

PROMPTS: Dict[SourceKind, str] = {
    SourceKind.HACKER_NEWS: (
        "Summarize this article that is being discussed on Hacker News. "
        "Say what it is about and why a software engineer would care.\n"
    ),
    SourceKind.GITHUB_TRENDING: (
        "Summarize this trending GitHub repository from its README. "
        "Say what the project does, who it is for and what makes it notable.\n"
    ),
    SourceKind.XAI_SEARCH: (
        "Summarize this news story. Lead with the key fact, then the context that matters.\n"
    ),
    SourceKind.CUSTOM_SITE: (
        "Summarize this web page. Focus on what is new or important on it.\n"
    ),
    SourceKind.ARXIV: (
        "Summarize this research paper for a technical reader. "
        "Cover the problem, the method and the main result.\n"
    ),
}


def build_prompt(kind: SourceKind, title: str, text: str) -> str:
    return f"{PROMPTS[kind]}{_COMMON_RULES}TITLE: {title}\n\nTEXT:\n{text}\n"


class Summarizer:
    """Turn extracted text into a markdown document through an LLM.

    Every attempt holds one slot of a process-wide semaphore, so at most
    ``max_concurrent`` completion calls are in flight. Transient errors are
    retried with exponential backoff; permanent ones raise
    ``SummarizationFatal`` at once.
    """

    def __init__(
        self,
        client: AIClient,
        *,
        max_concurrent: int = 4,
        max_attempts: int = 3,
        backoff: float = 2.0,
        timeout: float = 60.0,
        input_words: int = 1500,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.client = client
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.timeout = timeout
        self.input_words = input_words
        self.cancel = cancel or threading.Event()
        self._slots = threading.BoundedSemaphore(max_concurrent)

    def _complete(self, prompt: str) -> str:
        with self._slots:
            return self.client.complete(prompt, timeout=self.timeout)

    def summarize(self, text: str, kind: SourceKind, item: RawItem) -> SummaryArtifact:
        prompt = build_prompt(kind, item.title, truncate_words(text, self.input_words))
        try:
            summary = with_retries(
                lambda: self._complete(prompt),
                max_attempts=self.max_attempts,
                backoff=self.backoff,
                cancel=self.cancel,
                label=f"Summary of {item.identifier}",
            )
        except RetryCancelled as exc:
            raise RunCancelled(str(exc)) from exc
        except RetriesExhausted as exc:
            raise SummarizationTransient(f"{item.identifier}: {exc}") from exc
        except LLMError as exc:
            # non-retryable: bad key, bad request, unknown model
            logger.error("Summarization rejected for %s: %s", item.identifier, exc)
            raise SummarizationFatal(str(exc), status=exc.status) from exc

        generated_at = utcnow()
        logger.debug("Summarized %s (%d chars)", item.identifier, len(summary))
        return SummaryArtifact(
            identifier=item.identifier,
            kind=kind,
            title=item.title,
            body=format_document(item, summary, generated_at),
            generated_at=generated_at,
            url=item.url,
        )
