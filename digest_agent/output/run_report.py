from __future__ import annotations

import itertools
import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from ..models import PublishedRecord, SourceKind, utcnow
from ..utils.logging import get_logger

logger = get_logger("digest.output.run_report")


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class FailureReason(str, Enum):
    FETCH_FAILED = "fetch_failed"
    EXTRACTION_FAILED = "extraction_failed"
    EXTRACTION_EMPTY = "extraction_empty"
    SUMMARIZATION_FAILED = "summarization_failed"
    PUBLISH_FAILED = "publish_failed"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    UNEXPECTED = "unexpected"


@dataclass(slots=True)
class SourceCounts:
    fetched: int = 0
    deduplicated: int = 0
    extracted: int = 0
    empty: int = 0
    summarized: int = 0
    published: int = 0
    failed: int = 0
    source_failed: bool = False
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ItemFailure:
    source: SourceKind
    identifier: str
    reason: FailureReason
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "identifier": self.identifier,
            "reason": self.reason.value,
            "detail": self.detail,
        }


_STAGE_COUNTERS = ("extracted", "summarized")


class RunReport:
    """Outcome of one run, filled in concurrently by the orchestrator.

    Every fetched item is registered and later resolved exactly once: as
    deduplicated, empty, failed or published. Items still outstanding when
    the run stops taking results become ``timeout`` (or ``aborted``) failures, and
    results arriving after that are dropped. Once frozen the report no
    longer changes.
    """

    def __init__(self, started_at: Optional[datetime] = None) -> None:
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._outstanding: Dict[int, Tuple[SourceKind, str]] = {}
        self.started_at = started_at or utcnow()
        self.finished_at: Optional[datetime] = None
        self.status = RunStatus.RUNNING
        self.abort_reason: Optional[str] = None
        self.sources: Dict[SourceKind, SourceCounts] = {}
        self.failures: List[ItemFailure] = []
        self.published: List[PublishedRecord] = []
        self._fetch_reported: Set[SourceKind] = set()
        self._closed = False
        self._frozen = False

    # ---------------- Recording -----------------
    def _counts(self, kind: SourceKind) -> SourceCounts:
        counts = self.sources.get(kind)
        if counts is None:
            counts = self.sources[kind] = SourceCounts()
        return counts

    def add_source(self, kind: SourceKind) -> None:
        with self._lock:
            if not self._frozen:
                self._counts(kind)

    def source_fetched(self, kind: SourceKind) -> None:
        """Note that the source's listing came back, even when it held no items."""
        with self._lock:
            if not self._closed:
                self._counts(kind)
                self._fetch_reported.add(kind)

    def register_item(self, kind: SourceKind, identifier: str) -> int:
        """Count a fetched item and return the token used to resolve it."""
        with self._lock:
            token = next(self._tokens)
            if self._closed:
                return token
            self._counts(kind).fetched += 1
            self._fetch_reported.add(kind)
            self._outstanding[token] = (kind, identifier)
            return token

    def source_failed(self, kind: SourceKind, reason: str) -> None:
        with self._lock:
            if self._closed:
                return
            self._fetch_reported.add(kind)
            counts = self._counts(kind)
            counts.source_failed = True
            counts.error = reason
            self.failures.append(ItemFailure(kind, kind.value, FailureReason.FETCH_FAILED, reason))

    def stage_passed(self, token: int, stage: str) -> bool:
        """Count an item passing ``extracted`` or ``summarized``; False once the item is resolved."""
        if stage not in _STAGE_COUNTERS:
            raise ValueError(f"unknown stage counter {stage!r}")
        with self._lock:
            entry = self._outstanding.get(token)
            if entry is None or self._closed:
                return False
            counts = self._counts(entry[0])
            setattr(counts, stage, getattr(counts, stage) + 1)
            return True

    def _resolve(self, token: int) -> Optional[Tuple[SourceKind, str]]:
        if self._closed:
            return None
        entry = self._outstanding.pop(token, None)
        if entry is None:
            logger.debug("Dropping late result for item token %s", token)
        return entry

    def item_deduplicated(self, token: int) -> None:
        with self._lock:
            entry = self._resolve(token)
            if entry:
                self._counts(entry[0]).deduplicated += 1

    def item_empty(self, token: int, detail: str = "") -> None:
        with self._lock:
            entry = self._resolve(token)
            if entry:
                kind, identifier = entry
                self._counts(kind).empty += 1
                self.failures.append(ItemFailure(kind, identifier, FailureReason.EXTRACTION_EMPTY, detail))

    def item_failed(self, token: int, reason: FailureReason, detail: str = "") -> None:
        with self._lock:
            entry = self._resolve(token)
            if entry:
                kind, identifier = entry
                self._counts(kind).failed += 1
                self.failures.append(ItemFailure(kind, identifier, reason, detail))

    def item_published(self, token: int, record: PublishedRecord) -> bool:
        with self._lock:
            entry = self._resolve(token)
            if not entry:
                return False
            self._counts(entry[0]).published += 1
            self.published.append(record)
            return True

    def abort(self, reason: str) -> bool:
        """Mark the run aborted; only the first reason is kept. Returns True for the first call."""
        with self._lock:
            if self._frozen or self.status is RunStatus.ABORTED:
                return False
            self.status = RunStatus.ABORTED
            self.abort_reason = reason
            return True

    def close_items(self, *, timed_out: bool = False) -> int:
        """Fail every outstanding item and stop accepting item results.

        Sources whose listing never came back are marked failed as well, so
        a fetch cut off by the deadline does not read as an empty source.
        Returns the number of items that were still outstanding.
        """
        with self._lock:
            if self._closed:
                return 0
            if self.status is RunStatus.ABORTED:
                reason, detail = FailureReason.ABORTED, f"run aborted: {self.abort_reason}"
                fetch_detail = "run aborted before the fetch finished"
            else:
                reason = FailureReason.TIMEOUT
                detail = "run deadline elapsed" if timed_out else "item did not finish"
                fetch_detail = "fetch timed out at run deadline" if timed_out else "fetch did not finish"
            count = len(self._outstanding)
            for kind, identifier in self._outstanding.values():
                self._counts(kind).failed += 1
                self.failures.append(ItemFailure(kind, identifier, reason, detail))
            self._outstanding.clear()
            for kind, counts in self.sources.items():
                if kind in self._fetch_reported:
                    continue
                counts.source_failed = True
                counts.error = fetch_detail
                self.failures.append(ItemFailure(kind, kind.value, FailureReason.FETCH_FAILED, fetch_detail))
            self._closed = True
            return count

    def freeze(self) -> "RunReport":
        """End the run: close items if still open and make the report read-only."""
        self.close_items()
        with self._lock:
            if not self._frozen:
                if self.status is RunStatus.RUNNING:
                    self.status = RunStatus.COMPLETED
                self.finished_at = utcnow()
                self._frozen = True
        return self

    # ---------------- Reading -----------------
    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def exit_code(self) -> int:
        return 0 if self.status is RunStatus.COMPLETED else 1

    def totals(self) -> SourceCounts:
        total = SourceCounts()
        for counts in self.sources.values():
            for name in ("fetched", "deduplicated", "extracted", "empty", "summarized", "published", "failed"):
                setattr(total, name, getattr(total, name) + getattr(counts, name))
        return total

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "status": self.status.value,
                "abort_reason": self.abort_reason,
                "started_at": self.started_at.isoformat(),
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
                "sources": {kind.value: asdict(counts) for kind, counts in self.sources.items()},
                "failures": [f.to_dict() for f in self.failures],
                "published": [r.to_dict() for r in self.published],
            }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    def to_markdown(self) -> str:
        rows = []
        for kind, c in self.sources.items():
            state = f"source failed: {c.error}" if c.source_failed else "ok"
            rows.append(
                f"| {kind.label} | {c.fetched} | {c.deduplicated} | {c.extracted} | {c.empty} "
                f"| {c.summarized} | {c.published} | {c.failed} | {state} |"
            )
        failures = "\n".join(
            f"- `{f.source.value}` {f.identifier}: {f.reason.value}" + (f" ({f.detail})" if f.detail else "")
            for f in self.failures
        )
        status = self.status.value + (f" ({self.abort_reason})" if self.abort_reason else "")
        return (
            "### Run Summary\n\n"
            f"- Status: {status}\n"
            f"- Started: {self.started_at.isoformat()}\n"
            f"- Finished: {self.finished_at.isoformat() if self.finished_at else '-'}\n\n"
            "| Source | Fetched | Deduplicated | Extracted | Empty | Summarized | Published | Failed | State |\n"
            "|---|---|---|---|---|---|---|---|---|\n"
            + "\n".join(rows)
            + f"\n\n### Failures\n\n{failures if failures else '- none'}\n"
        )
