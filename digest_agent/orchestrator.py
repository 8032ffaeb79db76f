from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterable, List, Mapping, Optional, Set

from .errors import (
    ExtractionEmpty,
    ExtractionFailed,
    FatalError,
    PublishFailed,
    PublishFatal,
    RunCancelled,
    SourceUnavailable,
    SummarizationFatal,
    SummarizationTransient,
)
from .fetchers import SourceAdapter
from .models import ExtractedText, ExtractionStatus, RawItem, SourceConfig, SourceKind, utcnow
from .output.publisher import StoragePublisher
from .output.run_report import FailureReason, RunReport, RunStatus
from .processors.dedup import Deduplicator
from .processors.extract import ContentExtractor
from .processors.summarize import Summarizer
from .utils.logging import get_logger

logger = get_logger("digest.orchestrator")

# how often the main thread re-checks the deadline and abort flag
_POLL_INTERVAL = 0.2


def _require_text(extracted: ExtractedText) -> str:
    if extracted.status is ExtractionStatus.FAILED:
        raise ExtractionFailed(extracted.detail or "extraction failed")
    if extracted.status is ExtractionStatus.EMPTY:
        raise ExtractionEmpty(extracted.detail or "no usable text")
    return extracted.text


class Orchestrator:
    """Runs every configured source through fetch, dedup, extract, summarize and publish.

    Each source gets its own worker thread, and each source's items go
    through a small pool of ``item_concurrency`` workers. A failing source
    or item is recorded and does not affect its siblings. ``FatalError``
    aborts the run: stages already running finish, nothing new starts. When
    ``run_deadline`` passes the same cancel event is set; pipelines get
    ``shutdown_grace`` seconds to settle before unfinished items are
    recorded as timed out.
    """

    def __init__(
        self,
        adapters: Mapping[SourceKind, SourceAdapter],
        extractor: ContentExtractor,
        summarizer: Summarizer,
        publisher: StoragePublisher,
        dedup: Deduplicator,
        *,
        run_deadline: float = 900.0,
        shutdown_grace: float = 30.0,
        cancel: Optional[threading.Event] = None,
        publish_digests: bool = True,
    ) -> None:
        self.adapters = adapters
        self.extractor = extractor
        self.summarizer = summarizer
        self.publisher = publisher
        self.dedup = dedup
        self.run_deadline = run_deadline
        self.shutdown_grace = shutdown_grace
        self.cancel = cancel or threading.Event()
        self.publish_digests = publish_digests
        self._report = RunReport()
        # uploads in flight; the manifest is saved only once they have settled
        self._publishing = 0
        self._publishing_done = threading.Condition()

    # ---------------- Run control -----------------
    def _abort(self, reason: str) -> None:
        if self._report.abort(reason):
            logger.error("Aborting run: %s", reason)
        self.cancel.set()

    def _stopping(self) -> bool:
        return self.cancel.is_set()

    # ---------------- Item pipeline -----------------
    def _process_item(self, config: SourceConfig, item: RawItem, token: int) -> None:
        report = self._report
        try:
            if self._stopping():
                return
            if not self.dedup.is_new(item.identifier):
                logger.debug("Already published: %s", item.identifier)
                report.item_deduplicated(token)
                return

            if self._stopping():
                return
            text = _require_text(self.extractor.extract_item(item))
            report.stage_passed(token, "extracted")

            if self._stopping():
                return
            artifact = self.summarizer.summarize(text, config.kind, item)
            report.stage_passed(token, "summarized")

            if self._stopping():
                return
            with self._publishing_done:
                self._publishing += 1
            try:
                record = self.publisher.publish(artifact)
                # the manifest must know about every upload, even one the report drops as late
                self.dedup.record_published(record)
            finally:
                with self._publishing_done:
                    self._publishing -= 1
                    self._publishing_done.notify_all()
            report.item_published(token, record)
        except RunCancelled:
            logger.debug("Item %s stopped by cancellation", item.identifier)
        except ExtractionEmpty as exc:
            logger.info("No usable text for %s: %s", item.identifier, exc)
            report.item_empty(token, str(exc))
        except ExtractionFailed as exc:
            report.item_failed(token, FailureReason.EXTRACTION_FAILED, str(exc))
        except SummarizationTransient as exc:
            logger.warning("Summarization failed for %s: %s", item.identifier, exc)
            report.item_failed(token, FailureReason.SUMMARIZATION_FAILED, str(exc))
        except PublishFailed as exc:
            logger.warning("Publishing failed for %s: %s", item.identifier, exc)
            report.item_failed(token, FailureReason.PUBLISH_FAILED, str(exc))
        except FatalError as exc:
            if isinstance(exc, SummarizationFatal):
                reason = FailureReason.SUMMARIZATION_FAILED
            elif isinstance(exc, PublishFatal):
                reason = FailureReason.PUBLISH_FAILED
            else:
                reason = FailureReason.UNEXPECTED
            report.item_failed(token, reason, str(exc))
            self._abort(f"{type(exc).__name__}: {exc}")
        except Exception as exc:  # noqa: BLE001 - one broken item must not take down its siblings
            logger.exception("Unexpected error processing %s: %s", item.identifier, exc)
            report.item_failed(token, FailureReason.UNEXPECTED, f"{type(exc).__name__}: {exc}")

    # ---------------- Source pipeline -----------------
    def _fetch(self, config: SourceConfig, fetch_pool: ThreadPoolExecutor) -> Optional[List[RawItem]]:
        report = self._report
        adapter = self.adapters.get(config.kind)
        if adapter is None:
            report.source_failed(config.kind, "no adapter registered")
            return None

        try:
            future = fetch_pool.submit(adapter, config)
            items = future.result(timeout=config.timeout)
        except FutureTimeout:
            logger.warning("Fetching %s timed out after %.0fs", config.name, config.timeout)
            report.source_failed(config.kind, f"fetch timed out after {config.timeout:.0f}s")
            return None
        except SourceUnavailable as exc:
            logger.warning("Source %s unavailable: %s", config.name, exc.reason)
            report.source_failed(config.kind, exc.reason)
            return None
        except Exception as exc:  # noqa: BLE001 - adapter bugs are isolated to their source
            logger.exception("Fetch failed for %s: %s", config.name, exc)
            report.source_failed(config.kind, f"{type(exc).__name__}: {exc}")
            return None
        return list(items or [])[: config.max_items]

    def _run_source(self, config: SourceConfig, fetch_pool: ThreadPoolExecutor) -> None:
        if self._stopping():
            logger.info("Skipping %s: run is stopping", config.name)
            return
        items = self._fetch(config, fetch_pool)
        if items is None:
            return
        self._report.source_fetched(config.kind)
        logger.info("Fetched %d items from %s", len(items), config.name)

        tokens = [self._report.register_item(config.kind, item.identifier) for item in items]
        with ThreadPoolExecutor(
            max_workers=max(1, config.item_concurrency), thread_name_prefix=f"{config.name}-item"
        ) as pool:
            for item, token in zip(items, tokens):
                pool.submit(self._process_item, config, item, token)

    # ---------------- Run -----------------
    def _wait_for_sources(self, futures: Set[Future], deadline: float) -> bool:
        """Wait until all source pipelines finish, the deadline passes or the run aborts.

        Returns True when the deadline was reached.
        """
        pending = futures
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if self._stopping():
                break
            _, pending = wait(pending, timeout=min(remaining, _POLL_INTERVAL), return_when=FIRST_COMPLETED)
        if not pending:
            return False

        timed_out = not self._stopping()
        if timed_out:
            logger.warning("Run deadline of %.0fs reached; cancelling outstanding work", self.run_deadline)
            self.cancel.set()
        _, pending = wait(pending, timeout=self.shutdown_grace)
        if pending:
            logger.warning(
                "%d source pipeline(s) still busy after %.0fs grace; their items are recorded as unfinished",
                len(pending),
                self.shutdown_grace,
            )
        return timed_out

    def _wait_for_uploads(self) -> None:
        """Let uploads already under way finish so their records reach the saved manifest."""
        limit = self.publisher.max_upload_seconds()
        with self._publishing_done:
            settled = self._publishing_done.wait_for(lambda: self._publishing == 0, timeout=limit)
            if not settled:
                logger.warning(
                    "%d upload(s) still running after %.0fs; their records miss this manifest save",
                    self._publishing,
                    limit,
                )

    def _publish_digests(self, report: RunReport) -> None:
        day = utcnow().date()
        kinds = {record.kind for record in report.published}
        for kind in sorted(kinds, key=lambda k: k.value):
            records = sorted(
                (r for r in self.dedup.records() if r.kind is kind and r.published_at.date() == day),
                key=lambda r: r.published_at,
            )
            try:
                self.publisher.publish_digest(kind, records, day)
            except PublishFailed as exc:
                logger.warning("Daily digest for %s not published: %s", kind.value, exc)
            except PublishFatal as exc:
                self._abort(f"{type(exc).__name__}: {exc}")
                return

    def run(self, sources: Iterable[SourceConfig]) -> RunReport:
        source_list = list(sources)
        report = self._report = RunReport()
        self.cancel.clear()
        for config in source_list:
            report.add_source(config.kind)

        try:
            self.dedup.load()
        except FatalError as exc:
            report.abort(f"{type(exc).__name__}: {exc}")
            logger.error("Cannot start run: %s", exc)
            return report.freeze()

        deadline = time.monotonic() + self.run_deadline
        workers = max(1, len(source_list))
        source_pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="source")
        fetch_pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch")
        timed_out = False
        try:
            logger.info("Starting run over %d source(s), deadline %.0fs", len(source_list), self.run_deadline)
            futures = {source_pool.submit(self._run_source, config, fetch_pool) for config in source_list}
            timed_out = self._wait_for_sources(futures, deadline)
        finally:
            # idle workers exit now; busy ones finish their current call and are ignored
            source_pool.shutdown(wait=False, cancel_futures=True)
            fetch_pool.shutdown(wait=False, cancel_futures=True)
            unfinished = report.close_items(timed_out=timed_out)
            if unfinished:
                logger.warning("%d item(s) did not finish", unfinished)
            self._wait_for_uploads()
            if self.publish_digests and report.status is RunStatus.RUNNING:
                self._publish_digests(report)
            try:
                self.dedup.save()
            except FatalError as exc:
                self._abort(f"dedup manifest not saved: {exc}")
            report.freeze()

        totals = report.totals()
        logger.info(
            "Run %s: fetched=%s, deduplicated=%s, extracted=%s, empty=%s, summarized=%s, published=%s, failed=%s",
            report.status.value,
            totals.fetched,
            totals.deduplicated,
            totals.extracted,
            totals.empty,
            totals.summarized,
            totals.published,
            totals.failed,
        )
        return report
