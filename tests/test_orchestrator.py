"""Scenario tests for a whole run: isolation, retries, dedup, deadline and abort."""

import json
import time

from fakes import (
    MANIFEST_PATH,
    FakeAIClient,
    FakeExtractor,
    MemoryStorage,
    build_orchestrator,
    make_config,
    make_items,
    static_adapter,
    unavailable_adapter,
)

from digest_agent.models import SourceKind
from digest_agent.output.publisher import document_path
from digest_agent.output.run_report import FailureReason, RunStatus
from digest_agent.output.storage import StorageAuthError, StorageError
from digest_agent.processors.ai import LLMError

HN = SourceKind.HACKER_NEWS
ARXIV = SourceKind.ARXIV


def _reasons(report):
    return [f.reason for f in report.failures]


def _assert_counts_reconcile(report):
    for counts in report.sources.values():
        assert counts.fetched == counts.deduplicated + counts.empty + counts.failed + counts.published
        assert counts.extracted >= counts.summarized >= counts.published


class TestSourceIsolation:
    def test_unavailable_source_does_not_affect_others(self):
        orch = build_orchestrator({HN: unavailable_adapter("HTTP 503"), ARXIV: static_adapter(make_items(ARXIV, 2))})

        report = orch.run([make_config(HN), make_config(ARXIV)])

        assert report.status is RunStatus.COMPLETED
        assert report.exit_code == 0
        assert report.sources[HN].source_failed is True
        assert report.sources[HN].error == "HTTP 503"
        assert report.sources[HN].fetched == 0
        assert report.sources[ARXIV].published == 2
        assert _reasons(report) == [FailureReason.FETCH_FAILED]

    def test_adapter_bug_is_isolated_to_its_source(self):
        def broken(config):
            raise KeyError("items")

        orch = build_orchestrator({HN: broken, ARXIV: static_adapter(make_items(ARXIV, 1))})

        report = orch.run([make_config(HN), make_config(ARXIV)])

        assert report.sources[HN].source_failed is True
        assert "KeyError" in report.sources[HN].error
        assert report.sources[ARXIV].published == 1

    def test_slow_fetch_times_out_as_source_failure(self):
        def slow(config):
            time.sleep(0.5)
            return make_items(HN, 1)

        orch = build_orchestrator({HN: slow, ARXIV: static_adapter(make_items(ARXIV, 1))})

        report = orch.run([make_config(HN, timeout=0.05), make_config(ARXIV)])

        assert report.sources[HN].source_failed is True
        assert "timed out" in report.sources[HN].error
        assert report.sources[ARXIV].published == 1

    def test_source_without_adapter_is_failed(self):
        orch = build_orchestrator({})

        report = orch.run([make_config(HN)])

        assert report.sources[HN].source_failed is True
        assert report.status is RunStatus.COMPLETED


class TestItemPipeline:
    def test_one_unreachable_item_out_of_three(self):
        items = make_items(HN, 3)
        extractor = FakeExtractor(failing_urls=[items[1].url])
        storage = MemoryStorage()
        orch = build_orchestrator({HN: static_adapter(items)}, storage=storage, extractor=extractor)

        report = orch.run([make_config(HN)])

        counts = report.sources[HN]
        assert counts.fetched == 3
        assert counts.published == 2
        assert counts.failed == 1
        assert report.failures[0].identifier == items[1].identifier
        assert report.failures[0].reason is FailureReason.EXTRACTION_FAILED
        assert len(storage.document_uploads()) == 2
        assert report.exit_code == 0

    def test_empty_extraction_is_counted_apart_from_failures(self):
        items = make_items(HN, 2)
        extractor = FakeExtractor(empty_urls=[items[0].url])
        orch = build_orchestrator({HN: static_adapter(items)}, extractor=extractor)

        report = orch.run([make_config(HN)])

        counts = report.sources[HN]
        assert counts.empty == 1
        assert counts.failed == 0
        assert counts.published == 1
        assert _reasons(report) == [FailureReason.EXTRACTION_EMPTY]

    def test_two_transient_failures_then_success_publishes_once(self):
        items = make_items(HN, 1)
        client = FakeAIClient(
            errors={items[0].title: [LLMError("busy", status=503, retryable=True), LLMError("slow down", status=429, retryable=True)]}
        )
        storage = MemoryStorage()
        orch = build_orchestrator({HN: static_adapter(items)}, storage=storage, client=client)

        report = orch.run([make_config(HN)])

        assert client.calls == 3
        assert report.sources[HN].published == 1
        assert storage.document_uploads() == [document_path(HN, items[0].identifier)]

    def test_exhausted_retries_fail_only_that_item(self):
        items = make_items(HN, 2)
        transient = [LLMError("busy", status=503, retryable=True) for _ in range(3)]
        client = FakeAIClient(errors={items[0].title: transient})
        orch = build_orchestrator({HN: static_adapter(items)}, client=client)

        report = orch.run([make_config(HN)])

        assert report.status is RunStatus.COMPLETED
        assert report.sources[HN].published == 1
        assert _reasons(report) == [FailureReason.SUMMARIZATION_FAILED]

    def test_unexpected_item_error_is_recorded_and_siblings_continue(self):
        items = make_items(HN, 3)
        extractor = FakeExtractor(raising_urls=[items[0].url])
        orch = build_orchestrator({HN: static_adapter(items)}, extractor=extractor)

        report = orch.run([make_config(HN)])

        assert report.sources[HN].published == 2
        assert report.failures[0].reason is FailureReason.UNEXPECTED
        assert "RuntimeError" in report.failures[0].detail

    def test_publish_failure_after_retries_is_item_level(self):
        storage = MemoryStorage()
        storage.fail_documents = StorageError("HTTP 500", status=500)
        orch = build_orchestrator({HN: static_adapter(make_items(HN, 2))}, storage=storage)

        report = orch.run([make_config(HN)])

        assert report.status is RunStatus.COMPLETED
        assert report.sources[HN].failed == 2
        assert set(_reasons(report)) == {FailureReason.PUBLISH_FAILED}

    def test_summaries_respect_process_wide_ceiling(self):
        client = FakeAIClient(delay=0.05)
        adapters = {
            HN: static_adapter(make_items(HN, 4)),
            ARXIV: static_adapter(make_items(ARXIV, 4)),
            SourceKind.CUSTOM_SITE: static_adapter(make_items(SourceKind.CUSTOM_SITE, 4)),
        }
        orch = build_orchestrator(adapters, client=client, max_concurrent_summaries=2)

        report = orch.run([make_config(kind, item_concurrency=4) for kind in adapters])

        assert report.totals().published == 12
        assert client.max_in_flight <= 2

    def test_uploads_respect_process_wide_ceiling(self):
        storage = MemoryStorage(delay=0.05)
        adapters = {
            HN: static_adapter(make_items(HN, 4)),
            ARXIV: static_adapter(make_items(ARXIV, 4)),
            SourceKind.CUSTOM_SITE: static_adapter(make_items(SourceKind.CUSTOM_SITE, 4)),
        }
        orch = build_orchestrator(
            adapters, storage=storage, max_concurrent_summaries=12, max_concurrent_publishes=2
        )

        report = orch.run([make_config(kind, item_concurrency=4) for kind in adapters])

        assert report.totals().published == 12
        assert len(storage.document_uploads()) == 12
        assert storage.max_in_flight <= 2

    def test_counts_reconcile_on_a_mixed_run(self):
        hn_items = make_items(HN, 4)
        extractor = FakeExtractor(failing_urls=[hn_items[0].url], empty_urls=[hn_items[1].url])
        storage = MemoryStorage()
        orch = build_orchestrator(
            {HN: static_adapter(hn_items), ARXIV: static_adapter(make_items(ARXIV, 3))},
            storage=storage,
            extractor=extractor,
        )
        orch.run([make_config(HN), make_config(ARXIV)])

        report = orch.run([make_config(HN), make_config(ARXIV)])

        _assert_counts_reconcile(report)


class TestDeduplication:
    def test_rerun_publishes_nothing_new(self):
        storage = MemoryStorage()
        adapters = {HN: static_adapter(make_items(HN, 3))}

        first = build_orchestrator(adapters, storage=storage).run([make_config(HN)])
        uploads_after_first = list(storage.document_uploads())
        second = build_orchestrator(adapters, storage=storage).run([make_config(HN)])

        assert first.sources[HN].published == 3
        assert second.sources[HN].published == 0
        assert second.sources[HN].deduplicated == 3
        assert storage.document_uploads() == uploads_after_first

    def test_identifiers_in_manifest_are_never_republished(self):
        items = make_items(HN, 2)
        storage = MemoryStorage()
        storage.objects[MANIFEST_PATH] = json.dumps(
            {
                "version": 1,
                "published": [
                    {
                        "identifier": items[0].identifier,
                        "kind": "hacker_news",
                        "title": items[0].title,
                        "path": "hacker_news/abc.md",
                        "public_url": "https://storage.test/abc.md",
                        "published_at": "2026-01-01T00:00:00+00:00",
                    }
                ],
            }
        ).encode("utf-8")
        extractor = FakeExtractor()
        orch = build_orchestrator({HN: static_adapter(items)}, storage=storage, extractor=extractor)

        report = orch.run([make_config(HN)])

        assert report.sources[HN].deduplicated == 1
        assert report.sources[HN].published == 1
        assert extractor.calls == [items[1].identifier]

    def test_manifest_lists_every_published_identifier(self):
        items = make_items(HN, 3)
        storage = MemoryStorage()
        report = build_orchestrator({HN: static_adapter(items)}, storage=storage).run([make_config(HN)])

        manifest = json.loads(storage.objects[MANIFEST_PATH])
        assert {row["identifier"] for row in manifest["published"]} == {r.identifier for r in report.published}

    def test_same_identifier_from_two_sources_is_processed_once(self):
        shared = make_items(HN, 1, prefix="shared")
        orch = build_orchestrator({HN: static_adapter(shared), ARXIV: static_adapter(shared)})

        report = orch.run([make_config(HN), make_config(ARXIV)])

        assert report.totals().published == 1
        assert report.totals().deduplicated == 1


class TestRunControl:
    def test_deadline_marks_unstarted_items_timed_out(self):
        items = make_items(HN, 5)
        extractor = FakeExtractor(delay=0.3)
        storage = MemoryStorage()
        orch = build_orchestrator(
            {HN: static_adapter(items)},
            storage=storage,
            extractor=extractor,
            run_deadline=0.7,
            shutdown_grace=2.0,
        )

        report = orch.run([make_config(HN, item_concurrency=1)])

        counts = report.sources[HN]
        assert report.status is RunStatus.COMPLETED
        assert report.exit_code == 0
        assert counts.published >= 1
        assert FailureReason.TIMEOUT in _reasons(report)
        assert set(_reasons(report)) == {FailureReason.TIMEOUT}
        assert counts.fetched == counts.published + counts.failed
        # published items stay published and recorded
        manifest = json.loads(storage.objects[MANIFEST_PATH])
        assert len(manifest["published"]) == counts.published

    def test_upload_finishing_after_grace_still_reaches_manifest(self):
        items = make_items(HN, 1)
        storage = MemoryStorage(delay=1.0)
        orch = build_orchestrator(
            {HN: static_adapter(items)}, storage=storage, run_deadline=0.3, shutdown_grace=0.1
        )

        report = orch.run([make_config(HN)])

        assert storage.document_uploads() == [document_path(HN, items[0].identifier)]
        manifest = json.loads(storage.objects[MANIFEST_PATH])
        assert [row["identifier"] for row in manifest["published"]] == [items[0].identifier]
        assert _reasons(report) == [FailureReason.TIMEOUT]

    def test_fetch_cut_off_by_deadline_is_a_source_failure(self):
        def slow_adapter(config):
            time.sleep(1.0)
            return make_items(HN, 1)

        orch = build_orchestrator(
            {HN: slow_adapter, ARXIV: static_adapter(make_items(ARXIV, 1))},
            run_deadline=0.2,
            shutdown_grace=0.1,
        )

        report = orch.run([make_config(HN, timeout=5.0), make_config(ARXIV)])

        counts = report.sources[HN]
        assert counts.source_failed is True
        assert counts.error == "fetch timed out at run deadline"
        assert counts.fetched == 0
        fetch_failures = [f for f in report.failures if f.reason is FailureReason.FETCH_FAILED]
        assert [f.source for f in fetch_failures] == [HN]
        assert report.sources[ARXIV].source_failed is False
        assert report.status is RunStatus.COMPLETED

    def test_fatal_summarization_error_aborts_run(self):
        items = make_items(HN, 3)
        client = FakeAIClient(errors={items[0].title: [LLMError("invalid key", status=401)]})
        orch = build_orchestrator({HN: static_adapter(items)}, client=client)

        report = orch.run([make_config(HN, item_concurrency=1)])

        assert report.status is RunStatus.ABORTED
        assert report.exit_code == 1
        assert "invalid key" in report.abort_reason
        assert report.failures[0].reason is FailureReason.SUMMARIZATION_FAILED
        assert set(_reasons(report)[1:]) <= {FailureReason.ABORTED}
        assert report.sources[HN].fetched == report.sources[HN].failed + report.sources[HN].published

    def test_rejected_storage_credentials_abort_run(self):
        storage = MemoryStorage()
        storage.fail_documents = StorageAuthError("HTTP 401", status=401)
        orch = build_orchestrator({HN: static_adapter(make_items(HN, 2))}, storage=storage)

        report = orch.run([make_config(HN, item_concurrency=1)])

        assert report.status is RunStatus.ABORTED
        assert report.exit_code == 1
        assert report.sources[HN].published == 0

    def test_unreadable_manifest_aborts_before_fetching(self):
        storage = MemoryStorage()
        storage.fail_download = StorageAuthError("HTTP 403", status=403)
        calls = []

        def adapter(config):
            calls.append(config.kind)
            return make_items(HN, 1)

        report = build_orchestrator({HN: adapter}, storage=storage).run([make_config(HN)])

        assert report.status is RunStatus.ABORTED
        assert calls == []

    def test_report_is_frozen_after_run(self):
        orch = build_orchestrator({HN: static_adapter(make_items(HN, 1))})

        report = orch.run([make_config(HN)])
        report.abort("too late")

        assert report.frozen is True
        assert report.status is RunStatus.COMPLETED
        assert report.finished_at is not None

    def test_daily_digest_written_for_sources_with_new_documents(self):
        storage = MemoryStorage()
        orch = build_orchestrator(
            {HN: static_adapter(make_items(HN, 2)), ARXIV: unavailable_adapter()},
            storage=storage,
            publish_digests=True,
        )

        report = orch.run([make_config(HN), make_config(ARXIV)])

        digests = [p for p in storage.uploads if p.startswith("digests/")]
        assert len(digests) == 1
        assert digests[0].endswith(f"/{HN.value}.md")
        body = storage.objects[digests[0]].decode("utf-8")
        for record in report.published:
            assert record.public_url in body
