"""Application entrypoint for the digest agent.

One invocation is one run (schedule it with cron or similar):
1) load configuration
2) fetch, extract, summarize and publish every enabled source
3) print the run report; exit 0 when the run completed, 1 when it was
   aborted, 2 when the configuration is unusable
"""

from __future__ import annotations

import argparse
import dataclasses
import sys
import threading
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationMissing
from .fetchers import ADAPTERS
from .orchestrator import Orchestrator
from .output.publisher import StoragePublisher
from .output.run_report import RunReport
from .output.storage import SupabaseStorageClient
from .processors.ai import create_ai_client
from .processors.dedup import BucketManifestStore, Deduplicator, LocalManifestStore
from .processors.extract import ContentExtractor
from .processors.summarize import Summarizer
from .utils.config_loader import Settings, load_settings
from .utils.logging import configure_logging, get_logger

EXIT_COMPLETED = 0
EXIT_ABORTED = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Digest agent: fetch, summarize and publish content from the enabled sources"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML file with per-source overrides (top-level 'sources' list)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Run deadline in seconds (overrides RUN_DEADLINE_SECONDS)",
    )
    parser.add_argument(
        "--max-items-per-source",
        type=int,
        default=None,
        help="Limit number of items fetched per source (for quick runs)",
    )
    parser.add_argument(
        "--report-format",
        default="json",
        choices=["json", "markdown"],
        help="Format of the run report printed to stdout",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Read the manifest but do not upload anything; print planned uploads",
    )
    return parser.parse_args(argv)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.deadline is not None:
        if args.deadline <= 0:
            raise ConfigurationMissing("--deadline must be positive")
        settings.run_deadline = args.deadline
    if args.max_items_per_source is not None:
        if args.max_items_per_source <= 0:
            raise ConfigurationMissing("--max-items-per-source must be positive")
        settings.sources = [
            dataclasses.replace(s, max_items=min(s.max_items, args.max_items_per_source)) for s in settings.sources
        ]
    return settings


def build_orchestrator(settings: Settings, *, dry_run: bool = False) -> Orchestrator:
    cancel = threading.Event()
    storage = SupabaseStorageClient(settings.supabase_url, settings.supabase_key, settings.bucket, dry_run=dry_run)
    if settings.dedup_store_path:
        store = LocalManifestStore(settings.dedup_store_path)
    else:
        store = BucketManifestStore(storage, settings.manifest_path)

    client = create_ai_client(
        settings.processing_backend,
        gemini_api_key=settings.gemini_api_key,
        gemini_model=settings.gemini_model,
        ollama_host=settings.ollama_host,
        ollama_model=settings.ollama_model,
    )
    return Orchestrator(
        ADAPTERS,
        ContentExtractor(
            max_bytes=settings.extract_max_bytes,
            min_chars=settings.extract_min_chars,
            timeout=settings.extract_timeout,
        ),
        Summarizer(
            client,
            max_concurrent=settings.max_concurrent_summaries,
            max_attempts=settings.summary_max_attempts,
            backoff=settings.summary_backoff,
            timeout=settings.summary_timeout,
            input_words=settings.summary_input_words,
            cancel=cancel,
        ),
        StoragePublisher(
            storage,
            max_concurrent=settings.max_concurrent_publishes,
            max_attempts=settings.publish_max_attempts,
            retry_delay=settings.publish_retry_delay,
            cancel=cancel,
        ),
        Deduplicator(store),
        run_deadline=settings.run_deadline,
        shutdown_grace=settings.shutdown_grace,
        cancel=cancel,
    )


def print_report(report: RunReport, report_format: str) -> None:
    text = report.to_markdown() if report_format == "markdown" else report.to_json()
    sys.stdout.write(text.rstrip("\n") + "\n")
    sys.stdout.flush()


def print_aborted_report(exc: BaseException, report_format: str) -> None:
    """Print a report for a run that never produced one of its own."""
    report = RunReport()
    report.abort(f"{type(exc).__name__}: {exc}")
    print_report(report.freeze(), report_format)


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env if present; real environment variables win
    load_dotenv(override=False)
    args = parse_args(argv)
    configure_logging(level=args.log_level)
    logger = get_logger("digest.agent")

    try:
        settings = _apply_overrides(load_settings(config_path=args.config), args)
        orchestrator = build_orchestrator(settings, dry_run=args.dry_run)
    except (ConfigurationMissing, ValueError) as exc:
        logger.error("Configuration error: %s", exc)
        print_aborted_report(exc, args.report_format)
        return EXIT_CONFIG_ERROR

    if not settings.sources:
        logger.warning("No sources enabled; nothing to do")
    logger.info("Enabled sources: %s", ", ".join(s.name for s in settings.sources) or "-")

    try:
        report = orchestrator.run(settings.sources)
    except Exception as exc:  # noqa: BLE001 - top-level entrypoint guard
        logger.exception("Run failed unexpectedly: %s", exc)
        print_aborted_report(exc, args.report_format)
        return EXIT_ABORTED

    print_report(report, args.report_format)
    return EXIT_COMPLETED if report.exit_code == 0 else EXIT_ABORTED


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    raise SystemExit(main())
