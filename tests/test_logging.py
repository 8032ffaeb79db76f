"""Tests for logging configuration."""

import json
import logging
import sys

import pytest

from digest_agent.utils.logging import JsonFormatter, configure_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_file_output_writes_json_lines(self, root_logger, tmp_path):
        log_file = tmp_path / "logs" / "run.log"

        configure_logging(level="DEBUG", output="file", file_path=str(log_file), log_format="json")
        logging.getLogger("digest.test").info('fetched "quoted" title')
        for handler in root_logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
        assert entry["level"] == "INFO"
        assert entry["name"] == "digest.test"
        assert entry["message"] == 'fetched "quoted" title'

    def test_stderr_is_the_default_stream(self, root_logger, monkeypatch):
        monkeypatch.delenv("LOG_OUTPUT", raising=False)

        configure_logging(level="INFO")

        streams = [getattr(h, "stream", None) for h in root_logger.handlers]
        assert streams and all(s is sys.stderr for s in streams)


class TestJsonFormatter:
    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("digest", logging.ERROR, __file__, 1, "failed", None, None)
            record.exc_info = sys.exc_info()

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "failed"
        assert "RuntimeError: boom" in payload["exc_info"]
