"""Tests for webcrawler.utils.logger."""

from __future__ import annotations

import json
import logging

import pytest

from webcrawler.utils.config import LoggingConfig
from webcrawler.utils.logger import JSONFormatter, PerformanceFilter, setup_logging


def make_record(name="webcrawler.crawler", level=logging.INFO, msg="hello", **extra):
    record = logging.LogRecord(name, level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    def test_fields(self):
        entry = json.loads(JSONFormatter().format(make_record(url="https://example.com")))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "webcrawler.crawler"
        assert entry["message"] == "hello"
        assert entry["url"] == "https://example.com"

    def test_no_url(self):
        entry = json.loads(JSONFormatter().format(make_record()))
        assert "url" not in entry


class TestPerformanceFilter:
    def test_suppresses_noisy_info(self):
        log_filter = PerformanceFilter()
        assert not log_filter.filter(make_record(name="aiohttp.access"))
        assert log_filter.filter(make_record(name="aiohttp.access", level=logging.WARNING))
        assert log_filter.filter(make_record(name="webcrawler.crawler.scheduler"))


class TestSetupLogging:
    def test_creates_log_files(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "crawler.log"
        root = setup_logging(LoggingConfig(level="DEBUG", file=str(log_file)))

        logging.getLogger("webcrawler.test").error("something failed")
        for handler in root.handlers:
            handler.flush()

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 3
        assert "something failed" in log_file.read_text()
        assert "something failed" in (tmp_path / "logs" / "errors.log").read_text()

    def test_json_output(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "crawler.log"
        root = setup_logging(LoggingConfig(file=str(log_file), json=True))
        logging.getLogger("webcrawler.test").info("structured")
        for handler in root.handlers:
            handler.flush()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert lines[-1]["message"] == "structured"
