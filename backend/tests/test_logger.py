"""
Storefront Backend — Logging Tests
====================================

What we test:
    ✅ Request IDs and metadata travel on every record
    ✅ Sensitive metadata is redacted before it reaches a handler
    ✅ A failing handler never propagates into the caller
    ✅ JSON file format carries service fields and stack traces
    ✅ Size-based rollover and pruning of old files
    ✅ setup_logging creates the file transports
"""

import json
import logging

import pytest

from storefront.config import Settings
from storefront.context import RequestContext
from storefront.logger import (
    NOTICE,
    TRACE,
    DailyRotatingFileHandler,
    JsonFormatter,
    get_logger,
    setup_logging,
)


class TestStructuredLogger:
    def setup_method(self):
        self.log = get_logger("storefront.tests.logger")
        self.ctx = RequestContext(method="POST", path="/api/auth/login")

    def test_context_ids_attached(self, caplog):
        with caplog.at_level(logging.INFO, logger="storefront.tests.logger"):
            self.log.info("Login attempt", ctx=self.ctx, attempt=1)
        record = caplog.records[-1]
        assert record.fields["request_id"] == self.ctx.request_id
        assert record.fields["correlation_id"] == self.ctx.correlation_id
        assert record.fields["attempt"] == 1

    def test_metadata_redacted(self, caplog):
        with caplog.at_level(logging.INFO, logger="storefront.tests.logger"):
            self.log.info("Login attempt", ctx=self.ctx, password="hunter22", email="jane@example.com")
        fields = caplog.records[-1].fields
        assert "hunter22" not in json.dumps(fields)
        assert fields["email"] == "j***@example.com"

    def test_custom_levels(self, caplog):
        with caplog.at_level(TRACE, logger="storefront.tests.logger"):
            self.log.notice("notice")
            self.log.trace("trace")
        assert [r.levelno for r in caplog.records[-2:]] == [NOTICE, TRACE]
        assert caplog.records[-1].levelname == "TRACE"

    def test_disabled_level_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="storefront.tests.logger"):
            self.log.debug("hidden")
        assert not [r for r in caplog.records if r.getMessage() == "hidden"]

    def test_failing_handler_never_raises(self):
        """A handler blowing up must not turn into an exception for the caller."""

        class ExplodingHandler(logging.Handler):
            def emit(self, record):
                raise RuntimeError("disk full")

            def handle(self, record):
                self.emit(record)
                return True

        target = logging.getLogger("storefront.tests.exploding")
        handler = ExplodingHandler()
        target.addHandler(handler)
        target.setLevel(logging.INFO)
        try:
            get_logger("storefront.tests.exploding").error("still fine", ctx=self.ctx)
        finally:
            target.removeHandler(handler)

    def test_get_logger_is_cached(self):
        assert get_logger("storefront.tests.logger") is self.log


class TestJsonFormatter:
    def test_fields_and_service(self):
        formatter = JsonFormatter("storefront-api", "test")
        record = logging.LogRecord("storefront.x", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
        record.fields = {"request_id": "r1"}
        entry = json.loads(formatter.format(record))
        assert entry["message"] == "hello world"
        assert entry["level"] == "warning"
        assert entry["service"] == "storefront-api"
        assert entry["environment"] == "test"
        assert entry["request_id"] == "r1"
        assert "version" in entry

    def test_stack_included(self):
        formatter = JsonFormatter("storefront-api", "test")
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(formatter.format(record))
        assert "ValueError: boom" in entry["stack"]


class TestDailyRotatingFileHandler:
    def _emit(self, handler, count):
        for i in range(count):
            handler.emit(logging.LogRecord("x", logging.INFO, __file__, 1, "x" * 50, (), None))

    def test_rolls_over_by_size(self, tmp_path):
        handler = DailyRotatingFileHandler(str(tmp_path), "combined", max_bytes=120, backup_count=10)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            self._emit(handler, 6)
        finally:
            handler.close()
        files = sorted(p.name for p in tmp_path.glob("combined-*.log"))
        assert len(files) == 3
        assert any(".1.log" in name for name in files)

    def test_prunes_old_files(self, tmp_path):
        handler = DailyRotatingFileHandler(str(tmp_path), "error", max_bytes=120, backup_count=2)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            self._emit(handler, 12)
        finally:
            handler.close()
        assert len(list(tmp_path.glob("error-*.log"))) <= 3


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestSetupLogging:
    def test_file_transports_created(self, tmp_path, restore_root_logger):
        settings = Settings(environment="test", log_to_files=True, log_dir=str(tmp_path), log_level="INFO")
        setup_logging(settings)

        get_logger("storefront.tests.setup").error("Payment failed", order_id="o1")
        for handler in logging.getLogger().handlers:
            handler.flush()

        error_files = list(tmp_path.glob("error-*.log"))
        combined_files = list(tmp_path.glob("combined-*.log"))
        assert len(error_files) == 1
        assert len(combined_files) == 1
        entry = json.loads(error_files[0].read_text().splitlines()[-1])
        assert entry["message"] == "Payment failed"
        assert entry["order_id"] == "o1"

    def test_repeated_setup_does_not_duplicate_handlers(self, tmp_path, restore_root_logger):
        settings = Settings(environment="test", log_to_files=False, log_level="INFO")
        setup_logging(settings)
        count = len(logging.getLogger().handlers)
        setup_logging(settings)
        assert len(logging.getLogger().handlers) == count
