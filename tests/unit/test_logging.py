"""Unit tests for structured logging."""

import json
import logging
import sys
from datetime import datetime
from io import StringIO

from esxi_clone.logging import StructuredLogger, logger
from esxi_clone.models import CloneStep


def make_record(msg="Test", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Test JsonFormatter class."""

    def test_formats_basic_record(self):
        """Test JsonFormatter produces one JSON object with the core keys."""
        data = json.loads(StructuredLogger.JsonFormatter().format(make_record("Step started")))

        assert data["message"] == "Step started"
        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert isinstance(datetime.fromisoformat(data["timestamp"]), datetime)

    def test_includes_exception(self):
        """Test JsonFormatter includes exception information."""
        try:
            raise ValueError("vmx missing")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(
            StructuredLogger.JsonFormatter().format(make_record("boom", logging.ERROR, exc_info))
        )
        assert "ValueError" in data["exception"]
        assert "vmx missing" in data["exception"]

    def test_includes_extra_fields(self):
        """Test attributes set through extra= appear as top-level keys."""
        record = make_record()
        record.operation_id = "op-1"
        record.step = "copy_disk"

        data = json.loads(StructuredLogger.JsonFormatter().format(record))
        assert data["operation_id"] == "op-1"
        assert data["step"] == "copy_disk"

    def test_record_attributes_are_not_fields(self):
        """Test only extra= attributes are added next to the core keys."""
        data = json.loads(StructuredLogger.JsonFormatter().format(make_record()))
        assert set(data) == {"timestamp", "level", "logger", "message"}

    def test_non_json_values_are_stringified(self):
        """Test values json cannot encode fall back to str()."""
        record = make_record()
        record.step = CloneStep.REGISTER
        record.steps = (CloneStep.RESOLVE,)

        data = json.loads(StructuredLogger.JsonFormatter().format(record))
        assert data["step"] == str(CloneStep.REGISTER)
        assert data["steps"] == [str(CloneStep.RESOLVE)]


class TestStructuredLoggerMethods:
    """Test StructuredLogger logging methods."""

    def setup_method(self):
        self.stream = StringIO()
        self.test_logger = StructuredLogger("test_methods")
        self.test_logger.logger.handlers.clear()
        handler = logging.StreamHandler(self.stream)
        handler.setFormatter(StructuredLogger.JsonFormatter())
        self.test_logger.logger.addHandler(handler)

    def lines(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line]

    def test_kwargs_become_fields(self):
        """Test keyword arguments are written as fields."""
        self.test_logger.info("Step copy_configs started", operation_id="op-9", step="copy_configs")
        data = self.lines()[-1]

        assert data["message"] == "Step copy_configs started"
        assert data["operation_id"] == "op-9"
        assert data["step"] == "copy_configs"

    def test_bound_fields_on_every_record(self):
        """Test bind() attaches its fields to each record it logs."""
        run_log = self.test_logger.bind(operation_id="op-3")
        run_log.info("Step resolve started", step="resolve")
        run_log.warning("retrying")

        first, second = self.lines()
        assert first["operation_id"] == "op-3"
        assert first["step"] == "resolve"
        assert second["operation_id"] == "op-3"
        assert second["level"] == "WARNING"

    def test_call_site_fields_win_over_bound(self):
        """Test a field passed at the call replaces the bound one."""
        run_log = self.test_logger.bind(operation_id="op-3", step="resolve").bind(host="nest-test")
        run_log.error("failed", step="register")

        data = self.lines()[-1]
        assert data["step"] == "register"
        assert data["host"] == "nest-test"
        assert data["operation_id"] == "op-3"

    def test_levels(self):
        """Test each method logs at its level."""
        self.test_logger.set_level(logging.DEBUG)
        self.test_logger.debug("d")
        self.test_logger.info("i")
        self.test_logger.warning("w")
        self.test_logger.error("e")
        self.test_logger.critical("c", exc_info=False)

        assert [d["level"] for d in self.lines()] == [
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
        ]

    def test_set_level_filters(self):
        """Test set_level drops records below the new level."""
        self.test_logger.set_level(logging.WARNING)
        self.test_logger.info("hidden")
        self.test_logger.warning("shown")

        assert [d["message"] for d in self.lines()] == ["shown"]

    def test_error_with_exc_info(self):
        """Test error logging with exception info."""
        try:
            raise RuntimeError("scp exited")
        except RuntimeError:
            self.test_logger.error("Copy failed", exc_info=True)

        assert "RuntimeError" in self.lines()[-1]["exception"]

    def test_critical_includes_exception_by_default(self):
        """Test critical logging includes exception by default."""
        try:
            raise SystemError("host lost")
        except SystemError:
            self.test_logger.critical("Host lost")

        assert "exception" in self.lines()[-1]


class TestGlobalLogger:
    """Test global logger instance."""

    def test_global_logger_name(self):
        assert isinstance(logger, StructuredLogger)
        assert logger.logger.name == "esxi_clone"

    def test_global_logger_does_not_propagate(self):
        """Test records are not duplicated through the root logger."""
        assert logger.logger.propagate is False

    def test_reinitialising_does_not_duplicate_handlers(self):
        StructuredLogger("test_clear")
        again = StructuredLogger("test_clear")
        assert len(again.logger.handlers) == 1

    def test_writes_to_stderr(self):
        """Test log lines stay off stdout, which carries command output."""
        fresh = StructuredLogger("test_stream")
        assert fresh.logger.handlers[0].stream is sys.stderr
