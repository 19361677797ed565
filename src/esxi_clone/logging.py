"""
JSON line logging for clone runs.

Each record is one JSON object: timestamp, level, logger, message, plus any
keyword fields given at the call site (operation_id, step, host, ...). Records
go to stderr so stdout stays free for command output such as ``--output json``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict


# attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class StructuredLogger:
    """Thin wrapper around a stdlib logger that takes fields as keyword arguments."""

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        # one handler per logger name, however often it is constructed
        self.logger.handlers.clear()
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(self.JsonFormatter())
        self.logger.addHandler(handler)

    class JsonFormatter(logging.Formatter):
        """Render a record and its extra fields as a single JSON line."""

        def format(self, record: logging.LogRecord) -> str:
            entry: Dict[str, Any] = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["exception"] = self.formatException(record.exc_info)

            entry.update(
                (key, value)
                for key, value in record.__dict__.items()
                if key not in _RECORD_ATTRS
            )
            # CloneStep, Path and friends
            return json.dumps(entry, default=str)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    def bind(self, **fields: Any) -> "BoundLogger":
        """Logger that adds ``fields`` to every record, e.g. a run's operation_id."""
        return BoundLogger(self, fields)

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=fields)

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=fields)

    def critical(self, message: str, exc_info: bool = True, **fields: Any) -> None:
        self.logger.critical(message, exc_info=exc_info, extra=fields)


class BoundLogger:
    """StructuredLogger view with fixed fields; call-site fields win on clashes."""

    def __init__(self, parent: StructuredLogger, fields: Dict[str, Any]) -> None:
        self.parent = parent
        self.fields = dict(fields)

    def bind(self, **fields: Any) -> "BoundLogger":
        return BoundLogger(self.parent, {**self.fields, **fields})

    def debug(self, message: str, **fields: Any) -> None:
        self.parent.debug(message, **{**self.fields, **fields})

    def info(self, message: str, **fields: Any) -> None:
        self.parent.info(message, **{**self.fields, **fields})

    def warning(self, message: str, **fields: Any) -> None:
        self.parent.warning(message, **{**self.fields, **fields})

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.parent.error(message, exc_info=exc_info, **{**self.fields, **fields})


logger = StructuredLogger("esxi_clone")
