"""
Storefront Backend — Structured Logging
=========================================

What:  Logging setup plus a request-aware logger facade.
Why:   Every log line written while serving a request must carry the request
       and correlation IDs, and no log line may contain a password or token.
       Logging must also never break the request it is describing.
How:   Built on the standard `logging` module:

       setup_logging(settings)
           Configures the root logger once at startup.
           ┌───────────────────────┬──────────────┬──────────────────────┐
           │ Transport             │ Level        │ When                 │
           ├───────────────────────┼──────────────┼──────────────────────┤
           │ console (stdout)      │ configured   │ development / test   │
           │ combined-<date>.log   │ configured   │ LOG_TO_FILES         │
           │ error-<date>.log      │ ERROR+       │ LOG_TO_FILES         │
           │ critical-<date>.log   │ CRITICAL     │ LOG_TO_FILES         │
           │ performance-<date>.log│ performance  │ LOG_TO_FILES         │
           └───────────────────────┴──────────────┴──────────────────────┘
           Files roll over at midnight and when they reach LOG_MAX_BYTES;
           only LOG_BACKUP_COUNT files per transport are kept.

       get_logger(name) → StructuredLogger
           Leveled methods (critical, error, warning/warn, notice, info,
           debug, trace) taking an optional RequestContext and keyword
           metadata. Metadata is redacted before it reaches any handler.

Levels:
    TRACE (5) and NOTICE (25) are registered alongside the stdlib levels so
    the usual syslog-style vocabulary is available without a second library.
"""

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from logging.handlers import BaseRotatingHandler
from pathlib import Path
from typing import Any, Dict, Optional

from storefront import __version__
from storefront.context import RequestContext
from storefront.redaction import sanitize_for_logs

TRACE = 5
NOTICE = 25
logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(NOTICE, "NOTICE")

PERFORMANCE_LOGGER = "storefront.performance"


# ══════════════════════════════════════════════════════════════════════════
# Formatters
# ══════════════════════════════════════════════════════════════════════════

class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, for the file transports.

    Structured metadata travels on the record as `record.fields` (set by
    StructuredLogger); plain stdlib loggers simply have none.
    """

    def __init__(self, service: str, environment: str):
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "environment": self.environment,
            "version": __version__,
        }
        fields = getattr(record, "fields", None)
        if fields:
            entry.update(fields)
        if record.exc_info:
            entry["stack"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable single line with the metadata appended as key=value."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if fields:
            extras = " ".join(f"{k}={v}" for k, v in fields.items())
            # Keep the traceback (if any) below the metadata
            head, sep, tail = line.partition("\n")
            line = f"{head} | {extras}{sep}{tail}"
        return line


class LoggerNameFilter(logging.Filter):
    """Pass only records from one logger subtree (used for performance.log)."""

    def __init__(self, name: str, exclude: bool = False):
        super().__init__(name)
        self.exclude = exclude

    def filter(self, record: logging.LogRecord) -> bool:
        matched = super().filter(record)
        return not matched if self.exclude else matched


# ══════════════════════════════════════════════════════════════════════════
# Size + Date Rotating File Handler
# ══════════════════════════════════════════════════════════════════════════

class DailyRotatingFileHandler(BaseRotatingHandler):
    """
    Writes `<prefix>-YYYY-MM-DD.log`, rolling to a new file at midnight and
    to `<prefix>-YYYY-MM-DD.<n>.log` when the current file exceeds max_bytes.

    Old files beyond `backup_count` (oldest first) are deleted on rollover.
    """

    def __init__(
        self,
        directory: str,
        prefix: str,
        max_bytes: int = 20 * 1024 * 1024,
        backup_count: int = 14,
        encoding: str = "utf-8",
    ):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._current_date = self._today()
        self._part = 0
        super().__init__(
            str(self._path_for(self._current_date)), "a", encoding=encoding, delay=True
        )

    @staticmethod
    def _today() -> str:
        return time.strftime("%Y-%m-%d")

    def _path_for(self, day: str, part: int = 0) -> Path:
        suffix = f".{part}" if part else ""
        return self.directory / f"{self.prefix}-{day}{suffix}.log"

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        if self._today() != self._current_date:
            return True
        if self.max_bytes > 0:
            if self.stream is None:
                self.stream = self._open()
            msg = f"{self.format(record)}\n"
            self.stream.seek(0, 2)
            if self.stream.tell() + len(msg) >= self.max_bytes:
                return True
        return False

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None

        today = self._today()
        if today != self._current_date:
            self._current_date = today
            self._part = 0
        else:
            self._part += 1

        self.baseFilename = os.path.abspath(self._path_for(self._current_date, self._part))
        self._prune()

    def _prune(self) -> None:
        files = sorted(
            self.directory.glob(f"{self.prefix}-*.log"),
            key=lambda p: p.stat().st_mtime,
        )
        excess = len(files) - self.backup_count
        for path in files[: max(excess, 0)]:
            path.unlink(missing_ok=True)


# ══════════════════════════════════════════════════════════════════════════
# Setup
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings) -> None:
    """
    Configure the root logger for the whole application.

    Safe to call more than once: existing root handlers are closed and
    replaced, so the app factory can be invoked repeatedly in tests.
    """
    level = logging.getLevelName(settings.effective_log_level)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    if not settings.is_production:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(ConsoleFormatter())
        root.addHandler(console)

    if settings.log_to_files:
        json_formatter = JsonFormatter(settings.app_name, settings.environment)
        transports = [
            ("combined", logging.NOTSET, settings.log_backup_count),
            ("error", logging.ERROR, settings.log_backup_count),
            ("critical", logging.CRITICAL, settings.log_backup_count),
        ]
        for prefix, handler_level, backups in transports:
            handler = DailyRotatingFileHandler(
                settings.log_dir, prefix, settings.log_max_bytes, backups
            )
            handler.setLevel(handler_level)
            handler.setFormatter(json_formatter)
            if prefix == "combined":
                handler.addFilter(LoggerNameFilter(PERFORMANCE_LOGGER, exclude=True))
            root.addHandler(handler)

        performance = DailyRotatingFileHandler(
            settings.log_dir, "performance", settings.log_max_bytes, 7
        )
        performance.setFormatter(json_formatter)
        performance.addFilter(LoggerNameFilter(PERFORMANCE_LOGGER))
        root.addHandler(performance)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Request-aware Logger
# ══════════════════════════════════════════════════════════════════════════

class StructuredLogger:
    """
    Thin facade over a stdlib logger.

    Usage:
        log = get_logger(__name__)
        log.info("Order created", ctx=ctx, order_id=order.id, total=total)

    Every method swallows its own failures: a broken handler or an
    unserializable field must not turn a successful request into a 500.
    """

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        message: str,
        args: tuple,
        ctx: Optional[RequestContext],
        fields: Dict[str, Any],
        exc_info: Any = None,
    ) -> None:
        try:
            if not self._logger.isEnabledFor(level):
                return
            payload: Dict[str, Any] = ctx.log_fields() if ctx is not None else {}
            if fields:
                payload.update(sanitize_for_logs(fields))
            self._logger.log(
                level,
                message,
                *args,
                exc_info=exc_info,
                extra={"fields": payload},
                stacklevel=3,
            )
        except Exception as e:  # noqa: BLE001
            try:
                sys.stderr.write(f"logging failure in {self.name}: {e!r}\n")
            except Exception:  # noqa: BLE001
                pass

    def critical(self, message: str, *args, ctx: Optional[RequestContext] = None, exc_info: Any = None, **fields) -> None:
        self._log(logging.CRITICAL, message, args, ctx, fields, exc_info)

    def error(self, message: str, *args, ctx: Optional[RequestContext] = None, exc_info: Any = None, **fields) -> None:
        self._log(logging.ERROR, message, args, ctx, fields, exc_info)

    def warning(self, message: str, *args, ctx: Optional[RequestContext] = None, exc_info: Any = None, **fields) -> None:
        self._log(logging.WARNING, message, args, ctx, fields, exc_info)

    warn = warning

    def notice(self, message: str, *args, ctx: Optional[RequestContext] = None, **fields) -> None:
        self._log(NOTICE, message, args, ctx, fields)

    def info(self, message: str, *args, ctx: Optional[RequestContext] = None, **fields) -> None:
        self._log(logging.INFO, message, args, ctx, fields)

    def debug(self, message: str, *args, ctx: Optional[RequestContext] = None, **fields) -> None:
        self._log(logging.DEBUG, message, args, ctx, fields)

    def trace(self, message: str, *args, ctx: Optional[RequestContext] = None, **fields) -> None:
        self._log(TRACE, message, args, ctx, fields)

    def log(self, level: int, message: str, *args, ctx: Optional[RequestContext] = None, exc_info: Any = None, **fields) -> None:
        self._log(level, message, args, ctx, fields, exc_info)


_loggers: Dict[str, StructuredLogger] = {}


def get_logger(name: str) -> StructuredLogger:
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


_performance = get_logger(PERFORMANCE_LOGGER)


def log_performance(
    operation: str,
    duration_ms: float,
    ctx: Optional[RequestContext] = None,
    **fields,
) -> None:
    """Record a timing to performance.log (and the console in development)."""
    _performance.info(
        "%s took %.1fms", operation, duration_ms,
        ctx=ctx, operation=operation, duration_ms=round(duration_ms, 2), **fields,
    )
