"""
FeedRelay Logging
=================

Every log line carries the relay context it was emitted in: the component,
and while a feed is being processed, the feed URL and the dedup key of the
entry in flight. Console output shows that context as a short tag, the
rotating log file stores it as JSON fields.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

CONTEXT_FIELDS = ("component", "feed_url", "entry_key")


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record: time, level, message and relay context."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(_record_context(record))

        error_code = getattr(record, "error_code", None)
        if error_code:
            data["error_code"] = error_code
        duration = getattr(record, "duration_seconds", None)
        if duration is not None:
            data["duration_seconds"] = round(duration, 3)

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output tagged with the feed and entry being relayed."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    @staticmethod
    def context_tag(record: logging.LogRecord) -> str:
        context = _record_context(record)
        parts = [context.get("component", record.name)]
        if "feed_url" in context:
            parts.append(context["feed_url"])
        if "entry_key" in context:
            parts.append(f"#{context['entry_key']}")
        return "[" + " ".join(str(p) for p in parts) + "]"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{stamp} {level} {self.context_tag(record)} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class RelayLogger(logging.LoggerAdapter):
    """Logger adapter holding relay context; ``bind`` narrows it further."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "RelayLogger":
        merged = dict(self.extra)
        merged.update({k: v for k, v in context.items() if v is not None})
        return RelayLogger(self.logger, merged)


def get_logger_for_component(
    component_name: str,
    feed_url: Optional[str] = None,
    entry_key: Optional[str] = None,
) -> RelayLogger:
    """Logger named ``feedrelay.<component>`` carrying the given context."""
    adapter = RelayLogger(logging.getLogger(f"feedrelay.{component_name}"), {"component": component_name})
    return adapter.bind(feed_url=feed_url, entry_key=entry_key)


def configure_application_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = "logs/feedrelay.log",
    enable_console: bool = True,
    structured_logging: bool = False,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> logging.Logger:
    """Install handlers on the ``feedrelay`` logger.

    Args:
        log_level: Level name for the ``feedrelay`` logger
        log_file: Rotating JSON log file; None disables file output
        enable_console: Write to stdout
        structured_logging: JSON lines on stdout instead of the colored format
        max_file_size_mb: Rotation size for the log file
        backup_count: Number of rotated files to keep

    Returns:
        The configured ``feedrelay`` logger
    """
    root = logging.getLogger("feedrelay")
    root.setLevel(getattr(logging, log_level.upper()))
    root.handlers.clear()

    if enable_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(
            JsonLineFormatter() if structured_logging else ConsoleFormatter(sys.stdout.isatty())
        )
        root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_file_size_mb * 1024 * 1024, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(JsonLineFormatter())
        root.addHandler(file_handler)

    for noisy in ("aiohttp", "asyncio", "feedparser"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root


class PerformanceLogger:
    """Times a block and logs its duration; failures are logged as errors.

    The exception itself is not handled here, it keeps propagating.
    """

    def __init__(self, logger: logging.LoggerAdapter, operation: str):
        self.logger = logger
        self.operation = operation
        self.duration: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration = time.monotonic() - self._started
        extra = {"duration_seconds": self.duration}
        if exc_type is None:
            self.logger.debug(f"{self.operation} took {self.duration:.3f}s", extra=extra)
        else:
            self.logger.error(
                f"{self.operation} failed after {self.duration:.3f}s: {exc_val}", extra=extra
            )
