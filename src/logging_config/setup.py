"""Logging Setup.

Formatters and the one-call ``configure_logging`` used by the service
entry point. JSON lines for deployments, colored console for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

from src.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig
from src.logging_config.context import get_context_dict

# LogRecord attributes set through ``extra=`` by dispatch and timing code
RECORD_EXTRAS = ("duration_ms", "latency_ms", "success_count", "failure_count", "extra_data")


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Fields: timestamp, level, logger, message, service, the bound delivery
    context (dispatch_id, user_id, job, topic), optional caller location,
    timing/count extras and exception details.
    """

    def __init__(self, service_name: str = "coach-notifications", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        entry.update(get_context_dict())

        if self.include_caller:
            entry["caller"] = {
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
            }

        for key in RECORD_EXTRAS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines, color-coded by level unless ``use_color`` is off."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _level(self, levelname: str) -> str:
        if not self.use_color:
            return f"{levelname:8s}"
        return f"{self.COLORS.get(levelname, self.RESET)}{levelname:8s}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _record_time(record).strftime("%H:%M:%S.%f")[:-3]
        line = f"{timestamp} {self._level(record.levelname)} {record.name}: {record.getMessage()}"

        ctx = get_context_dict()
        if ctx:
            line += " [" + ", ".join(f"{k}={v}" for k, v in ctx.items()) + "]"

        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            line += f" ({duration_ms}ms)"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)

        return line


def configure_logging(
    config: Optional[LoggingConfig] = None,
    stream: Optional[TextIO] = None,
) -> LoggingConfig:
    """Configure the root logger for the notification service.

    Call once at startup. Env overrides (COACH_LOG_LEVEL, COACH_LOG_FORMAT)
    win over ``config``. Returns the effective configuration.
    """
    config = (config or DEFAULT_LOGGING_CONFIG).with_env_overrides()
    stream = stream or sys.stdout

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter(use_color=stream.isatty())

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(config.level.value)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    return config
