"""Logging Configuration.

Log level, output format and slow-call threshold for the notification
service, with COACH_LOG_LEVEL / COACH_LOG_FORMAT environment overrides.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional
import os

ENV_LEVEL = "COACH_LOG_LEVEL"
ENV_FORMAT = "COACH_LOG_FORMAT"


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 1000.0
    service_name: str = "coach-notifications"
    # third-party loggers capped at WARNING
    quiet_loggers: tuple[str, ...] = ("httpx", "httpcore", "apscheduler", "asyncio")

    def with_env_overrides(self, environ: Optional[Mapping[str, str]] = None) -> "LoggingConfig":
        """Return a copy with valid env overrides applied; invalid values are ignored."""
        environ = os.environ if environ is None else environ
        config = self

        level = environ.get(ENV_LEVEL, "").upper()
        if level in LogLevel.__members__:
            config = replace(config, level=LogLevel(level))

        fmt = environ.get(ENV_FORMAT, "").lower()
        if fmt in {f.value for f in LogFormat}:
            config = replace(config, format=LogFormat(fmt))

        return config


DEFAULT_LOGGING_CONFIG = LoggingConfig()
