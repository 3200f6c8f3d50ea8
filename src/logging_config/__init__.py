"""Structured Logging & Delivery Tracing.

Provides structured JSON logging, dispatch/job context propagation,
and performance timing for the notification service.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import LogContext, generate_dispatch_id, get_context_dict
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import ConsoleFormatter, StructuredFormatter, configure_logging

__all__ = [
    "ConsoleFormatter",
    "LogContext",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "StructuredFormatter",
    "configure_logging",
    "generate_dispatch_id",
    "get_context_dict",
    "log_performance",
]
