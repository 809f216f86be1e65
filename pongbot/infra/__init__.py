"""
Infrastructure package.

Logging configuration.
"""

from pongbot.infra.logging_cfg import AsyncQueueHandler, JsonFormatter, build_logger, log_event

__all__ = [
    "AsyncQueueHandler",
    "JsonFormatter",
    "build_logger",
    "log_event",
]
