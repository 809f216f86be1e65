"""
Structured logging setup for the pong bot.

- Console: rich, human-friendly
- File: JSON lines (timestamp, level, message) written by a background thread
  so file IO never blocks the event loop

Components do not fetch a global logger on their own; main builds one here and
passes it into every constructor.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
from datetime import datetime
from typing import Any, Optional

from rich.logging import RichHandler

from pongbot.core.json_utils import dumps


class JsonFormatter(logging.Formatter):
    """Compact JSON formatter for structured log ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": record.created,
            "ts_iso": datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return dumps(payload)


class AsyncQueueHandler(logging.Handler):
    """
    Non-blocking handler that queues log records for background processing.

    Records are written by a dedicated daemon thread; when the queue is full
    records are dropped and counted rather than blocking the caller.
    """

    def __init__(self, target_handler: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._target = target_handler
        self._shutdown = False
        self._dropped = 0
        self._thread = threading.Thread(target=self._worker, daemon=True, name="log-writer")
        self._thread.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._shutdown:
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def _worker(self) -> None:
        while not self._shutdown or not self._queue.empty():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._target.handle(record)
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        self._queue.join()
        self._target.flush()

    def close(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        if self._dropped > 0:
            sys.stderr.write(f"[logging] Dropped {self._dropped} log records due to queue overflow\n")
        self._target.close()
        super().close()


def build_logger(
    name: str = "pongbot",
    level: int | str = logging.INFO,
    file_path: Optional[str] = "pongbot.log",
    async_file: bool = True,
    console: bool = True,
) -> logging.Logger:
    """
    Build the process logger.

    Args:
        name: Logger name
        level: Minimum log level (int or level name)
        file_path: Path to JSON log file (None to disable file logging)
        async_file: Write the file through AsyncQueueHandler
        console: Attach the rich console handler

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Idempotent handler setup
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    if console:
        stream_handler = RichHandler(
            rich_tracebacks=False,
            show_time=True,
            show_level=True,
            show_path=False,
            markup=False,
            log_time_format="%Y-%m-%d %H:%M:%S",
        )
        stream_handler.setLevel(level)
        stream_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(stream_handler)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(JsonFormatter())
        file_handler.setLevel(level)

        if async_file:
            async_handler = AsyncQueueHandler(file_handler, max_queue_size=10000)
            async_handler.setLevel(level)
            logger.addHandler(async_handler)
        else:
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data: Any,
) -> None:
    """
    Log a structured event with proper level.

    Usage:
        log_event(log, "pong_confirmed", tx=tx_hash, block=block)
    """
    payload = {"event": event, **data}
    logger.log(level, dumps(payload))
