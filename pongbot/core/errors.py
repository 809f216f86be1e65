"""
Error taxonomy for the pong bot.

Only ConfigurationError, StorageReadFailure and StorageWriteFailure are fatal.
The others are recovered close to where they are raised:
- DuplicateItem: swallowed by EventQueue.push (logged)
- ActionFailure: routed to escalation by the Dispatcher
- SourceQueryFailure: Reconciler keeps the watermark and retries next tick
"""

from __future__ import annotations

from typing import Optional


class PongBotError(Exception):
    """Base class for all pong bot errors."""


class ConfigurationError(PongBotError):
    """Missing or invalid credential/parameter. Fatal at startup."""


class InvalidArgument(PongBotError, ValueError):
    """Caller passed a value that would break a store invariant."""


class DuplicateItem(PongBotError):
    """An event with the same id is already queued."""

    def __init__(self, queue_name: str, event_id: str) -> None:
        super().__init__(f"{event_id} already queued in {queue_name}")
        self.queue_name = queue_name
        self.event_id = event_id


class ActionFailure(PongBotError):
    """The response action was rejected, errored or confirmed unsuccessfully."""

    def __init__(self, message: str, event_id: Optional[str] = None, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.event_id = event_id
        self.tx_hash = tx_hash


class SourceQueryFailure(PongBotError):
    """Querying the event source (head or range) failed."""


class StorageReadFailure(PongBotError):
    """Persisted state exists but could not be read or parsed."""


class StorageWriteFailure(PongBotError):
    """Persisting state failed. Treated as fatal."""
