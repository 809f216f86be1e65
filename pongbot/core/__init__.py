"""
Core package.

Event model, error taxonomy and JSON helpers shared by every layer.
"""

from pongbot.core.errors import (
    PongBotError,
    ConfigurationError,
    InvalidArgument,
    DuplicateItem,
    ActionFailure,
    SourceQueryFailure,
    StorageReadFailure,
    StorageWriteFailure,
)
from pongbot.core.models import Event

__all__ = [
    "Event",
    "PongBotError",
    "ConfigurationError",
    "InvalidArgument",
    "DuplicateItem",
    "ActionFailure",
    "SourceQueryFailure",
    "StorageReadFailure",
    "StorageWriteFailure",
]
