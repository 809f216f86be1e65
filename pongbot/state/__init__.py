"""
State package.

Durable progress (watermark) and outcome history for crash recovery.
"""

from pongbot.state.state_store import StateStore

__all__ = ["StateStore"]
