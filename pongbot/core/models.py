"""
Event model shared by the queue, dispatcher, reconciler and chain adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class Event:
    """
    A Ping notification that needs exactly one pong.

    Identity is ``id`` alone (the originating transaction hash); two events
    with the same id compare equal even if reported at different blocks.
    """
    id: str
    block_number: int = field(compare=False)

    @classmethod
    def from_log(cls, entry: Dict[str, Any]) -> "Event":
        """Build from an eth_getLogs entry (hex-encoded blockNumber)."""
        block = entry["blockNumber"]
        if isinstance(block, str):
            block = int(block, 16)
        return cls(id=str(entry["transactionHash"]).lower(), block_number=int(block))
