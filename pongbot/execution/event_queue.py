"""
EventQueue: in-memory, deduplicating FIFO of pending Ping events.

Two instances exist at runtime, one per retry tier:
- primary: fed by live events and reconciliation, tier multiplier 1
- escalated: fed by primary failures, higher tier multiplier

Deduplication keys on the event id only. Lookup is O(1) because the queue is
an insertion-ordered dict keyed by id.

Each queue owns its ``drain_lock``. The Dispatcher holds it for the whole
drain, including the suspended executor call, so at most one item per queue is
ever in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterator, Optional, TYPE_CHECKING

from pongbot.core.errors import DuplicateItem
from pongbot.core.json_utils import dumps
from pongbot.core.models import Event

if TYPE_CHECKING:
    from pongbot.monitoring.metrics import BotMetrics

PRIMARY_QUEUE = "Common_Ping_Event_Queue"
ESCALATED_QUEUE = "Force_Ping_Event_Queue"


class EventQueue:
    """
    Deduplicating FIFO with a retry-tier multiplier.

    Never blocks; safe for single-threaded asyncio usage (no internal locks
    around the container itself).
    """

    def __init__(
        self,
        name: str,
        tier_multiplier: int,
        metrics: Optional["BotMetrics"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if int(tier_multiplier) <= 0:
            raise ValueError(f"tier_multiplier must be > 0, got {tier_multiplier}")
        self.name = name
        self.tier_multiplier = int(tier_multiplier)
        self.drain_lock = asyncio.Lock()
        self.metrics = metrics
        self.log = logger or logging.getLogger("pongbot")
        self._items: "OrderedDict[str, Event]" = OrderedDict()
        self._stats = {
            "pushed": 0,
            "duplicates": 0,
            "shifted": 0,
        }

    def add(self, event: Event) -> None:
        """Append ``event``; raises DuplicateItem if its id is already queued."""
        if event.id in self._items:
            self._stats["duplicates"] += 1
            raise DuplicateItem(self.name, event.id)
        self._items[event.id] = event
        self._stats["pushed"] += 1

    def push(self, event: Event) -> bool:
        """
        Append ``event`` unless already queued.

        Returns:
            True if appended, False if it was a duplicate (logged, not raised)
        """
        try:
            self.add(event)
        except DuplicateItem:
            if self.metrics is not None:
                self.metrics.duplicates.labels(queue=self.name).inc()
            self.log.warning(dumps({
                "event": "queue_push_duplicate",
                "queue": self.name,
                "tx": event.id,
                "block": event.block_number,
            }))
            return False
        self._update_metrics(enqueued=True)
        self.log.info(dumps({
            "event": "queue_push",
            "queue": self.name,
            "tx": event.id,
            "block": event.block_number,
            "length": len(self._items),
        }))
        return True

    def shift(self) -> Optional[Event]:
        """Remove and return the head, or None when empty."""
        if not self._items:
            return None
        _, event = self._items.popitem(last=False)
        self._stats["shifted"] += 1
        self._update_metrics()
        return event

    def peek_first(self) -> Optional[Event]:
        return next(iter(self._items.values()), None)

    def contains(self, event_id: str) -> bool:
        return event_id in self._items

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "name": self.name,
            "tier_multiplier": self.tier_multiplier,
            "length": len(self._items),
            "draining": self.drain_lock.locked(),
        }

    def _update_metrics(self, enqueued: bool = False) -> None:
        if self.metrics is None:
            return
        if enqueued:
            self.metrics.events_enqueued.labels(queue=self.name).inc()
        self.metrics.queue_depth.labels(queue=self.name).set(len(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._items.values()))

    def __repr__(self) -> str:
        return f"EventQueue(name={self.name!r}, tier_multiplier={self.tier_multiplier}, length={len(self)})"
