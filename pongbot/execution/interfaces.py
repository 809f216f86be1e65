"""
Narrow interfaces the core consumes from its collaborators.

The core never imports the chain adapters directly; anything that satisfies
these protocols (the JSON-RPC adapters, test doubles) can be wired in.
"""

from __future__ import annotations

from typing import Callable, List, Protocol, runtime_checkable

from pongbot.core.models import Event

EventCallback = Callable[[Event], None]


@runtime_checkable
class EventSource(Protocol):
    """Authoritative source of Ping events."""

    async def subscribe(self, callback: EventCallback) -> None:
        """Deliver newly observed events to ``callback`` (at-least-once, ~arrival order)."""
        ...

    async def unsubscribe(self) -> None:
        ...

    async def query_range(self, from_block_exclusive: int, to_block_inclusive: int) -> List[Event]:
        """All events in (from, to]. Raises SourceQueryFailure."""
        ...

    async def current_head(self) -> int:
        """Latest block number. Raises SourceQueryFailure."""
        ...


@runtime_checkable
class ActionExecutor(Protocol):
    """Sends the response action for one event."""

    async def execute(self, event: Event, effort: int) -> int:
        """
        Send and confirm the response.

        Returns:
            Block number the response was confirmed in

        Raises:
            ActionFailure: rejected, errored or confirmed unsuccessfully
        """
        ...
