"""
PingEventSource: Ping() logs of the watched contract as core Events.

Range queries and head reads go straight to eth_getLogs / eth_blockNumber.
The live subscription polls the head every ``poll_interval_sec`` and delivers
the Ping logs of each newly observed block range, the same way a JSON-RPC
provider without websocket support watches for events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, TYPE_CHECKING

from eth_utils import keccak

from pongbot.core.errors import SourceQueryFailure
from pongbot.core.json_utils import dumps
from pongbot.core.models import Event
from pongbot.execution.interfaces import EventCallback

if TYPE_CHECKING:
    from pongbot.chain.jsonrpc import JsonRpcClient

PING_TOPIC = "0x" + keccak(text="Ping()").hex()


class PingEventSource:
    def __init__(
        self,
        rpc: "JsonRpcClient",
        contract_address: str,
        poll_interval_sec: float = 4.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.rpc = rpc
        self.contract_address = contract_address.lower()
        self.poll_interval_sec = poll_interval_sec
        self.log = logger or logging.getLogger("pongbot")
        self._callback: Optional[EventCallback] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._last_polled: Optional[int] = None

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, dumps({"event": event, **kwargs}))

    async def current_head(self) -> int:
        try:
            return await self.rpc.block_number()
        except Exception as exc:
            raise SourceQueryFailure(f"eth_blockNumber failed: {exc}") from exc

    async def query_range(self, from_block_exclusive: int, to_block_inclusive: int) -> List[Event]:
        if to_block_inclusive <= from_block_exclusive:
            return []
        try:
            logs = await self.rpc.get_logs(
                self.contract_address,
                [PING_TOPIC],
                from_block_exclusive + 1,
                to_block_inclusive,
            )
        except Exception as exc:
            raise SourceQueryFailure(
                f"eth_getLogs ({from_block_exclusive}, {to_block_inclusive}] failed: {exc}"
            ) from exc

        events = []
        for entry in logs:
            if entry.get("removed"):
                continue
            events.append(Event.from_log(entry))
        events.sort(key=lambda e: e.block_number)
        return events

    async def subscribe(self, callback: EventCallback) -> None:
        if self._poll_task is not None:
            raise RuntimeError("already subscribed")
        self._callback = callback
        self._last_polled = await self.current_head()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="ping-poller")
        self._log_event("ping_subscribed", contract=self.contract_address, from_block=self._last_polled)

    async def unsubscribe(self) -> None:
        task, self._poll_task = self._poll_task, None
        self._callback = None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def poll_once(self) -> int:
        """Deliver Ping logs from blocks mined since the last poll. Returns events delivered."""
        if self._callback is None or self._last_polled is None:
            return 0
        head = await self.current_head()
        if head <= self._last_polled:
            return 0
        events = await self.query_range(self._last_polled, head)
        self._last_polled = head
        for event in events:
            self._callback(event)
        return len(events)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_sec)
            try:
                await self.poll_once()
            except SourceQueryFailure as exc:
                # same range is retried on the next poll
                self._log_event("ping_poll_error", level=logging.WARNING, err=str(exc))
            except Exception as exc:
                self._log_event(
                    "ping_poll_error",
                    level=logging.ERROR,
                    err=f"{type(exc).__name__}: {exc}",
                )
