"""
Orchestrator: wires the event source, queues, dispatcher and reconciler.

Startup sequence:
    1. Read the chain head (``startup_head``)
    2. Subscribe to live Ping events; the callback only feeds a bounded channel
    3. Reconcile (persisted watermark, startup_head]
    4. Start the periodic activities

Periodic activities (single asyncio loop, interleaving at awaits):
    - primary drain tick      every drain_interval_sec
    - escalated drain tick    every drain_interval_sec
    - reconciliation tick     every reconcile_interval_sec
    - live consumer           drains the channel continuously

Ticks fire on schedule even if the previous one is still suspended; the
per-queue drain lock (and the reconcile lock) turns such overlaps into skips.

Live partition:
    A live event is enqueued only if its block is strictly above startup_head.
    Everything at or below it belongs to the startup reconciliation pass.
    Both paths may still push the same id; queue dedup absorbs it.

Shutdown is abrupt: in-flight drains are cancelled, not flushed. Whatever was
queued is rediscovered by the next reconciliation after restart.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TYPE_CHECKING

from pongbot.core.json_utils import dumps
from pongbot.core.models import Event

if TYPE_CHECKING:
    from pongbot.execution.dispatcher import Dispatcher, DrainResult
    from pongbot.execution.event_queue import EventQueue
    from pongbot.execution.interfaces import EventSource
    from pongbot.execution.reconciler import Reconciler, ReconcileResult
    from pongbot.monitoring.metrics import BotMetrics
    from pongbot.state.state_store import StateStore


@dataclass
class OrchestratorConfig:
    """Configuration for Orchestrator."""
    drain_interval_sec: float = 5.0
    reconcile_interval_sec: float = 60.0

    # Bounded hand-off between the live subscription and the primary queue
    live_channel_size: int = 1000


class Orchestrator:
    """
    Owns the control flow; the business rules live in Dispatcher/Reconciler.

    Usage:
        orchestrator = Orchestrator(source, state, primary, escalated,
                                    dispatcher, reconciler, config, logger=log)
        await orchestrator.run()      # until stop() or a fatal error
    """

    def __init__(
        self,
        source: "EventSource",
        state: "StateStore",
        primary: "EventQueue",
        escalated: "EventQueue",
        dispatcher: "Dispatcher",
        reconciler: "Reconciler",
        config: Optional[OrchestratorConfig] = None,
        metrics: Optional["BotMetrics"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.source = source
        self.state = state
        self.primary = primary
        self.escalated = escalated
        self.dispatcher = dispatcher
        self.reconciler = reconciler
        self.config = config or OrchestratorConfig()
        self.metrics = metrics
        self.log = logger or logging.getLogger("pongbot")

        self.startup_head: Optional[int] = None
        self._channel: asyncio.Queue[Event] = asyncio.Queue(maxsize=max(1, self.config.live_channel_size))
        self._reconcile_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._stopped = asyncio.Event()
        self._fatal: Optional[BaseException] = None
        self._started = False

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, dumps({"event": event, **kwargs}))

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped.is_set()

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Subscribe, run the startup reconciliation and schedule the ticks."""
        if self._started:
            return
        self._started = True

        head = await self.source.current_head()
        self.startup_head = head
        last_block = self.state.get_last_block()
        self._log_event("bot_started", startup_head=head, last_block=last_block)

        await self.source.subscribe(self.on_live_event)
        self._spawn(self._consume_live(), "live-consumer")

        await self.reconciler.reconcile(last_block, head)

        self._spawn(self._every(self.config.drain_interval_sec, self.drain_primary), "primary-ticker")
        self._spawn(self._every(self.config.drain_interval_sec, self.drain_escalated), "escalated-ticker")
        self._spawn(self._every(self.config.reconcile_interval_sec, self.reconcile_once), "reconcile-ticker")

    async def run(self) -> None:
        """Start and block until stop() is called or a task fails fatally."""
        try:
            await self.start()
            await self._stopped.wait()
        finally:
            await self.shutdown()
        if self._fatal is not None:
            raise self._fatal

    def stop(self) -> None:
        self._stopped.set()
        self._log_event("orchestrator_stop")

    async def shutdown(self) -> None:
        """Cancel every task and drop the subscription. Nothing is flushed."""
        self._stopped.set()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        try:
            await self.source.unsubscribe()
        except Exception as exc:
            self._log_event("unsubscribe_error", level=logging.WARNING, err=str(exc))
        self._log_event(
            "orchestrator_shutdown",
            primary_pending=len(self.primary),
            escalated_pending=len(self.escalated),
        )

    # ========== Ticks ==========

    async def drain_primary(self) -> "DrainResult":
        return await self.dispatcher.drain(self.primary)

    async def drain_escalated(self) -> "DrainResult":
        return await self.dispatcher.drain(self.escalated)

    async def reconcile_once(self) -> Optional["ReconcileResult"]:
        """One reconciliation tick; skipped while a previous pass is running."""
        if self._reconcile_lock.locked():
            self._log_event("reconcile_skipped_running", level=logging.DEBUG)
            return None
        async with self._reconcile_lock:
            return await self.reconciler.reconcile_to_head()

    # ========== Live path ==========

    def on_live_event(self, event: Event) -> None:
        """Subscription callback: hand the event to the bounded channel."""
        try:
            self._channel.put_nowait(event)
        except asyncio.QueueFull:
            # reconciliation will pick it up from the chain
            if self.metrics is not None:
                self.metrics.live_dropped.inc()
            self._log_event("live_channel_full", level=logging.WARNING, tx=event.id, block=event.block_number)

    def handle_live_event(self, event: Event) -> bool:
        """Apply the startup-head partition and enqueue. Returns True if pushed."""
        if self.startup_head is None or event.block_number <= self.startup_head:
            self._log_event(
                "live_event_before_start",
                level=logging.DEBUG,
                tx=event.id,
                block=event.block_number,
                startup_head=self.startup_head,
            )
            return False
        self._log_event("live_event", tx=event.id, block=event.block_number)
        return self.primary.push(event)

    async def _consume_live(self) -> None:
        while True:
            event = await self._channel.get()
            self.handle_live_event(event)

    # ========== Scheduling ==========

    async def _every(self, interval: float, tick: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval)
            self._spawn(tick(), tick.__name__)

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._log_event(
            "orchestrator_fatal",
            level=logging.CRITICAL,
            task=task.get_name(),
            err=f"{type(exc).__name__}: {exc}",
        )
        if self._fatal is None:
            self._fatal = exc
        self._stopped.set()

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "startup_head": self.startup_head,
            "last_block": self.state.get_last_block(),
            "sent": len(self.state.get_sent()),
            "failed": len(self.state.get_failed()),
            "primary": self.primary.get_stats(),
            "escalated": self.escalated.get_stats(),
            "live_channel": self._channel.qsize(),
        }
