"""
Reconciler: re-derives missed Ping events from the chain.

This module recovers every event the live subscription did not deliver:
- Events emitted while the bot was down (startup pass from the watermark)
- Events lost from memory on crash (queues are rebuilt empty)
- Events the live poller missed or dropped (periodic pass)

Architecture:
    reconcile(from, to) queries (from, to], pushes every event that has no
    recorded outcome and is not still held by the Dispatcher (queued in a tier
    or in flight) into the primary queue, and then advances the watermark
    to ``to`` and prunes ``sent`` below it, even when the range was quiet.
    Queue-level dedup absorbs overlap with the live path.

Failure handling:
    A failing source query leaves the watermark where it was; the next tick
    re-queries the same range, so nothing is lost.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, TYPE_CHECKING

from pongbot.core.json_utils import dumps

if TYPE_CHECKING:
    from pongbot.execution.dispatcher import Dispatcher
    from pongbot.execution.event_queue import EventQueue
    from pongbot.execution.interfaces import EventSource
    from pongbot.monitoring.metrics import BotMetrics
    from pongbot.state.state_store import StateStore


@dataclass
class ReconcilerConfig:
    """Configuration for Reconciler."""
    # Largest block span per log query; 0 = whole range in one query
    max_range: int = 0


@dataclass
class ReconcileResult:
    """Result of a reconciliation pass."""
    success: bool
    from_block: int
    to_block: int
    events_found: int = 0
    enqueued: int = 0
    already_resolved: int = 0
    already_pending: int = 0
    error: Optional[str] = None
    duration_ms: float = 0.0


class Reconciler:
    """
    Watermark-based catch-up against the authoritative event source.

    Usage:
        reconciler = Reconciler(source, state, primary, config, logger=log, dispatcher=dispatcher)

        # startup
        await reconciler.reconcile(state.get_last_block(), head)

        # periodic (scheduled by the Orchestrator)
        await reconciler.reconcile_to_head()
    """

    def __init__(
        self,
        source: "EventSource",
        state: "StateStore",
        queue: "EventQueue",
        config: Optional[ReconcilerConfig] = None,
        metrics: Optional["BotMetrics"] = None,
        logger: Optional[logging.Logger] = None,
        dispatcher: Optional["Dispatcher"] = None,
    ) -> None:
        self.source = source
        self.state = state
        self.queue = queue
        self.config = config or ReconcilerConfig()
        self.metrics = metrics
        self.log = logger or logging.getLogger("pongbot")
        # ids still owned by the Dispatcher (queued in either tier or in flight)
        self.dispatcher = dispatcher

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, dumps({"event": event, **kwargs}))

    async def reconcile_to_head(self) -> ReconcileResult:
        """Reconcile from the persisted watermark to the current head."""
        from_block = self.state.get_last_block()
        try:
            head = await self.source.current_head()
        except Exception as exc:
            self._log_event("reconcile_error", level=logging.ERROR, stage="head", err=str(exc))
            self._record("error")
            return ReconcileResult(success=False, from_block=from_block, to_block=from_block, error=str(exc))
        return await self.reconcile(from_block, head)

    async def reconcile(self, from_block: int, to_block: int) -> ReconcileResult:
        """
        Reconcile the open-closed range (from_block, to_block].

        No-op when to_block <= from_block. With ``max_range`` set the range is
        processed in consecutive windows, committing the watermark after each.
        """
        if to_block <= from_block:
            return ReconcileResult(success=True, from_block=from_block, to_block=to_block)

        start = time.monotonic()
        result = ReconcileResult(success=True, from_block=from_block, to_block=to_block)
        step = self.config.max_range if self.config.max_range > 0 else to_block - from_block

        window_start = from_block
        while window_start < to_block:
            window_end = min(window_start + step, to_block)
            ok = await self._reconcile_window(window_start, window_end, result)
            if not ok:
                result.success = False
                break
            window_start = window_end

        result.duration_ms = (time.monotonic() - start) * 1000
        self._record("success" if result.success else "error")
        self._log_event(
            "reconcile_complete" if result.success else "reconcile_incomplete",
            level=logging.INFO if result.success else logging.WARNING,
            from_block=from_block,
            to_block=to_block,
            last_block=self.state.get_last_block(),
            found=result.events_found,
            enqueued=result.enqueued,
            already_resolved=result.already_resolved,
            already_pending=result.already_pending,
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    async def _reconcile_window(self, from_block: int, to_block: int, result: ReconcileResult) -> bool:
        self._log_event("reconcile_window", level=logging.DEBUG, from_block=from_block + 1, to_block=to_block)
        try:
            events = await self.source.query_range(from_block, to_block)
        except Exception as exc:
            result.error = str(exc)
            self._log_event(
                "reconcile_error",
                level=logging.ERROR,
                stage="query",
                from_block=from_block,
                to_block=to_block,
                err=str(exc),
            )
            return False

        result.events_found += len(events)
        sent = self.state.get_sent()
        failed = self.state.get_failed()
        for event in events:
            if event.id in sent or event.id in failed:
                result.already_resolved += 1
                self._log_event("reconcile_skip_resolved", level=logging.DEBUG, tx=event.id, block=event.block_number)
                continue
            if self.dispatcher is not None and self.dispatcher.is_pending(event.id):
                result.already_pending += 1
                self._log_event("reconcile_skip_pending", level=logging.DEBUG, tx=event.id, block=event.block_number)
                continue
            if self.queue.push(event):
                result.enqueued += 1

        # an overlapping call below the watermark must not regress it
        if to_block > self.state.get_last_block():
            self.state.set_last_block(to_block)
        self.state.clear_before(to_block)
        if self.metrics is not None:
            self.metrics.last_block.set(to_block)
        return True

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.reconcile_runs.labels(outcome=outcome).inc()
