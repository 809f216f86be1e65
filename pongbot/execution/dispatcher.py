"""
Dispatcher: drains one event per queue per tick and applies escalation.

Drain:
    1. Skip if the queue's drain lock is held (previous drain still suspended
       in the executor call)
    2. Take the lock, shift the head; empty queue -> release and return
    3. Drop the event if it already has a recorded outcome
    4. Call executor with effort = base_effort * queue.tier_multiplier
    5. Success -> StateStore.add_sent; failure -> escalation
    6. Release the lock on every path

Escalation (state machine over queue identity):
    primary failure    -> push into escalated queue
    escalated failure  -> StateStore.add_failed, event dropped for good

So every event costs at most two executor calls, one per tier.
The ids of shifted events stay visible through is_pending() until their
outcome is recorded, so reconciliation cannot queue them a second time.

Errors:
    Executor failures (ActionFailure or anything else it raises) never leave
    the Dispatcher. StorageWriteFailure while recording an outcome does, and is
    fatal to the process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Set, TYPE_CHECKING

from pongbot.core.errors import ActionFailure
from pongbot.core.json_utils import dumps
from pongbot.core.models import Event

if TYPE_CHECKING:
    from pongbot.execution.event_queue import EventQueue
    from pongbot.execution.interfaces import ActionExecutor
    from pongbot.monitoring.metrics import BotMetrics
    from pongbot.state.state_store import StateStore


class DrainOutcome(Enum):
    """What a single drain tick did."""
    SKIPPED_LOCKED = "skipped_locked"
    EMPTY = "empty"
    ALREADY_RESOLVED = "already_resolved"
    SENT = "sent"
    ESCALATED = "escalated"
    FAILED = "failed"


@dataclass
class DrainResult:
    """Result of one drain tick on one queue."""
    outcome: DrainOutcome
    queue: str
    event_id: Optional[str] = None
    block_number: Optional[int] = None
    effort: Optional[int] = None
    confirmed_block: Optional[int] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class DispatcherConfig:
    """Configuration for Dispatcher."""
    # Gas limit for the primary tier; each queue scales it by its multiplier
    base_effort: int = 50000

    # 0 disables the timeout: a hung confirmation then stalls that tier
    action_timeout_sec: float = 0.0


class Dispatcher:
    """
    Per-queue drain loop body plus the two-tier escalation policy.

    Usage:
        dispatcher = Dispatcher(primary, escalated, state, executor, config, logger=log)

        # every drain tick, independently per queue
        await dispatcher.drain(primary)
        await dispatcher.drain(escalated)
    """

    def __init__(
        self,
        primary: "EventQueue",
        escalated: "EventQueue",
        state: "StateStore",
        executor: "ActionExecutor",
        config: Optional[DispatcherConfig] = None,
        metrics: Optional["BotMetrics"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Args:
            primary: First-tier queue (live + reconciled events)
            escalated: Second-tier queue (primary failures)
            state: Outcome store
            executor: Sends the pong
            config: Optional configuration
            metrics: Optional Prometheus metrics
            logger: Logger for structured events
        """
        if escalated.tier_multiplier <= primary.tier_multiplier:
            raise ValueError("escalated tier multiplier must exceed the primary one")
        self.primary = primary
        self.escalated = escalated
        self.state = state
        self.executor = executor
        self.config = config or DispatcherConfig()
        self.metrics = metrics
        self.log = logger or logging.getLogger("pongbot")
        self._in_flight: Set[str] = set()

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, dumps({"event": event, **kwargs}))

    def effort_for(self, queue: "EventQueue") -> int:
        return self.config.base_effort * queue.tier_multiplier

    async def drain(self, queue: "EventQueue") -> DrainResult:
        """Attempt at most one event from ``queue``."""
        lock = queue.drain_lock
        if lock.locked():
            self._log_event("drain_skipped_locked", level=logging.DEBUG, queue=queue.name)
            return DrainResult(outcome=DrainOutcome.SKIPPED_LOCKED, queue=queue.name)

        # acquire() on a free asyncio.Lock does not suspend, so no other
        # drain can slip in between the check above and taking the lock
        async with lock:
            event = queue.shift()
            if event is None:
                return DrainResult(outcome=DrainOutcome.EMPTY, queue=queue.name)
            self._in_flight.add(event.id)
            try:
                return await self._process(queue, event)
            finally:
                self._in_flight.discard(event.id)

    def is_pending(self, event_id: str) -> bool:
        """True while ``event_id`` is queued in either tier or being executed."""
        return (
            event_id in self._in_flight
            or self.primary.contains(event_id)
            or self.escalated.contains(event_id)
        )

    async def _process(self, queue: "EventQueue", event: Event) -> DrainResult:
        if event.id in self.state.get_sent() or event.id in self.state.get_failed():
            self._log_event("drain_skip_resolved", level=logging.WARNING, queue=queue.name, tx=event.id)
            self._record(queue, DrainOutcome.ALREADY_RESOLVED, 0.0)
            return DrainResult(
                outcome=DrainOutcome.ALREADY_RESOLVED,
                queue=queue.name,
                event_id=event.id,
                block_number=event.block_number,
            )

        effort = self.effort_for(queue)
        self._log_event(
            "drain_processing",
            queue=queue.name,
            length=len(queue),
            tx=event.id,
            block=event.block_number,
            effort=effort,
        )
        start = time.monotonic()
        try:
            confirmed_block = await self._execute(event, effort)
        except Exception as exc:
            duration_ms = (time.monotonic() - start) * 1000
            self._log_event(
                "pong_error",
                level=logging.WARNING,
                queue=queue.name,
                tx=event.id,
                err=str(exc) or type(exc).__name__,
            )
            outcome = self._escalate(queue, event)
            self._record(queue, outcome, duration_ms)
            return DrainResult(
                outcome=outcome,
                queue=queue.name,
                event_id=event.id,
                block_number=event.block_number,
                effort=effort,
                error=str(exc) or type(exc).__name__,
                duration_ms=duration_ms,
            )

        duration_ms = (time.monotonic() - start) * 1000
        self.state.add_sent(event.id, event.block_number)
        self._log_event(
            "pong_confirmed",
            queue=queue.name,
            tx=event.id,
            block=event.block_number,
            confirmed_block=confirmed_block,
        )
        self._record(queue, DrainOutcome.SENT, duration_ms)
        return DrainResult(
            outcome=DrainOutcome.SENT,
            queue=queue.name,
            event_id=event.id,
            block_number=event.block_number,
            effort=effort,
            confirmed_block=confirmed_block,
            duration_ms=duration_ms,
        )

    async def _execute(self, event: Event, effort: int) -> int:
        timeout = self.config.action_timeout_sec
        if timeout and timeout > 0:
            try:
                return await asyncio.wait_for(self.executor.execute(event, effort), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise ActionFailure(f"action timed out after {timeout}s", event_id=event.id) from exc
        return await self.executor.execute(event, effort)

    def _escalate(self, queue: "EventQueue", event: Event) -> DrainOutcome:
        if queue is self.primary:
            self.escalated.push(event)
            self._log_event("pong_escalated", level=logging.WARNING, tx=event.id, to=self.escalated.name)
            return DrainOutcome.ESCALATED

        self.state.add_failed(event.id, event.block_number)
        self._log_event("pong_failed_permanently", level=logging.ERROR, tx=event.id, block=event.block_number)
        return DrainOutcome.FAILED

    def _record(self, queue: "EventQueue", outcome: DrainOutcome, duration_ms: float) -> None:
        if self.metrics is None:
            return
        self.metrics.actions.labels(queue=queue.name, outcome=outcome.value).inc()
        self.metrics.action_latency_ms.labels(queue=queue.name).set(duration_ms)
