"""
Execution layer: queues, dispatcher and reconciler.

- EventQueue: deduplicating FIFO per retry tier
- Dispatcher: one drain per queue per tick, two-tier escalation
- Reconciler: watermark-based catch-up from the event source
"""

from pongbot.execution.event_queue import EventQueue, PRIMARY_QUEUE, ESCALATED_QUEUE
from pongbot.execution.interfaces import ActionExecutor, EventSource, EventCallback
from pongbot.execution.dispatcher import Dispatcher, DispatcherConfig, DrainOutcome, DrainResult
from pongbot.execution.reconciler import Reconciler, ReconcilerConfig, ReconcileResult

__all__ = [
    "EventQueue",
    "PRIMARY_QUEUE",
    "ESCALATED_QUEUE",
    "ActionExecutor",
    "EventSource",
    "EventCallback",
    "Dispatcher",
    "DispatcherConfig",
    "DrainOutcome",
    "DrainResult",
    "Reconciler",
    "ReconcilerConfig",
    "ReconcileResult",
]
