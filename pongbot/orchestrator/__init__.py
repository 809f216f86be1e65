"""
Orchestrator package - wiring and scheduling.

Starts the live subscription, the startup reconciliation and the periodic
drain/reconcile ticks without owning any business rule itself.
"""

from pongbot.orchestrator.orchestrator import Orchestrator, OrchestratorConfig

__all__ = [
    "Orchestrator",
    "OrchestratorConfig",
]
