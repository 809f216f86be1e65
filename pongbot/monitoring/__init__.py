"""
Monitoring package.

Prometheus metrics for queue, action and reconciliation activity.
"""

from pongbot.monitoring.metrics import BotMetrics, start_metrics_server

__all__ = [
    "BotMetrics",
    "start_metrics_server",
]
