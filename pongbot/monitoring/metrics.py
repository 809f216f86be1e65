"""
Prometheus metrics for the pong bot.

Organized into: queues, actions, reconciliation.
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server


class BotMetrics:
    """Counters and gauges for queue, dispatcher and reconciler activity."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Queue Metrics ===
        self.events_enqueued = Counter(
            'events_enqueued_total',
            'Ping events pushed into a queue',
            labelnames=['queue'],
            registry=reg
        )
        self.duplicates = Counter(
            'queue_duplicates_total',
            'Pushes ignored because the event was already queued',
            labelnames=['queue'],
            registry=reg
        )
        self.queue_depth = Gauge(
            'queue_depth',
            'Events waiting in a queue',
            labelnames=['queue'],
            registry=reg
        )

        # === Action Metrics ===
        self.actions = Counter(
            'actions_total',
            'Drain attempts by outcome (sent, escalated, failed)',
            labelnames=['queue', 'outcome'],
            registry=reg
        )
        self.action_latency_ms = Gauge(
            'action_latency_ms',
            'Duration of the last executor call (milliseconds)',
            labelnames=['queue'],
            registry=reg
        )

        # === Reconciliation Metrics ===
        self.reconcile_runs = Counter(
            'reconcile_runs_total',
            'Reconciliation passes by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.last_block = Gauge(
            'last_block',
            'Persisted reconciliation watermark',
            registry=reg
        )
        self.live_dropped = Counter(
            'live_events_dropped_total',
            'Live events dropped because the channel was full',
            registry=reg
        )


def start_metrics_server(metrics: BotMetrics, port: int, addr: str = "0.0.0.0"):
    """Expose ``metrics`` on ``http://addr:port/metrics``. Returns the server handle."""
    return start_http_server(port, addr=addr, registry=metrics.registry)
