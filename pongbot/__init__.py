"""
pongbot: answers every Ping() event of a contract with exactly one pong().

Layers:
- core: event model, errors, JSON helpers
- state: durable watermark and outcome store
- execution: tiered queues, dispatcher, reconciler
- orchestrator: wiring and scheduling
- chain: JSON-RPC event source and pong executor
"""

__version__ = "1.0.0"
