"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from pongbot.chain.jsonrpc import JsonRpcClient
from pongbot.chain.ping_source import PingEventSource
from pongbot.chain.pong_executor import PongExecutor
from pongbot.config.config import Settings
from pongbot.core.errors import ConfigurationError, StorageReadFailure, StorageWriteFailure
from pongbot.execution.dispatcher import Dispatcher, DispatcherConfig
from pongbot.execution.event_queue import ESCALATED_QUEUE, PRIMARY_QUEUE, EventQueue
from pongbot.execution.reconciler import Reconciler, ReconcilerConfig
from pongbot.infra.logging_cfg import build_logger, log_event
from pongbot.monitoring.metrics import BotMetrics, start_metrics_server
from pongbot.orchestrator.orchestrator import Orchestrator, OrchestratorConfig
from pongbot.state.state_store import StateStore


def build_orchestrator(
    cfg: Settings,
    source,
    executor,
    log: logging.Logger,
    metrics: BotMetrics | None = None,
) -> Orchestrator:
    """Wire the core around the given collaborators."""
    state = StateStore(cfg.state_file, floor=cfg.start_block, logger=log)
    primary = EventQueue(PRIMARY_QUEUE, cfg.primary_multiplier, metrics=metrics, logger=log)
    escalated = EventQueue(ESCALATED_QUEUE, cfg.escalated_multiplier, metrics=metrics, logger=log)
    dispatcher = Dispatcher(
        primary,
        escalated,
        state,
        executor,
        DispatcherConfig(base_effort=cfg.base_effort, action_timeout_sec=cfg.action_timeout),
        metrics=metrics,
        logger=log,
    )
    reconciler = Reconciler(
        source,
        state,
        primary,
        ReconcilerConfig(max_range=cfg.reconcile_max_range),
        metrics=metrics,
        logger=log,
        dispatcher=dispatcher,
    )
    return Orchestrator(
        source,
        state,
        primary,
        escalated,
        dispatcher,
        reconciler,
        OrchestratorConfig(
            drain_interval_sec=cfg.drain_interval,
            reconcile_interval_sec=cfg.reconcile_interval,
            live_channel_size=cfg.live_channel_size,
        ),
        metrics=metrics,
        logger=log,
    )


async def main() -> int:
    boot = build_logger("pongbot.boot", file_path=None)
    try:
        cfg = Settings.load(logger=boot)
        wallet = cfg.resolve_signer()
    except ConfigurationError as exc:
        log_event(boot, "config_error", level=logging.CRITICAL, err=str(exc))
        return 1

    log = build_logger("pongbot", level=cfg.log_level, file_path=cfg.log_file)

    metrics = BotMetrics()
    if cfg.metrics_port > 0:
        start_metrics_server(metrics, cfg.metrics_port)
        log_event(log, "metrics_server_started", port=cfg.metrics_port)

    rpc = JsonRpcClient(cfg.rpc_url, timeout=cfg.http_timeout)
    source = PingEventSource(rpc, cfg.contract_address, poll_interval_sec=cfg.poll_interval, logger=log)
    executor = PongExecutor(
        rpc,
        wallet,
        cfg.contract_address,
        receipt_timeout_sec=cfg.receipt_timeout,
        logger=log,
    )

    try:
        orchestrator = build_orchestrator(cfg, source, executor, log, metrics)
    except StorageReadFailure as exc:
        log_event(log, "state_load_error", level=logging.CRITICAL, err=str(exc))
        await rpc.close()
        return 1

    log_event(log, "startup", address=executor.address, contract=cfg.contract_address)

    loop = asyncio.get_running_loop()
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.stop)
        except NotImplementedError:
            pass

    try:
        await orchestrator.run()
    except StorageWriteFailure as exc:
        log_event(log, "fatal_storage_error", level=logging.CRITICAL, err=str(exc))
        return 1
    except Exception as exc:
        log.exception(f"Bot stopped on unexpected error: {exc}")
        return 1
    finally:
        await rpc.close()
        log.info("Shutdown complete")
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
