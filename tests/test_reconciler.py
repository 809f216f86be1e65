"""
Tests for Reconciler - watermark catch-up against the event source.

Tests cover:
- Already-resolved events are skipped, the watermark still advances
- Quiet ranges advance the watermark and prune sent records
- Query failure leaves the watermark untouched
- Idempotence of repeated passes
- Windowed queries with max_range
- reconcile_to_head
- Events queued in the escalated tier or in flight are left to the Dispatcher
"""

import asyncio

import pytest

from conftest import FakeEventSource, ScriptedExecutor, fail
from pongbot.core.models import Event
from pongbot.execution.dispatcher import Dispatcher, DrainOutcome
from pongbot.execution.event_queue import EventQueue
from pongbot.execution.reconciler import Reconciler, ReconcilerConfig
from pongbot.monitoring.metrics import BotMetrics
from pongbot.state.state_store import StateStore


@pytest.fixture
def store(state_path, test_logger):
    return StateStore(state_path, floor=100, logger=test_logger)


@pytest.fixture
def queue(test_logger):
    return EventQueue("primary", 1, logger=test_logger)


def make_reconciler(source, store, queue, logger, **config):
    return Reconciler(source, store, queue, ReconcilerConfig(**config), logger=logger)


class TestReconcile:

    @pytest.mark.asyncio
    async def test_sent_event_skipped_watermark_advances(self, store, queue, test_logger):
        store.add_sent("0xe3", 150)
        source = FakeEventSource([Event("0xe3", 150)], head=200)
        reconciler = make_reconciler(source, store, queue, test_logger)

        result = await reconciler.reconcile(100, 200)

        assert result.success
        assert result.events_found == 1
        assert result.already_resolved == 1
        assert result.enqueued == 0
        assert len(queue) == 0
        assert store.get_last_block() == 200
        # pruned: block 150 < new watermark 200
        assert not store.is_sent("0xe3")

    @pytest.mark.asyncio
    async def test_failed_event_not_requeued(self, store, queue, test_logger):
        store.add_failed("0xbad", 150)
        source = FakeEventSource([Event("0xbad", 150)])
        reconciler = make_reconciler(source, store, queue, test_logger)

        result = await reconciler.reconcile(100, 200)

        assert result.already_resolved == 1
        assert not queue.contains("0xbad")

    @pytest.mark.asyncio
    async def test_unresolved_events_enqueued_in_order(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 120), Event("0xb", 180), Event("0xc", 250)])
        reconciler = make_reconciler(source, store, queue, test_logger)

        result = await reconciler.reconcile(100, 200)

        assert result.enqueued == 2
        assert [e.id for e in queue] == ["0xa", "0xb"]
        assert source.query_calls == [(100, 200)]

    @pytest.mark.asyncio
    async def test_range_is_open_closed(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xlow", 100), Event("0xhigh", 200)])
        reconciler = make_reconciler(source, store, queue, test_logger)

        await reconciler.reconcile(100, 200)

        assert [e.id for e in queue] == ["0xhigh"]

    @pytest.mark.asyncio
    async def test_quiet_range_advances_and_prunes(self, store, queue, test_logger):
        store.add_sent("0xold", 120)
        store.add_sent("0xrecent", 300)
        source = FakeEventSource([])
        reconciler = make_reconciler(source, store, queue, test_logger)

        result = await reconciler.reconcile(100, 250)

        assert result.success
        assert store.get_last_block() == 250
        assert set(store.get_sent()) == {"0xrecent"}

    @pytest.mark.asyncio
    async def test_empty_range_is_noop(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 100)])
        reconciler = make_reconciler(source, store, queue, test_logger)

        result = await reconciler.reconcile(100, 100)

        assert result.success
        assert result.enqueued == 0
        assert source.query_calls == []
        assert store.get_last_block() == 100

    @pytest.mark.asyncio
    async def test_query_failure_keeps_watermark(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 150)])
        source.fail_queries = 1
        reconciler = make_reconciler(source, store, queue, test_logger)

        failed = await reconciler.reconcile(100, 200)

        assert not failed.success
        assert "node unavailable" in failed.error
        assert store.get_last_block() == 100
        assert len(queue) == 0

        retried = await reconciler.reconcile(100, 200)

        assert retried.success
        assert queue.contains("0xa")
        assert store.get_last_block() == 200

    @pytest.mark.asyncio
    async def test_idempotent(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 150)])
        reconciler = make_reconciler(source, store, queue, test_logger)

        await reconciler.reconcile(100, 200)
        snapshot = store.snapshot()
        second = await reconciler.reconcile(100, 200)

        assert second.enqueued == 0
        assert len(queue) == 1
        assert store.snapshot() == snapshot

    @pytest.mark.asyncio
    async def test_stale_range_does_not_regress_watermark(self, store, queue, test_logger):
        source = FakeEventSource([])
        reconciler = make_reconciler(source, store, queue, test_logger)
        await reconciler.reconcile(100, 400)

        result = await reconciler.reconcile(100, 200)

        assert result.success
        assert store.get_last_block() == 400


class TestWindows:

    @pytest.mark.asyncio
    async def test_max_range_splits_queries(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 130), Event("0xb", 190)])
        reconciler = make_reconciler(source, store, queue, test_logger, max_range=50)

        result = await reconciler.reconcile(100, 200)

        assert source.query_calls == [(100, 150), (150, 200)]
        assert result.enqueued == 2
        assert store.get_last_block() == 200

    @pytest.mark.asyncio
    async def test_failed_window_commits_earlier_windows(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 130), Event("0xb", 190)])
        reconciler = make_reconciler(source, store, queue, test_logger, max_range=50)

        calls = []
        original = source.query_range

        async def query_range(from_block, to_block):
            calls.append((from_block, to_block))
            if len(calls) == 2:
                source.fail_queries = 1
            return await original(from_block, to_block)

        source.query_range = query_range

        result = await reconciler.reconcile(100, 200)

        assert not result.success
        assert store.get_last_block() == 150
        assert [e.id for e in queue] == ["0xa"]


class TestReconcileToHead:

    @pytest.mark.asyncio
    async def test_uses_watermark_and_head(self, store, queue, test_logger):
        source = FakeEventSource([Event("0xa", 150)], head=180)
        reconciler = make_reconciler(source, store, queue, test_logger)

        result = await reconciler.reconcile_to_head()

        assert (result.from_block, result.to_block) == (100, 180)
        assert store.get_last_block() == 180
        assert queue.contains("0xa")

    @pytest.mark.asyncio
    async def test_head_failure(self, store, queue, test_logger):
        source = FakeEventSource(head=180)
        source.fail_head = True
        metrics = BotMetrics()
        reconciler = Reconciler(source, store, queue, metrics=metrics, logger=test_logger)

        result = await reconciler.reconcile_to_head()

        assert not result.success
        assert source.query_calls == []
        assert store.get_last_block() == 100
        assert metrics.registry.get_sample_value("reconcile_runs_total", {"outcome": "error"}) == 1

    @pytest.mark.asyncio
    async def test_metrics(self, store, queue, test_logger):
        source = FakeEventSource(head=300)
        metrics = BotMetrics()
        reconciler = Reconciler(source, store, queue, metrics=metrics, logger=test_logger)

        await reconciler.reconcile_to_head()

        reg = metrics.registry
        assert reg.get_sample_value("reconcile_runs_total", {"outcome": "success"}) == 1
        assert reg.get_sample_value("last_block") == 300


class TestDispatcherOwnedEvents:
    """Periodic passes running while the Dispatcher still holds an event."""

    def make_dispatcher(self, queue, store, executor, logger):
        escalated = EventQueue("escalated", 2, logger=logger)
        return Dispatcher(queue, escalated, store, executor, logger=logger)

    @pytest.mark.asyncio
    async def test_escalated_event_not_requeued(self, store, queue, test_logger):
        executor = ScriptedExecutor({"0xe2": [fail(), fail("nonce too low")]})
        dispatcher = self.make_dispatcher(queue, store, executor, test_logger)
        source = FakeEventSource([Event("0xe2", 150)])
        reconciler = Reconciler(source, store, queue, logger=test_logger, dispatcher=dispatcher)
        queue.push(Event("0xe2", 150))

        await dispatcher.drain(queue)
        result = await reconciler.reconcile(100, 200)

        assert result.already_pending == 1
        assert result.enqueued == 0
        assert len(queue) == 0
        assert dispatcher.escalated.contains("0xe2")

        await dispatcher.drain(dispatcher.escalated)
        assert (await dispatcher.drain(queue)).outcome == DrainOutcome.EMPTY

        assert len(executor.calls) == 2
        assert "0xe2" in store.get_failed()
        assert "0xe2" not in store.get_sent()

    @pytest.mark.asyncio
    async def test_in_flight_event_not_requeued(self, store, queue, test_logger):
        executor = ScriptedExecutor()
        executor.gate = asyncio.Event()
        dispatcher = self.make_dispatcher(queue, store, executor, test_logger)
        source = FakeEventSource([Event("0xa", 150)])
        reconciler = Reconciler(source, store, queue, logger=test_logger, dispatcher=dispatcher)
        queue.push(Event("0xa", 150))

        drain = asyncio.create_task(dispatcher.drain(queue))
        await executor.entered.wait()

        result = await reconciler.reconcile(100, 200)

        assert result.already_pending == 1
        assert not queue.contains("0xa")
        assert store.get_last_block() == 200

        executor.gate.set()
        assert (await drain).outcome == DrainOutcome.SENT
        assert (await dispatcher.drain(queue)).outcome == DrainOutcome.EMPTY

        assert executor.calls == [("0xa", 50000)]
        assert store.is_sent("0xa")
