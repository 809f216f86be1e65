"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import pongbot without installing.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from pongbot.core.errors import ActionFailure, SourceQueryFailure  # noqa: E402
from pongbot.core.models import Event  # noqa: E402


class FakeEventSource:
    """In-memory event source with a scripted head and event log."""

    def __init__(self, events: Optional[List[Event]] = None, head: int = 0):
        self.events: List[Event] = list(events or [])
        self.head = head
        self.query_calls: List[Tuple[int, int]] = []
        self.head_calls = 0
        self.fail_queries = 0
        self.fail_head = False
        self.callback: Optional[Callable[[Event], None]] = None
        self.unsubscribed = False

    async def subscribe(self, callback: Callable[[Event], None]) -> None:
        self.callback = callback

    async def unsubscribe(self) -> None:
        self.callback = None
        self.unsubscribed = True

    async def query_range(self, from_block_exclusive: int, to_block_inclusive: int) -> List[Event]:
        self.query_calls.append((from_block_exclusive, to_block_inclusive))
        if self.fail_queries > 0:
            self.fail_queries -= 1
            raise SourceQueryFailure("node unavailable")
        return [e for e in self.events if from_block_exclusive < e.block_number <= to_block_inclusive]

    async def current_head(self) -> int:
        self.head_calls += 1
        if self.fail_head:
            raise SourceQueryFailure("head unavailable")
        return self.head

    def emit(self, event: Event) -> None:
        """Simulate a live notification."""
        assert self.callback is not None, "not subscribed"
        self.callback(event)


Outcome = Union[int, BaseException]


class ScriptedExecutor:
    """
    Executor whose per-event outcomes are scripted.

    ``outcomes[id]`` is consumed one entry per call: an int is the confirmed
    block, an exception is raised. Unscripted calls succeed.
    """

    def __init__(self, outcomes: Optional[Dict[str, List[Outcome]]] = None):
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.calls: List[Tuple[str, int]] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, event: Event, effort: int) -> int:
        self.calls.append((event.id, effort))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.entered.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            script = self.outcomes.get(event.id)
            if script:
                outcome = script.pop(0)
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
            return event.block_number + 1
        finally:
            self.in_flight -= 1


def fail(msg: str = "replacement transaction underpriced") -> ActionFailure:
    return ActionFailure(msg)


@pytest.fixture
def test_logger():
    logger = logging.getLogger("pongbot.test")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state" / "lastBlock.json"
