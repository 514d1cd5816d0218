"""Global pytest configuration and fixtures.

Provides a fake clock and scheduler so timer-driven cache logic can be
tested without real delays, and a settle() helper that lets pending
event loop callbacks run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import pytest

from brigade.registry import CacheRegistry, set_registry
from brigade.store.memory import InMemoryDocumentStore


class FakeClock:
    """Manually advanced wall clock in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeTimer:
    delay: float
    callback: Callable[[], object]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeScheduler:
    """Scheduler that records timers instead of running them."""

    timers: list[FakeTimer] = field(default_factory=list)

    def call_later(self, delay: float, callback: Callable[[], object]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire_next(self) -> FakeTimer:
        timer = self.pending[0]
        self.timers.remove(timer)
        timer.callback()
        return timer


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    """Let queued tasks and call_soon callbacks run."""
    return _settle


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_clock() -> type[FakeClock]:
    """Factory for extra clocks, e.g. a store clock skewed from the client."""
    return FakeClock


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    """In-memory store sharing the fake clock."""
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
async def registry(store: InMemoryDocumentStore):
    """Global registry bound to the in-memory store, reset afterwards."""
    registry = CacheRegistry(store=store)
    set_registry(registry)
    yield registry
    registry.reset_all()
    set_registry(None)
