"""Shared fixtures: a virtual clock and an in-memory coordination store."""
import asyncio
import heapq
from typing import Awaitable, Callable, Optional

import pytest

from conversation_gate.core.models import ConversationMessage
from conversation_gate.gating.batching import BatchWindowCoordinator
from conversation_gate.gating.stop_gate import StopGate

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when someone sleeps on it.

    Callbacks registered with :meth:`at` run (in time order) while a sleep
    passes over their scheduled moment, which lets a test inject messages
    from other "workers" in the middle of a leader's wait.
    """

    def __init__(self, start_ms: int = START_MS):
        self.start_ms = start_ms
        self.now_ms = start_ms
        self.sleeps: list[float] = []
        self._events: list[tuple[int, int, Callable[[], Awaitable[None]]]] = []
        self._seq = 0

    def __call__(self) -> int:
        return self.now_ms

    @property
    def elapsed_ms(self) -> int:
        return self.now_ms - self.start_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def at(self, offset_ms: int, callback: Callable[[], Awaitable[None]]) -> None:
        heapq.heappush(self._events, (self.start_ms + offset_ms, self._seq, callback))
        self._seq += 1

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)
        target = self.now_ms + round(seconds * 1000)
        while self._events and self._events[0][0] <= target:
            at_ms, _, callback = heapq.heappop(self._events)
            self.now_ms = max(self.now_ms, at_ms)
            await callback()
        self.now_ms = target


class InMemoryCoordinationStore:
    """Single-process stand-in for Redis with per-key TTLs on a FakeClock.

    Every operation yields to the event loop once so concurrent tasks
    interleave between store calls, like separate workers would.
    """

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: dict[str, object] = {}
        self._expires_at: dict[str, int] = {}
        self.ensure_connected_calls = 0
        self.failures: dict[str, BaseException] = {}
        self.calls: list[tuple[str, str]] = []

    def _purge(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    async def _enter(self, operation: str, key: str) -> None:
        await asyncio.sleep(0)
        self.calls.append((operation, key))
        if operation in self.failures:
            raise self.failures[operation]
        self._purge(key)

    def keys(self) -> list[str]:
        for key in list(self._data):
            self._purge(key)
        return sorted(self._data)

    async def ensure_connected(self) -> None:
        self.ensure_connected_calls += 1

    async def append(self, list_key: str, value: str) -> None:
        await self._enter("append", list_key)
        self._data.setdefault(list_key, []).append(value)

    async def set_expiry(self, key: str, duration_ms: int) -> None:
        await self._enter("set_expiry", key)
        if key in self._data:
            self._expires_at[key] = self._clock() + duration_ms

    async def read_last(self, list_key: str) -> Optional[str]:
        await self._enter("read_last", list_key)
        values = self._data.get(list_key) or []
        return values[-1] if values else None

    async def read_all(self, list_key: str) -> list[str]:
        await self._enter("read_all", list_key)
        return list(self._data.get(list_key) or [])

    async def delete(self, key: str) -> None:
        await self._enter("delete", key)
        self._data.pop(key, None)
        self._expires_at.pop(key, None)

    async def conditional_set(self, key: str, value: str, duration_ms: int) -> bool:
        await self._enter("conditional_set", key)
        if key in self._data:
            return False
        self._data[key] = value
        self._expires_at[key] = self._clock() + duration_ms
        return True

    async def get(self, key: str) -> Optional[str]:
        await self._enter("get", key)
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        await self._enter("set", key)
        self._data[key] = value
        self._expires_at.pop(key, None)

    async def pttl(self, key: str) -> Optional[int]:
        await self._enter("pttl", key)
        if key not in self._data or key not in self._expires_at:
            return None
        return self._expires_at[key] - self._clock()


def user_message(message_id: str, text: str = "hello", **fields) -> ConversationMessage:
    fields.setdefault("thread_id", "u1")
    return ConversationMessage.from_text(message_id, text, **fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryCoordinationStore:
    return InMemoryCoordinationStore(clock)


@pytest.fixture
def coordinator(store, clock) -> BatchWindowCoordinator:
    return BatchWindowCoordinator(
        store=store,
        window_ms=1000,
        key_prefix="test:batch",
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def stop_gate(store) -> StopGate:
    return StopGate(store=store, key_prefix="test:stop")
