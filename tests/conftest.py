"""
Shared pytest fixtures for redular tests.

This module provides:
- FakeClock: a controllable UTC clock
- FakeRedis: an in-memory stand-in for the subset of the redis.asyncio
  client the scheduler uses (strings with TTL, SCAN, PEXPIRETIME, pub/sub,
  CONFIG), driven by FakeClock so expirations happen on demand
- redular fixtures wired to a shared FakeRedis

Usage:
    async def test_fires(redular, store, clock):
        await redular.schedule_event("ping", clock() + timedelta(seconds=5))
        clock.advance(5)
        for key in store.expire_due():
            await redular.expiry_listener.handle_message(key)
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from redular.keys import expiry_channel
from redular.scheduler import Redular
from redular.settings import RedularSettings, clear_settings_cache
from redular.store import RedisConnections


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = item.path.relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Store doubles
# =============================================================================


class FakeClock:
    """Callable returning a fixed UTC datetime that tests move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakePipeline:
    def __init__(self, store: FakeRedis) -> None:
        self._store = store
        self._ops: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *args) -> None:
        self._ops.clear()

    def set(self, *args, **kwargs) -> FakePipeline:
        self._ops.append(("set", args, kwargs))
        return self

    def delete(self, *args) -> FakePipeline:
        self._ops.append(("delete", args, {}))
        return self

    async def execute(self) -> list[Any]:
        self._store.check("execute")
        results = []
        for name, args, kwargs in self._ops:
            results.append(await getattr(self._store, name)(*args, **kwargs))
        self._ops.clear()
        return results


class FakePubSub:
    def __init__(self, store: FakeRedis) -> None:
        self._store = store
        self.channels: set[str] = set()
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        self._store.check("subscribe")
        self.channels.update(channels)
        self._store.subscribers.append(self)

    async def unsubscribe(self, *channels: str) -> None:
        if channels:
            self.channels.difference_update(channels)
        else:
            self.channels.clear()

    async def aclose(self) -> None:
        self.closed = True
        if self in self._store.subscribers:
            self._store.subscribers.remove(self)

    def deliver(self, channel: str, data: str) -> None:
        self.queue.put_nowait({"type": "message", "channel": channel, "data": data})

    async def listen(self):
        while True:
            message = await self.queue.get()
            if message["type"] == "error":
                raise RedisConnectionError(message["data"])
            yield message


class FakeRedis:
    """In-memory store with TTLs measured against a FakeClock."""

    def __init__(self, clock: FakeClock, db: int = 0, page_size: int = 2) -> None:
        self.clock = clock
        self.db = db
        self.page_size = page_size
        self.data: dict[str, str] = {}
        self.expires_ms: dict[str, int] = {}
        self.config: dict[str, str] = {"notify-keyspace-events": ""}
        self.subscribers: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []
        self.failing: set[str] = set()
        self.repeat_scan_keys = False
        self.closed = False

    # ── helpers ─────────────────────────────────────────────────────────

    def check(self, command: str) -> None:
        if command in self.failing:
            raise RedisConnectionError(f"{command} failed")

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def expire_due(self) -> list[str]:
        """Drop keys whose TTL elapsed and notify expiry subscribers, in fire order."""
        now = self._now_ms()
        due = sorted(
            (ms, key) for key, ms in self.expires_ms.items() if ms <= now
        )
        expired = []
        for _, key in due:
            self.data.pop(key, None)
            self.expires_ms.pop(key, None)
            expired.append(key)
            self._notify(expiry_channel(self.db), key)
        return expired

    def _notify(self, channel: str, data: str) -> int:
        receivers = [sub for sub in self.subscribers if channel in sub.channels]
        for sub in receivers:
            sub.deliver(channel, data)
        return len(receivers)

    def ttl_seconds(self, key: str) -> float | None:
        if key not in self.expires_ms:
            return None
        return (self.expires_ms[key] - self._now_ms()) / 1000

    # ── commands ────────────────────────────────────────────────────────

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.check("set")
        self.data[key] = value
        if ex is not None:
            self.expires_ms[key] = self._now_ms() + ex * 1000
        else:
            self.expires_ms.pop(key, None)
        return True

    async def get(self, key: str) -> str | None:
        self.check("get")
        return self.data.get(key)

    async def delete(self, *keys: str) -> int:
        self.check("delete")
        removed = 0
        for key in keys:
            if key in self.data:
                removed += 1
            self.data.pop(key, None)
            self.expires_ms.pop(key, None)
        return removed

    async def exists(self, *keys: str) -> int:
        self.check("exists")
        return sum(1 for key in keys if key in self.data)

    async def scan(self, cursor: int = 0, match: str | None = None, count: int | None = None):
        self.check("scan")
        keys = sorted(k for k in self.data if match is None or fnmatch.fnmatchcase(k, match))
        page = keys[cursor:cursor + self.page_size]
        if self.repeat_scan_keys and cursor > 0:
            page = keys[cursor - 1:cursor] + page
        next_cursor = cursor + self.page_size
        if next_cursor >= len(keys):
            next_cursor = 0
        return next_cursor, page

    async def pexpiretime(self, key: str) -> int:
        self.check("pexpiretime")
        if key not in self.data:
            return -2
        return self.expires_ms.get(key, -1)

    async def publish(self, channel: str, message: str) -> int:
        self.check("publish")
        self.published.append((channel, message))
        return self._notify(channel, message)

    async def config_get(self, name: str) -> dict[str, str]:
        self.check("config_get")
        return {name: self.config.get(name, "")}

    async def config_set(self, name: str, value: str) -> bool:
        self.check("config_set")
        self.config[name] = value
        return True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        return FakePubSub(self)

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep REDULAR_* env vars and .env files from leaking into tests."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("REDULAR_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def make_redular(store, clock):
    """Factory for instances sharing one FakeRedis (and one clock)."""

    def factory(id: str, **kwargs: Any) -> Redular:
        return Redular(
            RedularSettings(),
            id=id,
            connections=RedisConnections(primary=store, expiry=store, instant=store),
            clock=clock,
            **kwargs,
        )

    return factory


@pytest.fixture
def redular(make_redular) -> Redular:
    return make_redular("alpha")


@pytest.fixture
def sibling(make_redular) -> Redular:
    return make_redular("beta")


@pytest.fixture
def settle():
    """Let background listener tasks drain their queues."""

    async def run(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return run
