"""
Redis connections for a Redular instance.

A connection that has issued SUBSCRIBE cannot run other commands, so each
instance holds three clients: one for the data plane, one subscribed to
keyspace expirations, one subscribed to the instant topic.

Manifesto:
    The scheduler never owns a timer. Redis expiry is the clock, so the
    store must have keyspace notifications enabled (``notify-keyspace-events``
    containing ``E`` and ``x``) and every instance needs a dedicated
    subscriber connection to hear them.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────┐
        │                  RedisConnections                       │
        ├────────────────┬──────────────────┬────────────────────┤
        │ primary        │ expiry           │ instant            │
        │ SET/GET/DEL    │ SUBSCRIBE        │ SUBSCRIBE          │
        │ SCAN/EXISTS    │ __keyevent@N__:  │ redular:instant    │
        │ PEXPIRETIME    │   expired        │                    │
        │ PUBLISH/CONFIG │                  │                    │
        └────────────────┴──────────────────┴────────────────────┘

Requires: ``pip install redis``

Tags:
    redular, redis, connections, scan-cursor, keyspace-notifications

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from redular.logging import get_logger
from redular.settings import RedularSettings

__all__ = [
    "RedisConnections",
    "KeyScanner",
    "create_client",
    "configure_keyspace_notifications",
    "NOTIFY_KEYSPACE_EVENTS",
]

NOTIFY_KEYSPACE_EVENTS = "notify-keyspace-events"

logger = get_logger(__name__)


def create_client(settings: RedularSettings, *, role: str) -> aioredis.Redis:
    """Create a decoded-response async client named after its ``role``."""
    return aioredis.from_url(
        settings.connection_url,
        decode_responses=True,
        client_name=f"redular-{role}",
    )


@dataclass
class RedisConnections:
    """The three connections one Redular instance needs."""

    primary: Any
    expiry: Any
    instant: Any

    @classmethod
    def from_settings(cls, settings: RedularSettings) -> RedisConnections:
        return cls(
            primary=create_client(settings, role="primary"),
            expiry=create_client(settings, role="expiry"),
            instant=create_client(settings, role="instant"),
        )

    async def close(self) -> None:
        """Close all three clients; errors on an already-dead link are logged."""
        for role, client in (
            ("primary", self.primary),
            ("expiry", self.expiry),
            ("instant", self.instant),
        ):
            try:
                await client.aclose()
            except RedisError as e:
                logger.warning("connection_close_failed", role=role, error=str(e))


class KeyScanner:
    """Resumable SCAN cursor over keys matching ``match``.

    The store may return keys in any order and may return a key on more
    than one page; the scan is complete when the store hands back cursor
    ``0`` again. Keys are yielded once each.

    Example::

        scanner = KeyScanner(client, "redular:*")
        async for key in scanner:
            ...
        assert scanner.complete
    """

    def __init__(self, client: Any, match: str, count: int | None = None) -> None:
        self._client = client
        self.match = match
        self.count = count
        self.cursor = 0
        self.complete = False
        self._seen: set[str] = set()

    async def next_page(self) -> list[str]:
        """Fetch one SCAN page and return the keys not seen before."""
        if self.complete:
            return []
        cursor, keys = await self._client.scan(
            cursor=self.cursor, match=self.match, count=self.count
        )
        self.cursor = int(cursor)
        if self.cursor == 0:
            self.complete = True
        fresh = [key for key in keys if key not in self._seen]
        self._seen.update(fresh)
        return fresh

    async def __aiter__(self) -> AsyncIterator[str]:
        while not self.complete:
            for key in await self.next_page():
                yield key


async def configure_keyspace_notifications(client: Any) -> bool:
    """Ensure the store emits keyevent notifications for expirations.

    Adds ``E`` (keyevent channel) and ``x`` (expired events) to
    ``notify-keyspace-events``. ``A`` already covers ``x``. The config
    string is shared across every client of the store and this is a
    read-modify-write, so concurrent callers may race; the step is
    advisory and returns False instead of raising.
    """
    try:
        current = await client.config_get(NOTIFY_KEYSPACE_EVENTS)
        flags = current.get(NOTIFY_KEYSPACE_EVENTS, "") or ""
        updated = flags
        if "E" not in updated:
            updated += "E"
        if "x" not in updated and "A" not in updated:
            updated += "x"
        if updated != flags:
            await client.config_set(NOTIFY_KEYSPACE_EVENTS, updated)
        logger.info(
            "keyspace_notifications_configured",
            previous=flags,
            current=updated,
        )
        return True
    except RedisError as e:
        logger.warning("keyspace_notifications_config_failed", error=str(e))
        return False
