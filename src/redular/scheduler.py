"""
Redular — delayed events scheduled on Redis key expiry.

Manifesto:
    A scheduler does not need its own timer wheel when the store already
    expires keys on time and announces it. "When" becomes the TTL of a
    marker key, "what" becomes the key name plus a side-stored JSON
    payload, and every keyspace ``expired`` notification is a timer tick.
    Any number of workers can share one store; each only runs events
    addressed to it or to ``global``.

Architecture:
    ::

        schedule_event("ping", when, payload={...})
            │
            ├─▶ SET redular-data:<scope>:ping:<id> '{...}'  EX delay+grace
            └─▶ SET redular:<scope>:ping:<id>      <client> EX delay
                              │
                     (delay seconds pass)
                              │
        __keyevent@0__:expired ◀─ store deletes the marker
            │
            ▼
        ExpiryListener ──▶ GET data key ──▶ scope == me | global?
                                                 │
                                                 ▼
                                    HandlerRegistry.dispatch("ping", {...})

        instant_event("ping") ──PUBLISH redular:instant──▶ InstantChannel
                                                           ──▶ dispatch

Features:
    - **Overwrite by identity:** same (scope, name, id) replaces the TTL
      and, when given, the payload
    - **Early cancel:** delete_event removes marker and payload atomically
    - **Orphan cleanup:** prune_data reclaims payloads whose marker is gone
    - **Range query:** get_events reconstructs pending events from
      PEXPIRETIME over a full SCAN
    - **Instant path:** zero-delay push over pub/sub, no key written

Examples:
    >>> redular = Redular(RedularSettings(redis_host="localhost"))
    >>> redular.define_handler("goodbye", lambda payload: print("Goodbye!"))
    >>> await redular.start()
    >>> await redular.schedule_event("goodbye", utc_now() + timedelta(seconds=6))
    EventKeys(event='redular:3f1c...:goodbye:9ab2...', data='redular-data:...')

Guardrails:
    ❌ DON'T: Expect past-dated events to fire immediately
    ✅ DO: Check the return value; past dates return None

    ❌ DON'T: Rely on overwrite to clear an old payload
    ✅ DO: Pass an explicit empty payload ({}) when overwriting

    ❌ DON'T: Treat an empty get_events() result as proof of no events
    ✅ DO: Watch for ``event_scan_failed`` warnings

Context:
    - Store requirements: keyspace notifications ``Ex``, PEXPIRETIME (Redis 7+)
    - Concurrency: one asyncio loop per instance, handlers run in listener tasks
    - Delivery: at-most-once; an expiry fired while no instance listens is lost

Tags:
    redular, scheduler, redis, ttl, keyspace-notifications, pub-sub,
    delayed-events

Doc-Types:
    - API Reference
    - Architecture Overview
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from redis.exceptions import RedisError

from redular.errors import MalformedKeyError, RedularError
from redular.handlers import EventCallback, HandlerRegistry
from redular.instant import InstantChannel, encode_instant
from redular.keys import (
    DATA_SCAN_MATCH,
    EVENT_SCAN_MATCH,
    GLOBAL_SCOPE,
    INSTANT_CHANNEL,
    DecodedKey,
    EventKeys,
    data_key_for,
    event_key_for,
    generate_id,
    make_keys,
    match,
)
from redular.listener import ExpiryListener
from redular.logging import LogContext, get_logger
from redular.payload import decode_payload, encode_payload
from redular.settings import RedularSettings, get_settings
from redular.store import KeyScanner, RedisConnections, configure_keyspace_notifications

__all__ = ["Redular", "utc_now", "to_utc"]

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_utc(value: datetime | str | int | float) -> datetime:
    """Coerce a datetime, ISO-8601 string or epoch seconds to aware UTC.

    Naive datetimes are taken to be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, UTC)
    else:
        raise TypeError(f"Cannot interpret {value!r} as a point in time")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


class Redular:
    """One scheduler instance: id, handlers and three store connections.

    Args:
        settings: Configuration record (defaults to ``get_settings()``)
        id: Instance id, overrides ``settings.id``; generated when neither is set
        auto_config: Enable keyspace notifications on start, overrides settings
        data_expiry: Payload grace period in seconds, overrides settings
        connections: Pre-built connection triple (default: from settings)
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        settings: RedularSettings | None = None,
        *,
        id: str | None = None,
        auto_config: bool | None = None,
        data_expiry: int | None = None,
        connections: RedisConnections | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings if settings is not None else get_settings()
        self._id = id or self._settings.id or generate_id()
        self._auto_config = self._settings.auto_config if auto_config is None else auto_config
        self._data_expiry = self._settings.data_expiry if data_expiry is None else data_expiry
        if self._data_expiry < 0:
            raise ValueError("data_expiry must be >= 0")
        if ":" in self._id:
            raise MalformedKeyError("Instance id must not contain ':'").with_context(client_id=self._id)
        if self._id == GLOBAL_SCOPE:
            raise MalformedKeyError(
                f"Instance id must not be {GLOBAL_SCOPE!r}"
            ).with_context(client_id=self._id)

        if connections is None:
            connections = RedisConnections.from_settings(self._settings)
        self._connections = connections
        self._clock = clock or utc_now
        self._registry = HandlerRegistry()

        self._expiry_listener = ExpiryListener(
            self._connections.expiry, db=self._settings.database
        )
        self._expiry_listener.define_handler(self._on_expired)
        self._instant_channel = InstantChannel(self._connections.instant, self._id, self._dispatch)
        self._started = False

    def __repr__(self) -> str:
        return f"Redular(id={self._id!r}, handlers={sorted(self._registry.handlers)!r})"

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def client_id(self) -> str:
        return self._id

    @property
    def settings(self) -> RedularSettings:
        return self._settings

    @property
    def data_expiry(self) -> int:
        return self._data_expiry

    @property
    def connections(self) -> RedisConnections:
        return self._connections

    @property
    def expiry_listener(self) -> ExpiryListener:
        return self._expiry_listener

    @property
    def instant_channel(self) -> InstantChannel:
        return self._instant_channel

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Configure notifications (if enabled) and subscribe both listeners."""
        if self._started:
            return
        if self._auto_config:
            await configure_keyspace_notifications(self._connections.primary)
        await self._expiry_listener.start()
        await self._instant_channel.start()
        self._started = True
        logger.info("redular_started", client_id=self._id)

    async def run_forever(self) -> None:
        """Wait on the listener tasks; a fatal listener error is re-raised here."""
        tasks = [
            task
            for task in (self._expiry_listener.task, self._instant_channel.task)
            if task is not None
        ]
        if not tasks:
            raise RuntimeError("Redular not started. Call start() first.")
        await asyncio.gather(*tasks)

    async def close(self) -> None:
        """Stop both listeners and close the connections."""
        await self._expiry_listener.stop()
        await self._instant_channel.stop()
        await self._connections.close()
        self._started = False
        logger.info("redular_closed", client_id=self._id)

    async def __aenter__(self) -> Redular:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # ── Handlers ─────────────────────────────────────────────────────────

    def define_handler(self, name: str, callback: EventCallback) -> str:
        """Register the handler for ``name``; see :meth:`HandlerRegistry.define`."""
        return self._registry.define(name, callback)

    def delete_handler(self, name: str) -> None:
        self._registry.remove(name)

    def delete_all_handlers(self) -> None:
        self._registry.remove_all()

    @property
    def handlers(self) -> dict[str, EventCallback]:
        return self._registry.handlers

    async def handle_event(self, name: str, payload: Any = None) -> bool:
        """Run the handler for ``name`` now; no handler is a silent no-op."""
        return await self._registry.dispatch(name, payload)

    async def _dispatch(self, name: str, payload: Any) -> bool:
        # A failing handler must not take the listener task down with it.
        try:
            return await self._registry.dispatch(name, payload)
        except Exception as e:
            logger.exception("handler_failed", event_name=name, error=str(e))
            return False

    async def _on_expired(self, key: DecodedKey) -> None:
        event_key = key.event_key()
        if key.scope not in (self._id, GLOBAL_SCOPE):
            logger.debug("event_ignored", event_key=event_key, scope=key.scope)
            return

        async with LogContext(event_key=event_key, client_id=self._id):
            payload = None
            try:
                raw = await self._connections.primary.get(key.data_key())
            except RedisError as e:
                logger.warning("store_error", operation="get_payload", error=str(e))
                raw = None
            if raw is not None:
                try:
                    payload = decode_payload(raw)
                except RedularError as e:
                    raise e.with_context(event_key=event_key, event_name=key.name)

            logger.info("event_fired", event_name=key.name, has_payload=raw is not None)
            await self._dispatch(key.name, payload)

    # ── Scheduling ───────────────────────────────────────────────────────

    def create_event_keys(
        self,
        name: str,
        is_global: bool = False,
        id: str | None = None,
    ) -> EventKeys:
        """Event/data key pair for ``name`` scoped to this instance or global."""
        return make_keys(name, self._id, is_global=is_global, id=id)

    async def schedule_event(
        self,
        name: str,
        when: datetime | str | int | float,
        is_global: bool = False,
        payload: Any = None,
        id: str | None = None,
    ) -> EventKeys | None:
        """Schedule ``name`` to fire at ``when``.

        The TTL is the delay rounded down to whole seconds (at least one).
        Scheduling again with the same ``id`` overwrites the occurrence; a
        payload already stored for it is only replaced when a new payload
        is passed.

        Args:
            name: Event name, routed to the handler of the same name
            when: Fire time (datetime, ISO-8601 string or epoch seconds)
            is_global: Fire on every instance instead of only this one
            payload: JSON-serializable data passed to the handler
            id: Occurrence id; reuse it to overwrite

        Returns:
            The key pair, or None if ``when`` is not in the future or the
            store write failed

        Raises:
            SerializationError: ``payload`` is not JSON serializable
        """
        fire_at = to_utc(when)
        delay = (fire_at - self._clock()).total_seconds()
        if delay <= 0:
            logger.info(
                "event_not_scheduled",
                event_name=name,
                reason="past_date",
                when=fire_at.isoformat(),
            )
            return None

        ttl = max(int(delay), 1)
        keys = self.create_event_keys(name, is_global, id)

        data = None
        if payload is not None:
            try:
                data = encode_payload(payload)
            except RedularError as e:
                raise e.with_context(event_key=keys.event, event_name=name)

        try:
            async with self._connections.primary.pipeline(transaction=True) as pipe:
                if data is not None:
                    pipe.set(keys.data, data, ex=ttl + self._data_expiry)
                pipe.set(keys.event, self._id, ex=ttl)
                await pipe.execute()
        except RedisError as e:
            logger.warning(
                "store_error",
                operation="schedule_event",
                event_key=keys.event,
                error=str(e),
            )
            return None

        logger.info(
            "event_scheduled",
            event_key=keys.event,
            ttl=ttl,
            has_payload=data is not None,
        )
        return keys

    async def instant_event(
        self,
        name: str,
        is_global: bool = False,
        payload: Any = None,
    ) -> bool:
        """Publish ``name`` for immediate handling; no key is written.

        Raises:
            SerializationError: ``payload`` is not JSON serializable
        """
        scope = GLOBAL_SCOPE if is_global else self._id
        message = encode_instant(name, scope, payload)
        try:
            receivers = await self._connections.primary.publish(INSTANT_CHANNEL, message)
        except RedisError as e:
            logger.warning("store_error", operation="instant_event", event_name=name, error=str(e))
            return False
        logger.debug("instant_event_published", event_name=name, client=scope, receivers=receivers)
        return True

    async def delete_event(self, event_key: str) -> bool:
        """Remove an event and its payload before it fires.

        Returns:
            True once both keys are gone (whether or not they existed),
            False on a malformed key or store error
        """
        try:
            data_key = data_key_for(event_key)
        except MalformedKeyError as e:
            logger.warning("event_delete_rejected", **e.to_dict())
            return False
        try:
            await self._connections.primary.delete(event_key, data_key)
        except RedisError as e:
            logger.warning("store_error", operation="delete_event", event_key=event_key, error=str(e))
            return False
        logger.debug("event_deleted", event_key=event_key)
        return True

    async def prune_data(self) -> bool:
        """Delete payloads whose event key no longer exists.

        Returns:
            False if listing the payloads failed; individual delete
            failures do not change the result
        """
        primary = self._connections.primary
        orphans: list[str] = []
        try:
            async for data_key in KeyScanner(primary, DATA_SCAN_MATCH):
                event_key = event_key_for(data_key)
                if not await primary.exists(event_key):
                    orphans.append(event_key)
        except RedisError as e:
            logger.warning("store_error", operation="prune_data", error=str(e))
            return False

        results = await asyncio.gather(*(self.delete_event(key) for key in orphans))
        logger.info("data_pruned", orphans=len(orphans), deleted=sum(results))
        return True

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_event_expiry(self, event_key: str) -> datetime | None:
        """Absolute UTC fire time of ``event_key``, or None if unknown."""
        try:
            expires_ms = await self._connections.primary.pexpiretime(event_key)
        except RedisError as e:
            logger.debug("store_error", operation="get_event_expiry", event_key=event_key, error=str(e))
            return None
        # -2: no such key, -1: key without TTL
        if expires_ms is None or expires_ms < 0:
            return None
        return datetime.fromtimestamp(expires_ms / 1000, UTC)

    async def get_events(
        self,
        start: datetime | str | int | float,
        end: datetime | str | int | float,
    ) -> list[str]:
        """Event keys whose fire time lies in ``[start, end]``.

        Keys that expire between the scan and the expiry lookup are
        skipped. A failed scan returns an empty list and logs
        ``event_scan_failed``.
        """
        start_at, end_at = to_utc(start), to_utc(end)
        found: list[str] = []
        try:
            async for key in KeyScanner(self._connections.primary, EVENT_SCAN_MATCH):
                if match(key) is None:
                    continue
                expiry = await self.get_event_expiry(key)
                if expiry is None:
                    continue
                if start_at <= expiry <= end_at:
                    found.append(key)
        except RedisError as e:
            logger.warning("event_scan_failed", error=str(e))
            return []
        return found
