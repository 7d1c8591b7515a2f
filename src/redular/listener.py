"""
Expiry listener — turns keyspace ``expired`` notifications into decoded keys.

The store publishes the name of every expired key on
``__keyevent@<db>__:expired``. Keys that are not shaped like Redular event
keys are ignored since unrelated keys expire in the same database.

State machine::

    IDLE ──start()──▶ LISTENING ──stop()──▶ IDLE

This layer is strict: a matching notification with no callback defined
raises ``NoHandlerError``. Whether anyone cares about the event name is
decided one layer up by the permissive handler registry.

Tags:
    redular, redis, keyspace-notifications, pub-sub, listener

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from redis.exceptions import RedisError

from redular.errors import NoHandlerError, RedularError, StoreError
from redular.keys import DecodedKey, expiry_channel, match
from redular.logging import get_logger

__all__ = ["ListenerState", "ExpiryListener", "KeyCallback"]

KeyCallback = Callable[[DecodedKey], Awaitable[None]]

logger = get_logger(__name__)


class ListenerState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"


class ExpiryListener:
    """Subscriber for expirations of Redular event keys.

    Example::

        listener = ExpiryListener(expiry_client, db=0)
        listener.define_handler(on_expired)
        await listener.start()
    """

    def __init__(self, client: Any, db: int = 0) -> None:
        self._client = client
        self.channel = expiry_channel(db)
        self.state = ListenerState.IDLE
        self._callback: KeyCallback | None = None
        self._pubsub: Any = None
        self._task: asyncio.Task | None = None

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def define_handler(self, callback: KeyCallback) -> None:
        """Set the callback invoked with each decoded event key."""
        self._callback = callback

    async def start(self) -> None:
        """Subscribe to the expiry channel and start the listen task."""
        if self.state is ListenerState.LISTENING:
            return
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self.channel)
        self.state = ListenerState.LISTENING
        self._task = asyncio.create_task(self._listen(), name="redular-expiry-listener")
        self._task.add_done_callback(self._task_done)
        logger.info("expiry_listener_started", channel=self.channel)

    def _task_done(self, task: asyncio.Task) -> None:
        # Retrieves the exception so a task nobody awaits does not warn at exit
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("expiry_listener_stopped", error_type=type(error).__name__)

    async def handle_message(self, key: str) -> bool:
        """Process one expired key name.

        Returns:
            False if the key is not an event key, True once the callback ran

        Raises:
            NoHandlerError: The key matched but no callback is defined
        """
        decoded = match(key)
        if decoded is None:
            return False
        if self._callback is None:
            raise NoHandlerError(
                "Expiry notification received with no handler defined"
            ).with_context(event_key=key, event_name=decoded.name)
        await self._callback(decoded)
        return True

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                await self.handle_message(message["data"])
        except asyncio.CancelledError:
            pass
        except RedularError as e:
            logger.error("expiry_listener_failed", **e.to_dict())
            raise
        except RedisError as e:
            logger.error("expiry_listener_failed", error=str(e))
            raise StoreError("Expiry subscription failed", cause=e) from e

    async def stop(self) -> None:
        """Cancel the listen task and drop the subscription."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except RedularError:
                pass  # logged by _listen, surfaced through run_forever()
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        self.state = ListenerState.IDLE
