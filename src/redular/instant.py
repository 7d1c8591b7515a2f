"""
Instant channel — zero-delay events over Redis Pub/Sub.

Instant events skip the TTL path entirely: the sender publishes a JSON
message on ``redular:instant`` and every instance subscribed to the topic
dispatches it if it is addressed to that instance or to ``global``. No key
is written, so instant events are never returned by range queries.

Message format::

    {"event": "<name>", "client": "<instance id | global>", "data": <any>}

Tags:
    redular, redis, pub-sub, instant-events

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from redis.exceptions import RedisError

from redular.errors import DeserializationError, RedularError, SerializationError, StoreError
from redular.keys import GLOBAL_SCOPE, INSTANT_CHANNEL
from redular.logging import LogContext, get_logger

__all__ = [
    "InstantMessage",
    "InstantChannel",
    "encode_instant",
    "decode_instant",
]

DispatchCallback = Callable[[str, Any], Awaitable[Any]]

logger = get_logger(__name__)


@dataclass(frozen=True)
class InstantMessage:
    """A decoded message from the instant topic."""

    event: str
    client: str
    data: Any = None


def encode_instant(name: str, client: str, payload: Any = None) -> str:
    """Build the JSON message for an instant event."""
    try:
        return json.dumps({"event": name, "client": client, "data": payload})
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Instant payload is not JSON serializable: {e}", cause=e
        ).with_context(event_name=name) from e


def decode_instant(raw: str | bytes) -> InstantMessage:
    """Parse a message from the instant topic.

    Raises:
        DeserializationError: Invalid JSON, or ``event``/``client`` missing
    """
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise DeserializationError(
            f"Instant message is not valid JSON: {e}", cause=e
        ) from e
    if not isinstance(parsed, dict) or not isinstance(parsed.get("event"), str) \
            or not isinstance(parsed.get("client"), str):
        raise DeserializationError(
            "Instant message must be an object with string 'event' and 'client'"
        )
    return InstantMessage(
        event=parsed["event"],
        client=parsed["client"],
        data=parsed.get("data"),
    )


class InstantChannel:
    """Subscriber for the instant topic of one Redular instance."""

    def __init__(self, client: Any, client_id: str, dispatch: DispatchCallback) -> None:
        self._client = client
        self._client_id = client_id
        self._dispatch = dispatch
        self._pubsub: Any = None
        self._task: asyncio.Task | None = None

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    @property
    def listening(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """Subscribe once to the instant topic and start the listen task."""
        if self._task is not None:
            return
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(INSTANT_CHANNEL)
        self._task = asyncio.create_task(self._listen(), name="redular-instant-listener")
        self._task.add_done_callback(self._task_done)
        logger.info("instant_channel_started", channel=INSTANT_CHANNEL)

    def _task_done(self, task: asyncio.Task) -> None:
        # Retrieves the exception so a task nobody awaits does not warn at exit
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("instant_channel_stopped", error_type=type(error).__name__)

    async def handle_message(self, raw: str | bytes) -> bool:
        """Decode and dispatch one message; returns False if addressed elsewhere.

        Raises:
            DeserializationError: The message could not be parsed
        """
        message = decode_instant(raw)
        if message.client not in (self._client_id, GLOBAL_SCOPE):
            return False
        async with LogContext(event_name=message.event, client_id=self._client_id):
            logger.debug("instant_event_received", client=message.client)
            await self._dispatch(message.event, message.data)
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
            logger.error("instant_channel_failed", **e.to_dict())
            raise
        except RedisError as e:
            logger.error("instant_channel_failed", error=str(e))
            raise StoreError("Instant subscription failed", cause=e) from e

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
