"""
Key codec — maps (scope, name, id) to store keys and back.

Key-space layout::

    redular:<scope>:<name>:<id>         event key (marker, TTL = delay)
    redular-data:<scope>:<name>:<id>    data key (JSON payload, TTL = delay + grace)
    redular:instant                     pub/sub topic for zero-delay events

``scope`` is either an instance id or ``global``. Scope and id never contain
``:``; the name may, since it is whatever sits between the scope and the
trailing id. Pure functions only, no store access.

Tags:
    redular, keys, codec, namespace

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from redular.errors import MalformedKeyError

EVENT_NAMESPACE = "redular"
DATA_NAMESPACE = "redular-data"
GLOBAL_SCOPE = "global"
INSTANT_CHANNEL = f"{EVENT_NAMESPACE}:instant"

EVENT_PREFIX = f"{EVENT_NAMESPACE}:"
DATA_PREFIX = f"{DATA_NAMESPACE}:"
EVENT_SCAN_MATCH = f"{EVENT_PREFIX}*"
DATA_SCAN_MATCH = f"{DATA_PREFIX}*"

EVENT_KEY_PATTERN = re.compile(
    r"^redular:(?P<scope>[^:]+):(?P<name>.+):(?P<id>[^:]+)\Z", re.DOTALL
)

__all__ = [
    "EVENT_NAMESPACE",
    "DATA_NAMESPACE",
    "GLOBAL_SCOPE",
    "INSTANT_CHANNEL",
    "EVENT_SCAN_MATCH",
    "DATA_SCAN_MATCH",
    "EVENT_KEY_PATTERN",
    "EventKeys",
    "DecodedKey",
    "generate_id",
    "make_keys",
    "decode",
    "match",
    "data_key_for",
    "event_key_for",
    "expiry_channel",
]


@dataclass(frozen=True)
class EventKeys:
    """The event/data key pair for one scheduled occurrence."""

    event: str
    data: str


@dataclass(frozen=True)
class DecodedKey:
    """Parsed components of an event key."""

    scope: str
    name: str
    id: str

    @property
    def is_global(self) -> bool:
        return self.scope == GLOBAL_SCOPE

    def event_key(self) -> str:
        return f"{EVENT_PREFIX}{self.scope}:{self.name}:{self.id}"

    def data_key(self) -> str:
        return f"{DATA_PREFIX}{self.scope}:{self.name}:{self.id}"


def generate_id() -> str:
    """Short random token used for instance ids and event ids."""
    return uuid.uuid4().hex[:12]


def make_keys(
    name: str,
    client_id: str,
    is_global: bool = False,
    id: str | None = None,
) -> EventKeys:
    """Build the event/data key pair for an occurrence.

    Args:
        name: Logical event name
        client_id: Id of the scheduling instance (used as scope unless global)
        is_global: Scope the event to every instance
        id: Occurrence id; a fresh one is generated when omitted.
            Passing the same id again targets the same occurrence.

    Raises:
        MalformedKeyError: Empty name, or a scope/id containing ``:``
    """
    scope = GLOBAL_SCOPE if is_global else client_id
    event_id = id if id is not None else generate_id()

    if not name:
        raise MalformedKeyError("Event name must not be empty")
    for label, part in (("scope", scope), ("id", event_id)):
        if not part or ":" in part:
            raise MalformedKeyError(
                f"Event {label} must be non-empty and must not contain ':'"
            ).with_context(event_name=name, **{label: part})

    key = DecodedKey(scope=scope, name=name, id=event_id)
    return EventKeys(event=key.event_key(), data=key.data_key())


def match(event_key: str) -> DecodedKey | None:
    """Decode ``event_key``, or return None if it is not one of ours."""
    found = EVENT_KEY_PATTERN.match(event_key)
    if found is None:
        return None
    return DecodedKey(scope=found["scope"], name=found["name"], id=found["id"])


def decode(event_key: str) -> DecodedKey:
    """Decode ``event_key`` into scope/name/id.

    Raises:
        MalformedKeyError: The string is not shaped like an event key
    """
    decoded = match(event_key)
    if decoded is None:
        raise MalformedKeyError(
            f"Not an event key: {event_key!r}"
        ).with_context(event_key=event_key)
    return decoded


def data_key_for(event_key: str) -> str:
    """Swap the event namespace for the data namespace."""
    if not event_key.startswith(EVENT_PREFIX):
        raise MalformedKeyError(
            f"Event key must start with {EVENT_PREFIX!r}"
        ).with_context(event_key=event_key)
    return DATA_PREFIX + event_key[len(EVENT_PREFIX):]


def event_key_for(data_key: str) -> str:
    """Swap the data namespace for the event namespace."""
    if not data_key.startswith(DATA_PREFIX):
        raise MalformedKeyError(
            f"Data key must start with {DATA_PREFIX!r}"
        ).with_context(data_key=data_key)
    return EVENT_PREFIX + data_key[len(DATA_PREFIX):]


def expiry_channel(db: int = 0) -> str:
    """Keyevent channel the store publishes expirations on for ``db``."""
    return f"__keyevent@{db}__:expired"
