"""JSON encoding of event payloads."""

from __future__ import annotations

import json
from typing import Any

from redular.errors import DeserializationError, SerializationError

__all__ = ["encode_payload", "decode_payload"]


def encode_payload(payload: Any) -> str:
    """Serialize ``payload`` to JSON, raising SerializationError on failure."""
    try:
        return json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Payload is not JSON serializable: {e}", cause=e
        ) from e


def decode_payload(raw: str | bytes) -> Any:
    """Parse a stored JSON payload, raising DeserializationError on failure."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise DeserializationError(
            f"Stored payload is not valid JSON: {e}", cause=e
        ) from e
