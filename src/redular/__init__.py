"""
Redular — delayed events scheduled on Redis keyspace expiry notifications.

Quick start::

    from datetime import timedelta
    from redular import Redular, utc_now

    redular = Redular()
    redular.define_handler("goodbye", lambda payload: print("Goodbye!"))
    await redular.start()
    await redular.schedule_event("goodbye", utc_now() + timedelta(seconds=6))
    await redular.run_forever()

Modules
-------
keys        key codec (event / data keys, instant topic)
handlers    per-instance handler registry
store       connection triple, SCAN cursor, notification auto-config
listener    keyspace expiry subscriber
instant     zero-delay pub/sub events
scheduler   the Redular instance
"""

from redular.errors import (
    DeserializationError,
    DuplicateHandlerError,
    ErrorCategory,
    ErrorContext,
    InvalidHandlerError,
    MalformedKeyError,
    NoHandlerError,
    RedularError,
    SerializationError,
    StoreError,
)
from redular.keys import GLOBAL_SCOPE, DecodedKey, EventKeys
from redular.logging import configure_logging, get_logger
from redular.scheduler import Redular, to_utc, utc_now
from redular.settings import RedularSettings, get_settings

__all__ = [
    "Redular",
    "RedularSettings",
    "get_settings",
    "EventKeys",
    "DecodedKey",
    "GLOBAL_SCOPE",
    "utc_now",
    "to_utc",
    "configure_logging",
    "get_logger",
    "ErrorCategory",
    "ErrorContext",
    "RedularError",
    "MalformedKeyError",
    "SerializationError",
    "DeserializationError",
    "DuplicateHandlerError",
    "InvalidHandlerError",
    "NoHandlerError",
    "StoreError",
]
