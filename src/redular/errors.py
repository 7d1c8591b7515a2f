"""
Structured error types for Redular.

Every failure the scheduler can raise to a caller is a ``RedularError``
subclass carrying a category, structured context and an optional chained
cause, so callers can log ``error.to_dict()`` without string parsing.

Manifesto:
    - **Typed taxonomy:** One error type per failure the caller can act on
    - **Rich context:** Errors carry the event key / name / client id
    - **Error chaining:** The underlying exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      RedularError                            │
        │            (category, context, cause)                        │
        ├─────────────────────────────────────────────────────────────┤
        │  MalformedKeyError      SerializationError                   │
        │  (VALIDATION)           DeserializationError  (PARSE)        │
        │                                                              │
        │  HandlerError (CONFIG)  NoHandlerError        StoreError     │
        │   DuplicateHandlerError (INTERNAL)            (STORE)        │
        │   InvalidHandlerError                                        │
        └─────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise store failures from the scheduling API
    ✅ DO: Degrade them to ``None`` / ``False`` / ``[]`` and log

    ❌ DON'T: Swallow payload (de)serialization failures
    ✅ DO: Raise SerializationError / DeserializationError with cause=

Tags:
    error-handling, exception-hierarchy, error-context, redular

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories for classification and routing."""

    VALIDATION = "VALIDATION"     # Key shape violations
    PARSE = "PARSE"               # Payload encoding / decoding
    CONFIG = "CONFIG"             # Handler registration mistakes
    STORE = "STORE"               # Connection loss, command errors
    INTERNAL = "INTERNAL"         # Unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        event_key: Event key involved in the failure
        event_name: Logical event name
        client_id: Scheduler instance id
        metadata: Additional key-value pairs
    """

    event_key: str | None = None
    event_name: str | None = None
    client_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["event_key", "event_name", "client_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RedularError(Exception):
    """
    Base exception for all Redular errors.

    Subclasses set ``default_category`` so callers can route on
    ``error.category`` without importing every subclass.

    Examples:
        >>> error = RedularError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = MalformedKeyError("bad key").with_context(event_key="nope")
        >>> error.context.event_key
        'nope'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RedularError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# KEY ERRORS
# =============================================================================


class MalformedKeyError(RedularError):
    """A string did not match the expected event/data key shape."""

    default_category = ErrorCategory.VALIDATION


# =============================================================================
# PAYLOAD ERRORS
# =============================================================================


class SerializationError(RedularError):
    """A payload could not be encoded as JSON."""

    default_category = ErrorCategory.PARSE


class DeserializationError(RedularError):
    """A stored payload or instant message could not be decoded as JSON."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# HANDLER ERRORS
# =============================================================================


class HandlerError(RedularError):
    """Base class for handler registration errors."""

    default_category = ErrorCategory.CONFIG


class DuplicateHandlerError(HandlerError):
    """A handler is already registered under this event name."""


class InvalidHandlerError(HandlerError):
    """The supplied handler is not callable."""


class NoHandlerError(RedularError):
    """An expiry notification matched but the listener has no callback."""

    default_category = ErrorCategory.INTERNAL


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(RedularError):
    """A store command or subscription failed."""

    default_category = ErrorCategory.STORE


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RedularError",
    "MalformedKeyError",
    "SerializationError",
    "DeserializationError",
    "HandlerError",
    "DuplicateHandlerError",
    "InvalidHandlerError",
    "NoHandlerError",
    "StoreError",
]
