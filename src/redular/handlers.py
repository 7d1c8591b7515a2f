"""Per-instance registry mapping event names to handler callbacks."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from redular.errors import DuplicateHandlerError, InvalidHandlerError
from redular.logging import get_logger

__all__ = ["EventCallback", "HandlerRegistry"]

EventCallback = Callable[[Any], Awaitable[None] | None]

logger = get_logger(__name__)


class HandlerRegistry:
    """At most one handler per event name.

    Handlers take the event payload (``None`` when the event carried none).
    Plain functions and coroutine functions are both accepted.

    Example::

        registry = HandlerRegistry()
        registry.define("goodbye", lambda payload: print("Goodbye!"))
        await registry.dispatch("goodbye", None)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, EventCallback] = {}

    def define(self, name: str, callback: EventCallback) -> str:
        """Register ``callback`` for ``name`` and return the name.

        Raises:
            InvalidHandlerError: ``callback`` is not callable
            DuplicateHandlerError: ``name`` already has a handler
        """
        if not callable(callback):
            raise InvalidHandlerError(
                f"Handler for {name!r} is not callable"
            ).with_context(event_name=name)
        if name in self._handlers:
            raise DuplicateHandlerError(
                f"A handler for {name!r} is already defined"
            ).with_context(event_name=name)
        self._handlers[name] = callback
        logger.debug("handler_defined", event_name=name)
        return name

    def remove(self, name: str) -> None:
        self._handlers.pop(name, None)

    def remove_all(self) -> None:
        self._handlers.clear()

    def get(self, name: str) -> EventCallback | None:
        return self._handlers.get(name)

    @property
    def handlers(self) -> dict[str, EventCallback]:
        """Copy of the current name → handler mapping."""
        return dict(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    async def dispatch(self, name: str, payload: Any) -> bool:
        """Invoke the handler for ``name`` with ``payload``.

        Returns False without error when no handler is registered; an
        instance may simply not care about an event. Exceptions raised by
        the handler propagate.
        """
        callback = self._handlers.get(name)
        if callback is None:
            return False
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
        return True
