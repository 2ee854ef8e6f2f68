"""Async event bus for observers of listening sessions."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Type, Union

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Pub/sub for session state changes and delivered transcripts.

    Handlers may be plain callables or coroutine functions. Plain
    handlers run inline in subscription order; coroutine handlers run
    concurrently once all plain handlers have returned. A failing
    handler is logged and never reaches the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[Type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register a handler for an event type.

        Returns a callable that removes the subscription again.
        """
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        """Remove a handler for an event type."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def has_subscribers(self, event_type: Type) -> bool:
        return bool(self._handlers.get(event_type))

    async def publish(self, event: Any) -> None:
        """Publish an event to all subscribed handlers."""
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return

        pending: list[tuple[Handler, Awaitable[None]]] = []
        for handler in handlers:
            try:
                result = handler(event)
            except Exception as exc:
                self._log_failure(handler, event_type, exc)
                continue
            if inspect.isawaitable(result):
                pending.append((handler, result))

        if not pending:
            return

        results = await asyncio.gather(
            *(awaitable for _, awaitable in pending),
            return_exceptions=True,
        )
        for (handler, _), result in zip(pending, results):
            if isinstance(result, Exception):
                self._log_failure(handler, event_type, result)

    @staticmethod
    def _log_failure(handler: Handler, event_type: Type, exc: BaseException) -> None:
        logger.error(
            "Handler %s raised %s for event %s: %s",
            getattr(handler, "__qualname__", repr(handler)),
            type(exc).__name__,
            event_type.__name__,
            exc,
        )
