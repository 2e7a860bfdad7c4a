"""In-process delivery of domain events to notification handlers.

Services emit after their database change is committed. A handler that
raises is logged and reported in the return value of ``emit``; it never
reaches the service that emitted.

Usage:
    emitter = AsyncEventEmitter()
    emitter.on(PaymentCompleted, notify_parties)
    await emitter.emit(event)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from engagement_engine.events.types import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[None]]


class AsyncEventEmitter:
    """Fans each event out to the handlers subscribed to its type."""

    def __init__(self) -> None:
        self._by_type: dict[str, list[Handler]] = {}
        self._every: list[Handler] = []

    def on(
        self,
        event_type: type[DomainEvent] | list[type[DomainEvent]],
        handler: Handler,
    ) -> None:
        """Subscribe a handler to one event type or a list of them."""
        types = event_type if isinstance(event_type, list) else [event_type]
        for each in types:
            self._by_type.setdefault(each.__name__, []).append(handler)

    def on_all(self, handler: Handler) -> None:
        """Subscribe a handler to every event."""
        self._every.append(handler)

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Run every matching handler concurrently and return their failures."""
        handlers = [*self._by_type.get(event.event_type, []), *self._every]
        if not handlers:
            return []

        results = await asyncio.gather(
            *(handler(event) for handler in handlers), return_exceptions=True
        )

        errors: list[Exception] = []
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed on %s (event %s)",
                    getattr(handler, "__qualname__", repr(handler)),
                    event.event_type,
                    event.metadata.event_id,
                    exc_info=result,
                )
                errors.append(result)
        return errors
