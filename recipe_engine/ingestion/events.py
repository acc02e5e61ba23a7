"""
Event Bus Module
================

In-process publish/subscribe for domain events.

Handlers subscribe to one concrete event type. ``publish`` dispatches to the
current subscribers without waiting on them: plain callables run inline,
coroutine handlers are scheduled as tasks. A failing handler is logged and
never affects the publisher or the other handlers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from recipe_engine.core.events import DomainEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=DomainEvent)

Handler = Callable[[Any], Any]


class Subscription:
    """Handle returned by ``EventBus.subscribe``; disposing it unsubscribes."""

    def __init__(self, bus: EventBus, event_type: type[DomainEvent], handler: Handler) -> None:
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self._disposed:
            self._bus._remove(self)
            self._disposed = True

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class EventBus:
    """Dispatches domain events to subscribers of their concrete type."""

    def __init__(self) -> None:
        self._subscriptions: dict[type[DomainEvent], list[Subscription]] = {}
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> Subscription:
        """
        Register a handler for one event type.

        Args:
            event_type: Concrete DomainEvent subclass. Subclasses of it are
                not delivered to this handler.
            handler: Callable or coroutine function taking the event.

        Returns:
            A Subscription; call ``dispose()`` to unsubscribe.
        """
        subscription = Subscription(self, event_type, handler)
        with self._lock:
            self._subscriptions.setdefault(event_type, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            handlers = self._subscriptions.get(subscription.event_type, [])
            if subscription in handlers:
                handlers.remove(subscription)

    def subscriber_count(self, event_type: type[DomainEvent]) -> int:
        with self._lock:
            return len(self._subscriptions.get(event_type, []))

    def publish(self, event: DomainEvent) -> None:
        """
        Deliver an event to every current subscriber of its type.

        Never raises because of a handler.
        """
        with self._lock:
            subscriptions = list(self._subscriptions.get(type(event), []))

        for subscription in subscriptions:
            self._dispatch(subscription.handler, event)

    def _dispatch(self, handler: Handler, event: DomainEvent) -> None:
        name = getattr(handler, "__qualname__", repr(handler))
        try:
            result = handler(event)
        except Exception:
            logger.exception(f"Event handler {name} failed for {type(event).__name__}")
            return

        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to schedule on: run the handler to completion here
            try:
                asyncio.run(_await(result))
            except Exception:
                logger.exception(f"Event handler {name} failed for {type(event).__name__}")
            return

        task = loop.create_task(_await(result))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, name, event))

    def _on_task_done(self, task: asyncio.Task[Any], name: str, event: DomainEvent) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Event handler {name} failed for {type(event).__name__}: {exc}",
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for all in-flight async handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def _await(awaitable: Any) -> Any:
    return await awaitable
