"""Tests for the in-process event bus."""

import asyncio
import logging
from uuid import uuid4

import pytest

from recipe_engine.core.events import (
    DomainEvent,
    DuplicateRecipeSkippedEvent,
    IngredientMappingMissingEvent,
)
from recipe_engine.ingestion.events import EventBus
from recipe_engine.ingestion.handlers import DEFAULT_HANDLERS, register_default_handlers


def _skipped(url: str = "https://acme.example/r/1") -> DuplicateRecipeSkippedEvent:
    return DuplicateRecipeSkippedEvent(
        batch_id=uuid4(), provider_id="acme", url=url, fingerprint_hash="a" * 64
    )


class TestEventBus:
    """Tests for EventBus."""

    def test_delivers_to_subscribers(self) -> None:
        """Test every subscriber of the event type receives it."""
        bus = EventBus()
        first: list = []
        second: list = []
        bus.subscribe(DuplicateRecipeSkippedEvent, first.append)
        bus.subscribe(DuplicateRecipeSkippedEvent, second.append)

        event = _skipped()
        bus.publish(event)

        assert first == [event]
        assert second == [event]

    def test_exact_type_only(self) -> None:
        """Test handlers only see their concrete event type."""
        bus = EventBus()
        received: list = []
        bus.subscribe(DomainEvent, received.append)
        bus.subscribe(IngredientMappingMissingEvent, received.append)

        bus.publish(_skipped())
        assert received == []

    def test_failing_handler_isolated(self, caplog) -> None:
        """Test a raising handler never blocks others or the publisher."""
        bus = EventBus()
        count = 0

        def explode(event) -> None:
            raise RuntimeError("boom")

        def counter(event) -> None:
            nonlocal count
            count += 1

        bus.subscribe(DuplicateRecipeSkippedEvent, explode)
        bus.subscribe(DuplicateRecipeSkippedEvent, counter)

        with caplog.at_level(logging.ERROR):
            for _ in range(100):
                bus.publish(_skipped())

        assert count == 100
        assert "boom" in caplog.text

    def test_dispose_unsubscribes(self) -> None:
        """Test disposing stops delivery and is idempotent."""
        bus = EventBus()
        received: list = []
        subscription = bus.subscribe(DuplicateRecipeSkippedEvent, received.append)

        bus.publish(_skipped())
        subscription.dispose()
        subscription.dispose()
        bus.publish(_skipped())

        assert len(received) == 1
        assert subscription.disposed
        assert bus.subscriber_count(DuplicateRecipeSkippedEvent) == 0

    def test_subscription_context_manager(self) -> None:
        """Test a subscription disposes itself on context exit."""
        bus = EventBus()
        with bus.subscribe(DuplicateRecipeSkippedEvent, lambda e: None):
            assert bus.subscriber_count(DuplicateRecipeSkippedEvent) == 1
        assert bus.subscriber_count(DuplicateRecipeSkippedEvent) == 0

    def test_unsubscribe_during_publish(self) -> None:
        """Test a handler disposing another mid-publish does not break delivery."""
        bus = EventBus()
        received: list = []
        later = None

        def first(event) -> None:
            later.dispose()

        bus.subscribe(DuplicateRecipeSkippedEvent, first)
        later = bus.subscribe(DuplicateRecipeSkippedEvent, received.append)

        bus.publish(_skipped())
        bus.publish(_skipped())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        """Test coroutine handlers run as tasks and can be drained."""
        bus = EventBus()
        received: list = []

        async def handler(event) -> None:
            await asyncio.sleep(0)
            received.append(event)

        bus.subscribe(DuplicateRecipeSkippedEvent, handler)
        event = _skipped()
        bus.publish(event)
        await bus.drain()

        assert received == [event]

    @pytest.mark.asyncio
    async def test_failing_async_handler_logged(self, caplog) -> None:
        """Test an async handler failure is logged, not raised."""
        bus = EventBus()

        async def handler(event) -> None:
            raise RuntimeError("async boom")

        bus.subscribe(DuplicateRecipeSkippedEvent, handler)
        with caplog.at_level(logging.ERROR):
            bus.publish(_skipped())
            await bus.drain()

        assert "async boom" in caplog.text

    def test_async_handler_without_loop(self) -> None:
        """Test coroutine handlers still run when no loop is active."""
        bus = EventBus()
        received: list = []

        async def handler(event) -> None:
            received.append(event)

        bus.subscribe(DuplicateRecipeSkippedEvent, handler)
        bus.publish(_skipped())
        assert len(received) == 1


class TestDefaultHandlers:
    """Tests for the logging handlers."""

    def test_registers_one_per_event_type(self) -> None:
        """Test every default handler gets a subscription."""
        bus = EventBus()
        subscriptions = register_default_handlers(bus)
        assert len(subscriptions) == len(DEFAULT_HANDLERS)
        for event_type in DEFAULT_HANDLERS:
            assert bus.subscriber_count(event_type) == 1

    def test_logs_event(self, caplog) -> None:
        """Test a published event is logged."""
        bus = EventBus()
        register_default_handlers(bus)
        with caplog.at_level(logging.DEBUG):
            bus.publish(_skipped("https://acme.example/r/dup"))
        assert "https://acme.example/r/dup" in caplog.text
