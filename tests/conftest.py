"""Shared fixtures for recipe engine tests."""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from recipe_engine.db.models import Base
from recipe_engine.ingestion.registry import ProviderConfig, ProviderRegistry, RateLimitConfig


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


class FakeClock:
    """Manually advanced clock returning both monotonic seconds and datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.start = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        self.elapsed = 0.0

    def monotonic(self) -> float:
        return self.elapsed

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def advance(self, seconds: float) -> None:
        self.elapsed += seconds

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _make_provider(provider_id: str = "acme", **overrides) -> ProviderConfig:
    """Provider config with fast, generous limits for tests."""
    values = {
        "provider_id": provider_id,
        "name": provider_id.title(),
        "extractor": "test",
        "recipe_root_url": f"https://{provider_id}.example/recipes",
        "batch_size": 100,
        "time_window_minutes": 10,
        "rate_limit": RateLimitConfig(
            max_requests_per_minute=6000, burst_limit=100, retry_count=2, request_timeout=5
        ),
    }
    values.update(overrides)
    return ProviderConfig(**values)


@pytest.fixture
def registry() -> ProviderRegistry:
    """Registry holding one enabled 'acme' provider."""
    registry = ProviderRegistry()
    registry.register(_make_provider("acme"))
    return registry


@pytest.fixture
def make_provider():
    """Factory for provider configs with test-friendly limits."""
    return _make_provider
