"""Tests for database persistence layer."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from recipe_engine.core import saga_state as transitions
from recipe_engine.core.enums import BatchCompletionReason, SagaStatus
from recipe_engine.core.errors import ConcurrencyConflictError
from recipe_engine.core.schema import Recipe, RecipeFingerprint, RecipeIngredient
from recipe_engine.db import engine as db_engine
from recipe_engine.db.repositories import (
    FingerprintRepository,
    IngredientMappingRepository,
    RecipeRepository,
    SagaStateRepository,
)

HASH_A = "a" * 64
HASH_B = "b" * 64


def _new_state(provider_id: str = "acme"):
    return transitions.new_saga_state(provider_id, 10, timedelta(minutes=5))


class TestSagaStateRepository:
    """Tests for SagaStateRepository."""

    def test_create_and_get(self, session: Session) -> None:
        """Test creating and reading back a saga state."""
        repo = SagaStateRepository(session)
        state = _new_state()
        repo.create(state)
        session.commit()

        loaded = repo.get(state.batch_id)
        assert loaded is not None
        assert loaded.batch_id == state.batch_id
        assert loaded.status == SagaStatus.DISCOVERING
        assert loaded.concurrency_token == 0
        assert loaded.deadline == state.deadline

    def test_get_missing_returns_none(self, session: Session) -> None:
        """Test reading an unknown batch."""
        assert SagaStateRepository(session).get(uuid4()) is None

    def test_save_bumps_token(self, session: Session) -> None:
        """Test each save increments the concurrency token."""
        repo = SagaStateRepository(session)
        state = repo.create(_new_state())
        session.commit()

        state = repo.save(transitions.record_discovery(state, ["u1", "u2"]))
        session.commit()
        assert state.concurrency_token == 1

        state = repo.save(transitions.record_processed(state, "u1"))
        session.commit()
        assert state.concurrency_token == 2

        loaded = repo.get(state.batch_id)
        assert loaded.concurrency_token == 2
        assert loaded.pending_urls == ("u2",)
        assert loaded.processed_urls == ("u1",)
        assert loaded.counts.processed == 1

    def test_stale_save_conflicts(self, session: Session) -> None:
        """Test a save with an outdated token raises and writes nothing."""
        repo = SagaStateRepository(session)
        original = repo.create(_new_state())
        session.commit()

        repo.save(transitions.record_discovery(original, ["u1"]))
        session.commit()

        with pytest.raises(ConcurrencyConflictError):
            repo.save(transitions.fail(original, "x", "stale"))
        session.rollback()

        loaded = repo.get(original.batch_id)
        assert loaded.status == SagaStatus.FINGERPRINTING
        assert loaded.concurrency_token == 1

    def test_conflict_across_sessions(self, session_factory) -> None:
        """Test two writers holding the same token: only the first wins."""
        with session_factory() as first, session_factory() as second:
            state = SagaStateRepository(first).create(_new_state())
            first.commit()

            copy = SagaStateRepository(second).get(state.batch_id)
            SagaStateRepository(first).save(transitions.record_discovery(state, ["u1"]))
            first.commit()

            with pytest.raises(ConcurrencyConflictError):
                SagaStateRepository(second).save(transitions.record_discovery(copy, ["u2"]))

    def test_terminal_round_trip(self, session: Session) -> None:
        """Test completion fields survive persistence."""
        repo = SagaStateRepository(session)
        state = repo.create(_new_state())
        state = repo.save(transitions.record_discovery(state, ["u1"]))
        state = repo.save(transitions.complete(state, BatchCompletionReason.TIME_WINDOW_EXCEEDED))
        session.commit()

        loaded = repo.get(state.batch_id)
        assert loaded.status == SagaStatus.COMPLETED
        assert loaded.partial is True
        assert loaded.completion_reason == BatchCompletionReason.TIME_WINDOW_EXCEEDED
        assert loaded.completed_at is not None

    def test_list_all_filters(self, session: Session) -> None:
        """Test listing by provider."""
        repo = SagaStateRepository(session)
        repo.create(_new_state("acme"))
        repo.create(_new_state("other"))
        session.commit()

        assert len(repo.list_all()) == 2
        assert [s.provider_id for s in repo.list_all(provider_id="other")] == ["other"]
        assert len(repo.list_all(status=SagaStatus.COMPLETED)) == 0


class TestFingerprintRepository:
    """Tests for FingerprintRepository."""

    def test_add_and_exists(self, session: Session) -> None:
        """Test recording a fingerprint."""
        repo = FingerprintRepository(session)
        fp = RecipeFingerprint(
            fingerprint_hash=HASH_A,
            provider_id="acme",
            recipe_url="https://acme.example/r/1",
            recipe_id=uuid4(),
        )
        assert repo.exists(HASH_A) is False
        assert repo.add(fp) is True
        session.commit()

        assert repo.exists(HASH_A) is True
        assert repo.get_by_hash(HASH_A).recipe_url == "https://acme.example/r/1"
        assert repo.count("acme") == 1

    def test_add_duplicate_is_noop(self, session: Session) -> None:
        """Test the same hash is only stored once."""
        repo = FingerprintRepository(session)
        for url in ("https://acme.example/r/1", "https://acme.example/r/1?x=1"):
            repo.add(
                RecipeFingerprint(
                    fingerprint_hash=HASH_B,
                    provider_id="acme",
                    recipe_url=url,
                    recipe_id=uuid4(),
                )
            )
        session.commit()
        assert repo.count() == 1


class TestRecipeRepository:
    """Tests for RecipeRepository."""

    def _recipe(self, recipe_id, title: str = "Soup") -> Recipe:
        return Recipe(
            id=recipe_id,
            provider_id="acme",
            source_url="https://acme.example/r/1",
            title=title,
            ingredients=[
                RecipeIngredient(provider_code="ONION", canonical_name="onion"),
                RecipeIngredient(provider_code="XYZ"),
            ],
            instructions=["Chop", "Simmer"],
            servings=2,
            fingerprint_hash=HASH_A,
        )

    def test_upsert_inserts(self, session: Session) -> None:
        """Test the first upsert creates the recipe."""
        repo = RecipeRepository(session)
        recipe_id = uuid4()
        repo.upsert(self._recipe(recipe_id))
        session.commit()

        loaded = repo.get_by_id(recipe_id)
        assert loaded.title == "Soup"
        assert loaded.instructions == ["Chop", "Simmer"]
        assert loaded.unmapped_codes == ["XYZ"]
        assert repo.exists(recipe_id) is True

    def test_upsert_is_idempotent(self, session: Session) -> None:
        """Test upserting the same id twice keeps one row with the latest data."""
        repo = RecipeRepository(session)
        recipe_id = uuid4()
        repo.upsert(self._recipe(recipe_id, "Soup"))
        repo.upsert(self._recipe(recipe_id, "Better Soup"))
        session.commit()

        recipes = repo.list_by_provider("acme")
        assert len(recipes) == 1
        assert recipes[0].title == "Better Soup"


class TestIngredientMappingRepository:
    """Tests for IngredientMappingRepository."""

    def test_set_and_get(self, session: Session) -> None:
        """Test creating, updating and reading mappings."""
        repo = IngredientMappingRepository(session)
        repo.set_mapping("acme", "ONION", "onion")
        repo.set_mapping("acme", "GARLIC", "garlic")
        repo.set_mapping("acme", "ONION", "yellow onion")
        repo.set_mapping("other", "ONION", "shallot")
        session.commit()

        assert repo.get_mappings("acme", ["ONION", "GARLIC", "NOPE"]) == {
            "ONION": "yellow onion",
            "GARLIC": "garlic",
        }
        assert repo.list_by_provider("other") == {"ONION": "shallot"}
        assert repo.get_mappings("acme", []) == {}


class TestEngine:
    """Tests for engine and session wiring."""

    @pytest.fixture(autouse=True)
    def fresh_engine(self, monkeypatch):
        """Start and finish every test without a cached engine."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        db_engine.reset_engine()
        yield
        db_engine.reset_engine()

    def test_database_url_from_path(self, temp_db_path, monkeypatch) -> None:
        """Test bare paths become SQLite URLs, with an explicit path winning."""
        monkeypatch.setenv("DATABASE_URL", str(temp_db_path.parent / "env.db"))
        assert db_engine.get_database_url() == f"sqlite:///{temp_db_path.parent / 'env.db'}"
        assert db_engine.get_database_url(temp_db_path) == f"sqlite:///{temp_db_path}"

    def test_database_url_passthrough(self, monkeypatch) -> None:
        """Test full URLs in DATABASE_URL are used as-is."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://user@db/recipes")
        assert db_engine.get_database_url() == "postgresql://user@db/recipes"

    def test_sqlite_file_uses_wal(self, temp_db_path) -> None:
        """Test file databases are opened in WAL mode with a busy timeout."""
        engine = db_engine.get_engine(temp_db_path)
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
            busy = conn.execute(text("PRAGMA busy_timeout")).scalar()
        assert busy == db_engine.SQLITE_BUSY_TIMEOUT_MS

    def test_engine_is_cached_until_reset(self, temp_db_path) -> None:
        """Test the engine is shared until reset_engine is called."""
        first = db_engine.get_engine(temp_db_path)
        assert db_engine.get_engine() is first
        db_engine.reset_engine()
        assert db_engine.get_engine(temp_db_path) is not first

    def test_session_sees_initialized_tables(self, temp_db_path) -> None:
        """Test init_db and get_session work against the same database."""
        db_engine.init_db(temp_db_path)
        with db_engine.get_session() as session:
            assert SagaStateRepository(session).list_all() == []

    def test_migrations_ignore_env_url_when_path_given(self, temp_db_path, monkeypatch) -> None:
        """Test an explicit path is migrated even when DATABASE_URL names another URL."""
        other = temp_db_path.parent / "other.db"
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{other}")
        db_engine.run_migrations(temp_db_path)
        tables = inspect(db_engine.get_engine(temp_db_path)).get_table_names()
        assert "saga_states" in tables
        assert not other.exists()
