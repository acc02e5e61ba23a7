"""Tests for the command line interface."""

from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import inspect
from typer.testing import CliRunner

from recipe_engine import __version__
from recipe_engine.cli.main import app
from recipe_engine.db.engine import get_engine, reset_engine, run_migrations
from recipe_engine.ingestion.registry import reset_default_registry

runner = CliRunner()

CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "providers.yaml"


@pytest.fixture(autouse=True)
def cli_env(temp_db_path, monkeypatch):
    """Point the CLI at a temporary database and the bundled provider config."""
    monkeypatch.setenv("DATABASE_URL", str(temp_db_path))
    monkeypatch.setenv("PROVIDERS_CONFIG_PATH", str(CONFIG_PATH))
    reset_engine()
    reset_default_registry()
    yield
    reset_engine()
    reset_default_registry()


class TestBasicCommands:
    """Tests for top-level commands."""

    def test_version(self) -> None:
        """Test the version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_init_db(self, temp_db_path) -> None:
        """Test tables are created in the configured database."""
        result = runner.invoke(app, ["init-db"])
        assert result.exit_code == 0
        assert temp_db_path.exists()
        assert "saga_states" in inspect(get_engine()).get_table_names()


class TestProviderCommands:
    """Tests for provider commands."""

    def test_list_enabled(self) -> None:
        """Test only enabled providers are listed by default."""
        result = runner.invoke(app, ["providers", "list"])
        assert result.exit_code == 0
        assert "test" in result.stdout
        assert "Acme" not in result.stdout

    def test_list_all(self) -> None:
        """Test --all includes disabled providers."""
        result = runner.invoke(app, ["providers", "list", "--all"])
        assert result.exit_code == 0
        assert "Acme" in result.stdout

    def test_show_unknown(self) -> None:
        """Test showing an unknown provider fails."""
        result = runner.invoke(app, ["providers", "show", "nobody"])
        assert result.exit_code == 1

    def test_ratelimit_status(self) -> None:
        """Test rate limit status for a configured provider."""
        result = runner.invoke(app, ["ratelimit", "status", "--provider", "acme"])
        assert result.exit_code == 0
        assert "30/min" in result.stdout


class TestBatchCommands:
    """Tests for batch commands."""

    def test_start_test_provider(self) -> None:
        """Test a batch over the synthetic provider completes."""
        result = runner.invoke(app, ["batches", "start", "--provider", "test", "--seed", "1"])
        assert result.exit_code == 0
        assert "completed" in result.stdout
        assert "Processed: 5" in result.stdout

    def test_start_disabled_provider(self) -> None:
        """Test a disabled provider is a configuration error."""
        result = runner.invoke(app, ["batches", "start", "--provider", "acme"])
        assert result.exit_code == 1
        assert "Configuration error" in result.stdout

    def test_status_unknown_batch(self) -> None:
        """Test the status of an unknown batch fails."""
        result = runner.invoke(app, ["batches", "status", str(uuid4())])
        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestMigrations:
    """Tests for the Alembic migration scripts."""

    def test_upgrade_creates_schema(self, temp_db_path) -> None:
        """Test migrating an empty database creates every table."""
        run_migrations(temp_db_path)
        tables = set(inspect(get_engine(temp_db_path)).get_table_names())
        assert {"saga_states", "recipe_fingerprints", "recipes", "ingredient_mappings"} <= tables
        assert "alembic_version" in tables
