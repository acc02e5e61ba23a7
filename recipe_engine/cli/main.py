"""Recipe Engine CLI using Typer."""

import logging
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.logging import RichHandler

from recipe_engine import __version__
from recipe_engine.cli.batches import batches_app, providers_app, ratelimit_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="recipe-engine",
    help="Recipe Engine - crash-recoverable batch processing of provider recipes",
    add_completion=False,
)
app.add_typer(batches_app, name="batches")
app.add_typer(providers_app, name="providers")
app.add_typer(ratelimit_app, name="ratelimit")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.command()
def init_db(
    migrate: bool = typer.Option(
        False, "--migrate", help="Run Alembic migrations instead of creating tables directly"
    ),
) -> None:
    """Initialize the database (create tables)."""
    from recipe_engine.db.engine import get_database_url
    from recipe_engine.db.engine import init_db as db_init
    from recipe_engine.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo(f"Database initialized successfully! ({get_database_url()})")


@app.command()
def version() -> None:
    """Show the Recipe Engine version."""
    typer.echo(f"Recipe Engine v{__version__}")


if __name__ == "__main__":
    app()
