"""
Database wiring for saga state and the recipe ledger.

One engine per process, created on first use. The location comes from an
explicit path, then ``DATABASE_URL`` (a full SQLAlchemy URL or a bare file
path), then ``~/.recipe_engine/recipe_engine.db``.

A batch run and an operator's ``batches status`` call may hit the same SQLite
file from different processes, so file databases run in WAL mode with a busy
timeout. Lost updates between writers are caught separately by the saga
state's concurrency token.
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".recipe_engine" / "recipe_engine.db"
MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Milliseconds a connection waits on a locked SQLite file before erroring
SQLITE_BUSY_TIMEOUT_MS = 5000

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the database URL.

    File paths become ``sqlite:///`` URLs and their parent directory is
    created. Full URLs from ``DATABASE_URL`` are returned untouched.
    """
    if db_path is None:
        env_url = os.environ.get("DATABASE_URL")
        if env_url and "://" in env_url:
            return env_url
        db_path = env_url or DEFAULT_DB_PATH

    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


def get_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """
    Get the process-wide engine, creating it on first call.

    ``db_path`` and ``echo`` only matter for that first call; use
    ``reset_engine`` to point the process at another database.
    """
    global _engine
    if _engine is None:
        url = get_database_url(db_path)
        if url.startswith("sqlite"):
            _engine = create_engine(
                url, echo=echo, connect_args={"check_same_thread": False}
            )
            event.listen(_engine, "connect", _configure_sqlite)
        else:
            _engine = create_engine(url, echo=echo, pool_pre_ping=True)
        logger.debug(f"Created database engine for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def reset_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_session(db_path: Path | str | None = None) -> Generator[Session, None, None]:
    """
    Open a session on the process-wide engine.

    Callers commit their own work; the saga commits after every state
    transition. The session is closed on exit, discarding anything
    uncommitted.

    Usage:
        with get_session() as session:
            saga = build_saga(session)
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(db_path), autocommit=False, autoflush=False
        )
    session = _session_factory()
    try:
        yield session
    finally:
        session.close()


def init_db(db_path: Path | str | None = None) -> None:
    """
    Create any missing tables directly from the ORM models.

    For development and tests; deployed databases should use
    ``run_migrations`` so the alembic revision is recorded.
    """
    from recipe_engine.db.models import Base

    Base.metadata.create_all(bind=get_engine(db_path))


def run_migrations(db_path: Path | str | None = None, revision: str = "head") -> None:
    """
    Upgrade the database to ``revision`` with the bundled alembic scripts.

    Works from an installed package as well as a checkout: no ``alembic.ini``
    is read, so logging stays as the caller configured it.
    """
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", get_database_url(db_path))
    logger.info(f"Upgrading {config.get_main_option('sqlalchemy.url')} to {revision}")
    command.upgrade(config, revision)
