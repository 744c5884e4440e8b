"""Build history database access.

History lives in a SQLite file inside the build root by default, so
cleaning the build root also forgets it. Another database can be used
by setting ``STAGEBUILD_DB_URL``.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from stagebuild.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for history models."""

    pass


def sqlite_database_path(db_url: str) -> Path | None:
    """Return the file behind a SQLite URL (None for other or in-memory databases)."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return None
    return Path(url.database)


def get_engine(db_url: str | None = None) -> Any:
    """Create an engine for the history database.

    The directory holding a SQLite file is created on demand, since the
    build root may not exist yet on a first run.

    Args:
        db_url: Database URL. Defaults to the history file in the
            configured build root.

    Returns:
        SQLAlchemy Engine instance.
    """
    if db_url is None:
        db_url = get_settings().effective_db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        path = sqlite_database_path(db_url)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(db_url, connect_args=connect_args, echo=False)


def get_session_factory(engine: Any | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine`` (or the default engine)."""
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Commits on a clean exit and rolls back if the block raises.

    Args:
        session_factory: Optional session factory. Creates one if not provided.

    Yields:
        SQLAlchemy Session instance.
    """
    if session_factory is None:
        session_factory = get_session_factory()

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Any | None = None) -> None:
    """Create the history tables if they do not exist yet."""
    # Register models with the mapper before creating tables
    from stagebuild.builds import models as builds_models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


def open_history(db_url: str | None = None) -> sessionmaker[Session]:
    """Open the history database, creating its tables, and return a session factory."""
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "open_history",
    "sqlite_database_path",
]
