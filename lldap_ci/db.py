"""Database access for run records.

Runs, jobs and uploaded artifacts are stored through SQLAlchemy. SQLite
is the default backend; its database file is created on first use.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from lldap_ci.config import get_settings

SQLITE_FILE_PREFIX = "sqlite:///"


class Base(DeclarativeBase):
    """Declarative base of the run record models."""


def sqlite_path(db_url: str) -> Path | None:
    """Database file of a file-backed SQLite URL, None for anything else."""
    if not db_url.startswith(SQLITE_FILE_PREFIX):
        return None
    path = db_url.removeprefix(SQLITE_FILE_PREFIX)
    if not path or path == ":memory:":
        return None
    return Path(path)


def get_engine(db_url: str | None = None) -> Engine:
    """Create an engine for db_url, or for the configured database.

    The parent directory of a SQLite database file is created if missing.
    """
    url = db_url or get_settings().db_url
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Records are written from the scheduler and read from API threads
        connect_args["check_same_thread"] = False
        path = sqlite_path(url)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args=connect_args)


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory bound to engine (the configured database if omitted).

    Objects stay loaded after commit so finished runs can be serialized
    without another query.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the run record tables that do not exist yet."""
    from lldap_ci.builds import models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


def init_db(db_url: str | None = None) -> sessionmaker[Session]:
    """Prepare a database for use and return its session factory."""
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Session that commits on success and rolls back on error."""
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


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "sqlite_path",
]
