"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine used to persist
plans, their week/task/subtask breakdown, memberships and invitations.
The URL comes from `settings.DATABASE_URL`; by default a SQLite file
named `skillpact.db` is created next to the `skillpact` package.
"""

from sqlmodel import SQLModel, create_engine, Session

from .config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args(settings.DATABASE_URL))


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    Table creation is idempotent; existing tables are left untouched.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
