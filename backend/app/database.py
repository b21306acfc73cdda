"""Database handle and helpers.

`Database` wraps the SQLModel/SQLAlchemy engine. It is constructed
explicitly, opened when the application starts (see the lifespan in
`app.main`) and closed at shutdown. Request handlers receive sessions
through the `get_session` dependency; multi-document transactions start
their own session with `Database.start_session`.
"""

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

logger = logging.getLogger("app.database")


class Database:
    """Explicit lifecycle around a SQLModel engine."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("database is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "Database":
        """Create the engine and any missing tables.

        Table creation is intended for local development and tests;
        production deployments should rely on a proper migration tool
        (alembic) instead.
        """
        if self._engine is not None:
            return self
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        self._engine = create_engine(self.url, echo=self.echo, connect_args=connect_args)
        SQLModel.metadata.create_all(self._engine)
        logger.info("database opened")
        return self

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("database closed")

    def reset(self) -> None:
        """Drop and recreate every table. Used by tests and local scripts."""
        SQLModel.metadata.drop_all(self.engine)
        SQLModel.metadata.create_all(self.engine)

    def start_session(self) -> Session:
        """Return a new session; the caller owns begin/commit/rollback/close.

        Objects stay loaded after commit so a transaction can hand back the
        documents it wrote.
        """
        return Session(self.engine, expire_on_commit=False)


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_session(request: Request):
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with get_database(request).start_session() as session:
        yield session
