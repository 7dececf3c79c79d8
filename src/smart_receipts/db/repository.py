"""Database engine and session management."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from smart_receipts.config import get_settings
from smart_receipts.db.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns one SQLAlchemy engine and hands out transactional sessions."""

    def __init__(self, url: str) -> None:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.url = url
        self.engine: Engine = create_engine(url, future=True, echo=False, connect_args=connect_args)
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False
        )

    @classmethod
    def from_path(cls, database_path: Path) -> "Database":
        database_path.parent.mkdir(parents=True, exist_ok=True)
        database = cls(f"sqlite:///{database_path}")
        database.create_all()
        return database

    def create_all(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except OperationalError as exc:
            if "already exists" in str(exc).lower():
                logger.debug("Database schema already initialized: %s", exc)
            else:
                raise

    def get_session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Context manager yielding a session with automatic commit/rollback."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


_database: Database | None = None


def get_database(database_path: Path | None = None) -> Database:
    """Return the process-wide database configured from settings."""
    global _database

    if _database is not None:
        return _database

    settings = get_settings()
    _database = Database.from_path(database_path or settings.database_path)
    return _database


def reset_repository_state() -> None:
    """Reset cached engine/session state (intended for testing)."""

    global _database
    if _database is not None:
        _database.dispose()
    _database = None


__all__ = ["Database", "get_database", "reset_repository_state"]
