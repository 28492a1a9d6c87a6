"""SQLAlchemy-backed persistence manager."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def as_utc(value: datetime) -> datetime:
    """Ensure datetimes are timezone-aware in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _configure_sqlite(dbapi_connection, _connection_record) -> None:
    # WAL lets readers proceed while the single writer appends.
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA busy_timeout=5000')
    cursor.close()


class DatabaseManager:
    """High level helper around a SQLAlchemy engine and session factory."""

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        connect_args: dict[str, object] = {}
        if database_url.startswith('sqlite:///'):
            db_path = Path(database_url.replace('sqlite:///', '', 1))
            db_path.parent.mkdir(parents=True, exist_ok=True)
            connect_args['check_same_thread'] = False
        self._engine: Engine = create_engine(
            database_url,
            echo=echo,
            future=True,
            connect_args=connect_args,
        )
        if database_url.startswith('sqlite:///'):
            event.listen(self._engine, 'connect', _configure_sqlite)
        self._session_factory = sessionmaker(
            self._engine,
            expire_on_commit=False,
            future=True,
        )
        self.create_schema()

    def create_schema(self) -> None:
        """Create database tables if they do not already exist."""

        Base.metadata.create_all(self._engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager returning a database session with automatic commit."""

        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of the underlying engine and connection pool."""

        self._engine.dispose()


__all__ = ['DatabaseManager', 'as_utc']
