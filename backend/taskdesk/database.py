from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _enable_wal(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class RecordStore:
    """Handle on the SQLite database file.

    The handle is passed explicitly to whoever needs it. A restore closes it
    and reopens it on the same path; every other caller only borrows sessions.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.engine: Engine | None = None
        self._session_factory: sessionmaker | None = None
        self.open()

    @property
    def url(self) -> str:
        return f"sqlite:///{self.path}"

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self) -> None:
        if self.engine is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            self.url,
            connect_args={"check_same_thread": False},
            future=True,
        )
        event.listen(engine, "connect", _enable_wal)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None

    def reopen(self) -> None:
        logger.info("Reopening record store at %s", self.path)
        self.close()
        self.open()

    def new_session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Record store is closed")
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        session = self.new_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_db(request: Request) -> Generator:
    db = get_store(request).new_session()
    try:
        yield db
    finally:
        db.close()
