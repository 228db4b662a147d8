"""
Database engine and session lifecycle.

The engine is created lazily from settings so importing models never
requires a reachable database (or its driver).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from threadbot.config import get_settings

Base = declarative_base()


class DatabaseManager:
    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None) -> None:
        self._url = url
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            url = self._url or get_settings().database_url
            self._engine = create_engine(url, pool_pre_ping=True)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine, autoflush=False, expire_on_commit=False
            )
        return self._session_factory

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def db_session(self) -> Iterator[Session]:
        """Yield a session; roll back on error, always close."""
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
