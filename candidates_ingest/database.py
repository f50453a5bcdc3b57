"""
Durable key/value state.

The engine persists four independent entries (cursor, candidates blob and
the two metadata maps) in a single `state` table through SQLAlchemy.
"""
import asyncio
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

import structlog
from sqlalchemy import Column, LargeBinary, MetaData, String, Table, create_engine, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from candidates_ingest.config import get_settings
from candidates_ingest.errors import PersistenceError

logger = structlog.get_logger()

# Persisted entry names
INDEX_KEY = "index"
CANDIDATES_KEY = "candidates"
FT_METAS_KEY = "ftMetas"
NFT_METAS_KEY = "nftMetas"

metadata = MetaData()

state_table = Table(
    "state",
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", LargeBinary, nullable=False),
)


class StateStore(Protocol):
    """Async key/value storage the engine depends on."""

    async def get(self, key: str) -> Optional[bytes]: ...

    async def put(self, key: str, value: bytes) -> None: ...


class DatabaseManager:
    """Owns the SQLAlchemy engine and session factory for the state table."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_settings().database_url
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        """Lazy-create SQLAlchemy engine."""
        if self._engine is None:
            self._engine = create_engine(self.database_url, pool_pre_ping=True)
            logger.info("Created SQLAlchemy engine", url=self._engine.url.render_as_string(hide_password=True))
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, autoflush=False)
        return self._session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        metadata.create_all(self.engine)
        logger.info("State table ready")

    def health_check(self) -> bool:
        try:
            with self.session() as session:
                session.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


class SqlStateStore:
    """StateStore backed by the `state` table; blocking I/O runs in a worker thread."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _get(self, key: str) -> Optional[bytes]:
        with self.db.session() as session:
            return session.execute(
                select(state_table.c.value).where(state_table.c.key == key)
            ).scalar_one_or_none()

    def _put(self, key: str, value: bytes) -> None:
        with self.db.session() as session:
            session.execute(delete(state_table).where(state_table.c.key == key))
            session.execute(insert(state_table).values(key=key, value=value))

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._get, key)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Reading {key!r} failed: {e}") from e

    async def put(self, key: str, value: bytes) -> None:
        try:
            await asyncio.to_thread(self._put, key, value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Writing {key!r} failed: {e}") from e


class MemoryStateStore:
    """In-process StateStore for tests and dry runs."""

    def __init__(self, initial: Optional[dict[str, bytes]] = None):
        self.data: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> Optional[bytes]:
        return self.data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        self.data[key] = value
