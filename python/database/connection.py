"""
Database connection management for the Documents View system

Settings come from the database section of config.yaml, overridden by
DB_* environment variables or a full DATABASE_URL. Sessions are handed to
FastAPI routes through get_db; services commit their own transactions.
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config_manager import DatabaseConfig
from database.models import Base

logger = logging.getLogger(__name__)


@dataclass
class DatabaseSettings:
    """Connection and pool settings."""
    host: str = "localhost"
    port: int = 5432
    database: str = "documents_view"
    user: str = "docs_user"
    password: str = "docs_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle: int = 1800
    echo: bool = False

    @classmethod
    def from_config(cls, config: Optional[DatabaseConfig] = None) -> 'DatabaseSettings':
        """Settings from config.yaml with DB_* environment overrides."""
        config = config or DatabaseConfig()
        return cls(
            host=os.getenv("DB_HOST", config.host),
            port=int(os.getenv("DB_PORT", config.port)),
            database=os.getenv("DB_NAME", config.name),
            user=os.getenv("DB_USER", config.user),
            password=os.getenv("DB_PASSWORD", config.password),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true"
        )

    def get_url(self) -> str:
        full_url = os.getenv("DATABASE_URL")
        if full_url:
            if full_url.startswith("postgresql://"):
                return full_url.replace("postgresql://", "postgresql+psycopg://", 1)
            return full_url

        return f"postgresql+psycopg://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


# Only connection-level failures are retried
db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


class DatabaseSessionProvider:
    """
    Owns the engine and session factory.

    Usage:
        provider = DatabaseSessionProvider(DatabaseSettings.from_config(config.database))
        provider.init()

        @app.get("/api/documents")
        def list_documents(db: Session = Depends(provider.get_session)):
            ...
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or DatabaseSettings.from_config()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    def init(self) -> None:
        if self._initialized:
            return

        if self._engine is None:
            self._engine = self._create_engine_with_retry()

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )
        self._initialized = True
        logger.info("Database session provider initialized")

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        url = self._settings.get_url()

        if url.startswith("sqlite"):
            engine = create_engine(url, echo=self._settings.echo)
        else:
            engine = create_engine(
                url,
                echo=self._settings.echo,
                poolclass=QueuePool,
                pool_size=self._settings.pool_size,
                max_overflow=self._settings.max_overflow,
                pool_recycle=self._settings.pool_recycle,
                pool_pre_ping=True
            )

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    def get_session(self) -> Generator[Session, None, None]:
        if self._session_factory is None:
            self.init()

        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on exit and rolls back on error."""
        if self._session_factory is None:
            self.init()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Database tables created")

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def set_db_provider(provider: Optional[DatabaseSessionProvider]) -> None:
    """Replace the global database provider (used by tests)."""
    global _db_provider
    _db_provider = provider


def init_db(config: Optional[DatabaseConfig] = None) -> DatabaseSessionProvider:
    """Create the global provider from config unless one is installed."""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider(DatabaseSettings.from_config(config))
    _db_provider.init()
    return _db_provider


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session from the global provider."""
    provider = get_db_provider()
    if not provider._initialized:
        provider.init()

    yield from provider.get_session()


def close_db() -> None:
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider bound to a pre-built engine, e.g. in-memory SQLite."""
    return DatabaseSessionProvider(settings=settings, engine=engine)
