"""Engine and session handling for the local and remote task databases."""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base
from ..config.settings import get_settings
from ..utils.logging import get_logger


logger = get_logger("database")

SQLITE_BUSY_TIMEOUT_MS = 20000


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def _sqlite_file_path(url: str) -> Optional[Path]:
    if not url.startswith("sqlite:///") or _is_memory_url(url):
        return None
    return Path(url[len("sqlite:///"):].split("?", 1)[0])


def _configure_sqlite(engine: Engine, in_memory: bool) -> None:
    """Per-connection pragmas; the queue must survive a crash mid-pass."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()


class DatabaseManager:
    """Owns one engine and hands out transactional sessions."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_settings().database.url

        if self.database_url.startswith("sqlite"):
            in_memory = _is_memory_url(self.database_url)
            # In-memory databases live on a single shared connection
            self.engine = create_engine(
                self.database_url,
                poolclass=StaticPool if in_memory else None,
                connect_args={"check_same_thread": False},
            )
            _configure_sqlite(self.engine, in_memory)
        else:
            self.engine = create_engine(self.database_url, pool_pre_ping=True, pool_recycle=300)

        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        logger.info("Database manager initialized", database_url=self.database_url)

    def create_tables(self):
        """Create the tasks and sync_queue tables if missing."""
        db_path = _sqlite_file_path(self.database_url)
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error("Failed to create database tables", error=str(e))
            raise

        logger.info("Database tables ready", tables=sorted(Base.metadata.tables))

    def get_session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session committed on success and rolled back on any exception."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("Database transaction rolled back", error_type=type(e).__name__, error=str(e))
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Database connection test failed", error=str(e))
            return False
        return True

    def close(self):
        self.engine.dispose()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Process-wide manager, created from settings on first use."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def init_database(database_url: Optional[str] = None, create_tables: bool = True) -> DatabaseManager:
    """Replace the process-wide manager and verify the connection.

    Raises:
        RuntimeError: if the database cannot be reached
    """
    global _db_manager
    _db_manager = DatabaseManager(database_url)

    if create_tables:
        _db_manager.create_tables()

    if not _db_manager.test_connection():
        raise RuntimeError(f"Failed to connect to database: {database_url}")

    return _db_manager


def close_database():
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
        logger.info("Database connections closed")
