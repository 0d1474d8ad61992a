"""
Database engine and session management for Crypto Bookkeeper.
Uses SQLModel with SQLite as the local key/value store behind the
persisted application state.
Features Write-Ahead Logging (WAL) mode for improved concurrency.
"""

from pathlib import Path
from sqlmodel import SQLModel, Session, create_engine
from typing import Optional
import logging

from config import get_settings

logger = logging.getLogger(__name__)

# Global engine instance
_engine: Optional[object] = None


def get_engine():
    """Get or create the storage engine, creating the database directory if needed."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            echo=settings.db_echo,
            connect_args={
                "check_same_thread": False,
                # busy timeout for every pooled connection, not just the first
                "timeout": settings.db_busy_timeout,
            }
        )
        _ensure_database_dir()
        _enable_wal_mode()
    return _engine


def _ensure_database_dir():
    """Create the parent directory of a file-backed SQLite database."""
    database = _engine.url.database
    if _engine.url.get_backend_name() != "sqlite" or not database or database == ":memory:":
        return
    parent = Path(database).parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created database directory {parent}")


def _enable_wal_mode():
    """Switch the state database to WAL so reads never block the autosave writer."""
    if _engine is None:
        return

    try:
        with _engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            logger.info("SQLite WAL mode enabled for concurrent access")
    except Exception as e:
        logger.warning(f"Could not enable WAL mode: {e}")


def reset_engine():
    """Dispose the current engine so the next call picks up fresh settings."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def init_db():
    """Create the storage_entry table that holds the persisted state documents."""
    from models import StorageEntry  # noqa: F401  (registers the table)

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info(f"Storage database ready at {engine.url}")


def get_session():
    """Get a new database session."""
    return Session(get_engine())
