"""
Tests for the storage engine setup.
"""

from config import reload_settings
from db_engine import get_engine, init_db, reset_engine
from repositories.storage_repository import StorageRepository


class TestEngine:
    """Engine creation against the configured database url."""

    def test_creates_missing_database_directory(self, tmp_path, monkeypatch):
        db_file = tmp_path / 'data' / 'nested' / 'state.db'
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_file}")
        reload_settings()
        reset_engine()
        init_db()
        StorageRepository.set('k', 'v')
        assert db_file.exists()
        assert StorageRepository.get('k') == 'v'

    def test_wal_mode_enabled(self):
        with get_engine().connect() as conn:
            mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
        assert mode.lower() == 'wal'

    def test_busy_timeout_from_settings(self, monkeypatch):
        monkeypatch.setenv("DB_BUSY_TIMEOUT", "2.5")
        reload_settings()
        reset_engine()
        with get_engine().connect() as conn:
            timeout_ms = conn.exec_driver_sql("PRAGMA busy_timeout").scalar()
        assert timeout_ms == 2500

    def test_in_memory_database_skips_directory_creation(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        reload_settings()
        reset_engine()
        init_db()
        assert StorageRepository.get('missing') is None
