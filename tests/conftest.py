"""
Shared fixtures: every test gets its own SQLite file and fresh settings.
"""

import pytest

from config import reload_settings
from db_engine import init_db, reset_engine
from models import Transaction


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point the storage database at a temp file for the duration of a test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("AUTOSAVE", "true")
    reload_settings()
    reset_engine()
    init_db()
    yield
    reset_engine()
    monkeypatch.undo()
    reload_settings()


@pytest.fixture
def make_tx():
    """Factory for legs with sensible defaults."""
    def _make(**fields):
        data = {
            'date': '2025-01-01T00:00:00.000Z',
            'type': 'Buy',
            'platform': 'binance',
            'pair': 'BTC/USDT',
            'amount': 1.0,
            'price': 100.0,
        }
        data.update(fields)
        return Transaction(**data)
    return _make


@pytest.fixture
def linked_pair(make_tx):
    """A Buy at 100 and a Sell at 120 ten days later, cross-linked."""
    buy = make_tx(id='buy-1', related_transaction_id='sell-1')
    sell = make_tx(
        id='sell-1', type='Sell', price=120.0, date='2025-01-11T00:00:00.000Z',
        related_transaction_id='buy-1', pnl=20.0, apr=730.0,
    )
    return buy, sell
