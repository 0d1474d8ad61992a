"""
Data models for Crypto Bookkeeper.
Domain records are pydantic models serialized into the persisted state
document; StorageEntry is the SQLModel table that holds that document.
"""

from models.transaction import Transaction, TransactionType, Fill, new_id
from models.pair import TransactionPair
from models.balance import Balance, ExchangeHoldings, CexSnapshot, WalletHoldings, ChainSnapshot
from models.app_state import (
    AppState,
    AIConfig,
    CexConfig,
    Coin,
    CoinMetadata,
    FiatTransaction,
    ManualAsset,
    Tag,
    Wallet,
)
from models.storage_entry import StorageEntry

__all__ = [
    'Transaction',
    'TransactionType',
    'Fill',
    'new_id',
    'TransactionPair',
    'Balance',
    'ExchangeHoldings',
    'CexSnapshot',
    'WalletHoldings',
    'ChainSnapshot',
    'AppState',
    'AIConfig',
    'CexConfig',
    'Coin',
    'CoinMetadata',
    'FiatTransaction',
    'ManualAsset',
    'Tag',
    'Wallet',
    'StorageEntry',
]
