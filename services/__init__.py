"""
Services package for Crypto Bookkeeper.
Provides core business logic separated from presentation and data layers.
"""

from services.exceptions import (
    BookkeeperError,
    TransactionValidationError,
    CsvImportError,
    BackupFormatError,
    StateLoadError,
    BalanceFetchError,
)
from services.fills import FillAggregate, aggregate_fills
from services.pnl import PnLResult, calculate_pnl, calculate_import_pnl
from services.pairing import build_pairs, build_trash_rows
from services.filters import PairFilter, PnLSign, TimeRange, TimeRangeType, filter_pairs
from services.transaction_store import (
    TransactionStore,
    TradeEntry,
    LegInput,
    BulkResult,
    TransactionStats,
)
from services.session import BookkeeperSession
from services.prices import PriceService
from services.balances import BalanceService
from services.portfolio import PortfolioService

__all__ = [
    # Errors
    'BookkeeperError',
    'TransactionValidationError',
    'CsvImportError',
    'BackupFormatError',
    'StateLoadError',
    'BalanceFetchError',
    # Trade math
    'FillAggregate',
    'aggregate_fills',
    'PnLResult',
    'calculate_pnl',
    'calculate_import_pnl',
    # Pairing and queries
    'build_pairs',
    'build_trash_rows',
    'PairFilter',
    'PnLSign',
    'TimeRange',
    'TimeRangeType',
    'filter_pairs',
    # Lifecycle
    'TransactionStore',
    'TradeEntry',
    'LegInput',
    'BulkResult',
    'TransactionStats',
    'BookkeeperSession',
    # Services
    'PriceService',
    'BalanceService',
    'PortfolioService',
]
