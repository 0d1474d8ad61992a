"""
TransactionPair - reconstructed display row combining a buy leg and/or
the sell leg that references it.
"""

from dataclasses import dataclass
from typing import Optional

from models.transaction import Transaction


@dataclass
class TransactionPair:
    """One economic round-trip or one still-open position."""
    id: str  # anchor leg id
    date: str
    platform: str
    pair: str
    buy: Optional[Transaction] = None
    sell: Optional[Transaction] = None
    pnl: Optional[float] = None
    apr: Optional[float] = None

    @property
    def is_closed(self) -> bool:
        """True when both legs are present."""
        return self.buy is not None and self.sell is not None

    @property
    def leg_ids(self) -> list:
        return [leg.id for leg in (self.buy, self.sell) if leg is not None]
