"""
Fiat ledger - deposit/withdrawal totals with an optional month filter.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from models import FiatTransaction
from services.common import parse_datetime


@dataclass
class FiatSummary:
    total_in: float = 0.0
    total_out: float = 0.0

    @property
    def net_flow(self) -> float:
        return self.total_in - self.total_out


def filter_fiat(transactions: Iterable[FiatTransaction], month: Optional[str] = None) -> List[FiatTransaction]:
    """
    Newest first, optionally limited to one month.

    Args:
        transactions: Ledger entries
        month: "YYYY-MM" or None for all
    """
    txs = sorted(transactions, key=lambda t: parse_datetime(t.date), reverse=True)
    if month:
        txs = [t for t in txs if parse_datetime(t.date).strftime('%Y-%m') == month]
    return txs


def summarize_fiat(transactions: Iterable[FiatTransaction], month: Optional[str] = None) -> FiatSummary:
    summary = FiatSummary()
    for tx in filter_fiat(transactions, month):
        if tx.type == 'Deposit':
            summary.total_in += tx.amount
        else:
            summary.total_out += tx.amount
    return summary
