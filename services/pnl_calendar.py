"""
PnL calendar - realized PnL per day and per month from sell legs.
"""

from datetime import date
from typing import Dict, Iterable, List, Set

import pandas as pd

from models import Transaction
from services.common import parse_datetime


def _frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    rows = [
        {
            'day': parse_datetime(tx.date).date(),
            'type': tx.type,
            'pnl': tx.pnl if tx.pnl is not None else 0.0,
            'linked': bool(tx.related_transaction_id),
        }
        for tx in transactions
        if not tx.is_deleted
    ]
    return pd.DataFrame(rows, columns=['day', 'type', 'pnl', 'linked'])


def daily_pnl(transactions: Iterable[Transaction]) -> Dict[date, float]:
    """
    Sum of sell-leg pnl per calendar day.
    Days with sells but no recorded pnl report 0.
    """
    df = _frame(transactions)
    sells = df[df['type'] == 'Sell']
    if sells.empty:
        return {}
    totals = sells.groupby('day')['pnl'].sum()
    return {day: float(value) for day, value in totals.items()}


def open_buy_days(transactions: Iterable[Transaction]) -> Set[date]:
    """Days with at least one buy leg that has no paired sell."""
    df = _frame(transactions)
    buys = df[(df['type'] == 'Buy') & (~df['linked'].astype(bool))]
    return set(buys['day'])


def monthly_pnl(transactions: Iterable[Transaction], year: int, month: int) -> float:
    """Total realized pnl for one month."""
    return sum(
        value for day, value in daily_pnl(transactions).items()
        if day.year == year and day.month == month
    )


def day_transactions(transactions: Iterable[Transaction], day: date) -> List[Transaction]:
    """Buy and sell legs dated on a given day."""
    return [
        tx for tx in transactions
        if not tx.is_deleted and (tx.is_buy or tx.is_sell) and parse_datetime(tx.date).date() == day
    ]
