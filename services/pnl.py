"""
Realized PnL and annualized return for a matched buy/sell round-trip.
"""

import logging
from dataclasses import dataclass

from models import Transaction
from services.common import days_between

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365


@dataclass
class PnLResult:
    pnl: float
    apr: float
    days_held: float
    cost: float


def annualize(pnl: float, cost: float, days_held: float) -> float:
    """
    Annualized return in percent.

    A zero or negative holding period, or a non-positive cost, yields 0
    instead of infinity or NaN.
    """
    if days_held > 0 and cost > 0:
        return (pnl / cost) * (DAYS_PER_YEAR / days_held) * 100
    return 0.0


def calculate_pnl(
    buy_price: float,
    buy_date: str,
    sell_amount: float,
    sell_price: float,
    sell_date: str,
) -> PnLResult:
    """
    PnL of a sell valued against the buy price as cost basis.

    Both revenue and cost use the sell's own amount, so a partial close is
    not pro-rated against the buy's total amount.

    Args:
        buy_price: Cost basis per unit
        buy_date: ISO timestamp of the buy
        sell_amount: Units sold
        sell_price: Sale price per unit
        sell_date: ISO timestamp of the sell

    Returns:
        PnLResult with pnl, apr (percent), holding days and cost
    """
    pnl = sell_amount * sell_price - sell_amount * buy_price
    cost = sell_amount * buy_price
    days_held = days_between(buy_date, sell_date)
    return PnLResult(pnl=pnl, apr=annualize(pnl, cost, days_held), days_held=days_held, cost=cost)


def calculate_leg_pnl(buy: Transaction, sell: Transaction) -> PnLResult:
    """PnL for a sell leg against its paired buy leg."""
    return calculate_pnl(buy.price, buy.date, sell.amount, sell.price, sell.date)


def calculate_import_pnl(buy: Transaction, sell: Transaction) -> PnLResult:
    """
    PnL used when CSV import auto-pairs legs: full notional values net of
    both legs' fees, annualized against the buy value.
    """
    buy_value = buy.amount * buy.price
    sell_value = sell.amount * sell.price
    pnl = sell_value - buy_value - buy.fee - sell.fee
    days_held = days_between(buy.date, sell.date)
    return PnLResult(pnl=pnl, apr=annualize(pnl, buy_value, days_held), days_held=days_held, cost=buy_value)

