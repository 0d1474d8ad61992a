"""
Fill aggregation - reduces partial executions to a weighted-average
price, total amount, and total value.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Mapping, Union

from models import Fill
from services.common import parse_number

logger = logging.getLogger(__name__)

FillInput = Union[Fill, Mapping[str, Any]]


@dataclass
class FillAggregate:
    """Weighted totals of a fill list."""
    total_amount: float
    total_value: float
    weighted_average_price: Optional[float]  # None when total_amount == 0
    used_fills: int

    @property
    def is_empty(self) -> bool:
        """True when the fills carry no amount; callers must keep their own amount/price."""
        return self.total_amount <= 0 or self.weighted_average_price is None


def _fill_fields(fill: FillInput) -> tuple:
    if isinstance(fill, Fill):
        return fill.price, fill.amount, fill.date
    return fill.get('price'), fill.get('amount'), fill.get('date', '')


def aggregate_fills(fills: Iterable[FillInput]) -> FillAggregate:
    """
    Aggregate partial fills.

    Entries whose price or amount does not parse contribute nothing.

    Args:
        fills: Fill models or mappings with price/amount/date (values may be strings)

    Returns:
        FillAggregate with total amount, total value and weighted average price
    """
    total_amount = 0.0
    total_value = 0.0
    used = 0
    for fill in fills:
        raw_price, raw_amount, _ = _fill_fields(fill)
        price = parse_number(raw_price)
        amount = parse_number(raw_amount)
        if price is None or amount is None:
            continue
        total_amount += amount
        total_value += price * amount
        used += 1

    average = total_value / total_amount if total_amount > 0 else None
    return FillAggregate(
        total_amount=total_amount,
        total_value=total_value,
        weighted_average_price=average,
        used_fills=used,
    )


def to_fill_models(fills: Iterable[FillInput], default_date: str = "") -> List[Fill]:
    """
    Convert raw fill entries to Fill models, keeping the entered order.
    Entries that aggregate_fills would skip are dropped, so the stored fills
    always sum to the leg amount.
    """
    result = []
    for fill in fills:
        raw_price, raw_amount, fill_date = _fill_fields(fill)
        price = parse_number(raw_price)
        amount = parse_number(raw_amount)
        if price is None or amount is None:
            logger.warning(f"Dropping fill with unparseable amount/price: {raw_amount!r} @ {raw_price!r}")
            continue
        result.append(Fill(price=price, amount=amount, date=str(fill_date or default_date)))
    return result


def fills_match_totals(fills: Iterable[FillInput], amount: float, price: float,
                       tolerance: float = 1e-6) -> bool:
    """Check that a record's amount/price agree with its fills within tolerance."""
    agg = aggregate_fills(fills)
    if agg.is_empty:
        return True
    amount_ok = abs(agg.total_amount - amount) <= tolerance * max(1.0, abs(amount))
    price_ok = abs(agg.weighted_average_price - price) <= tolerance * max(1.0, abs(price))
    return amount_ok and price_ok
