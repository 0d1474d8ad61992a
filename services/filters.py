"""
Filter layer - composable predicates over display pairs.
All predicates are AND-composed, so application order never changes the result.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from models import TransactionPair
from services.common import parse_datetime, utc_now

logger = logging.getLogger(__name__)

PairPredicate = Callable[[TransactionPair], bool]


class PnLSign(str, Enum):
    ALL = "all"
    PROFIT = "profit"
    LOSS = "loss"


class TimeRangeType(str, Enum):
    ALL = "all"
    YEAR = "year"
    MONTH = "month"
    WEEK = "week"
    CUSTOM = "custom"


@dataclass
class TimeRange:
    """
    Time window applied to a pair's display date.

    YEAR and MONTH default to the year/month of `now`; WEEK is the
    Sunday-started week containing `now`; CUSTOM bounds are dates and the
    end day is included in full.
    """
    kind: TimeRangeType = TimeRangeType.ALL
    year: Optional[int] = None
    month: Optional[int] = None  # 1-12
    start: Optional[str] = None
    end: Optional[str] = None

    def bounds(self, now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Return (inclusive start, exclusive end); either may be None."""
        now = now or utc_now()
        kind = TimeRangeType(self.kind)

        if kind == TimeRangeType.ALL:
            return None, None
        if kind == TimeRangeType.YEAR:
            year = self.year or now.year
            return datetime(year, 1, 1), datetime(year + 1, 1, 1)
        if kind == TimeRangeType.MONTH:
            year = self.year or now.year
            month = self.month or now.month
            start = datetime(year, month, 1)
            end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
            return start, end
        if kind == TimeRangeType.WEEK:
            days_since_sunday = (now.weekday() + 1) % 7
            start = datetime(now.year, now.month, now.day) - timedelta(days=days_since_sunday)
            return start, start + timedelta(days=7)

        start = None
        end = None
        if self.start:
            parsed = parse_datetime(self.start)
            start = datetime(parsed.year, parsed.month, parsed.day)
        if self.end:
            parsed = parse_datetime(self.end)
            end = datetime(parsed.year, parsed.month, parsed.day) + timedelta(days=1)
        return start, end


def coin_filter(coin: str) -> PairPredicate:
    """Case-insensitive substring match on the pair."""
    needle = coin.strip().upper()
    return lambda p: needle in (p.pair or "").upper()


def platform_filter(platform: str) -> PairPredicate:
    """Exact match on the platform id."""
    return lambda p: p.platform == platform


def pnl_sign_filter(sign: PnLSign) -> PairPredicate:
    """Profit keeps pnl > 0, loss keeps pnl < 0; undefined pnl fails both."""
    sign = PnLSign(sign)
    if sign == PnLSign.PROFIT:
        return lambda p: p.pnl is not None and p.pnl > 0
    if sign == PnLSign.LOSS:
        return lambda p: p.pnl is not None and p.pnl < 0
    return lambda p: True


def apr_range_filter(min_apr: Optional[float] = None, max_apr: Optional[float] = None) -> PairPredicate:
    """Inclusive APR bounds; undefined apr fails any bound."""
    def _check(p: TransactionPair) -> bool:
        if min_apr is not None and (p.apr is None or p.apr < min_apr):
            return False
        if max_apr is not None and (p.apr is None or p.apr > max_apr):
            return False
        return True
    return _check


def time_range_filter(time_range: TimeRange, now: Optional[datetime] = None) -> PairPredicate:
    start, end = time_range.bounds(now)

    def _check(p: TransactionPair) -> bool:
        if start is None and end is None:
            return True
        when = parse_datetime(p.date)
        if start is not None and when < start:
            return False
        if end is not None and when >= end:
            return False
        return True
    return _check


@dataclass
class PairFilter:
    """User-selected filter settings. Empty fields do not filter."""
    coin: str = ""
    platform: str = ""
    pnl_sign: PnLSign = PnLSign.ALL
    min_apr: Optional[float] = None
    max_apr: Optional[float] = None
    time_range: TimeRange = field(default_factory=TimeRange)

    def predicates(self, now: Optional[datetime] = None) -> List[PairPredicate]:
        preds: List[PairPredicate] = []
        if self.coin:
            preds.append(coin_filter(self.coin))
        if self.platform:
            preds.append(platform_filter(self.platform))
        if PnLSign(self.pnl_sign) != PnLSign.ALL:
            preds.append(pnl_sign_filter(self.pnl_sign))
        if self.min_apr is not None or self.max_apr is not None:
            preds.append(apr_range_filter(self.min_apr, self.max_apr))
        if TimeRangeType(self.time_range.kind) != TimeRangeType.ALL:
            preds.append(time_range_filter(self.time_range, now))
        return preds


def apply_predicates(pairs: Iterable[TransactionPair], predicates: Iterable[PairPredicate]) -> List[TransactionPair]:
    """Keep the pairs that satisfy every predicate, preserving order."""
    preds = list(predicates)
    return [p for p in pairs if all(pred(p) for pred in preds)]


def filter_pairs(
    pairs: Iterable[TransactionPair],
    pair_filter: PairFilter,
    now: Optional[datetime] = None,
) -> List[TransactionPair]:
    """Apply every active filter in PairFilter."""
    return apply_predicates(pairs, pair_filter.predicates(now))
