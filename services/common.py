"""
Common utilities and shared functions.
Date parsing, number parsing, and pair/platform normalization.
"""

import logging
import math
from datetime import datetime, date, timezone
from typing import Optional, Any, Union

from models.base import parse_iso

logger = logging.getLogger(__name__)


# Known trading venues: (id, display name, type)
PLATFORMS = [
    ("binance", "Binance", "CEX"),
    ("okx", "OKX", "CEX"),
    ("bybit", "Bybit", "CEX"),
    ("bitget", "Bitget", "CEX"),
    ("gate", "Gate.io", "CEX"),
    ("mexc", "MEXC", "CEX"),
    ("kucoin", "KuCoin", "CEX"),
    ("htx", "HTX", "CEX"),
    ("coinbase", "Coinbase", "CEX"),
    ("kraken", "Kraken", "CEX"),
    ("other", "Other", "Other"),
]


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a user-entered number.

    Args:
        value: str, int, float or None

    Returns:
        The float value, or None when the input is empty or not numeric

    Examples:
        >>> parse_number("1.5")
        1.5
        >>> parse_number("abc") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_datetime(value: Union[str, datetime, date]) -> datetime:
    """
    Parse an ISO 8601 timestamp (or a plain date) into a naive UTC datetime.

    Accepts "2025-01-15", "2025-01-15 10:30", "2025-01-15T10:30:00.000Z"
    and offset-aware forms. Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        parsed = parse_iso(value)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_iso(value: Union[str, datetime, date]) -> str:
    """Canonical ISO string (UTC, millisecond precision, trailing Z)."""
    parsed = parse_datetime(value)
    return parsed.strftime('%Y-%m-%dT%H:%M:%S.') + f"{parsed.microsecond // 1000:03d}Z"


def days_between(start: Union[str, datetime], end: Union[str, datetime]) -> float:
    """Fractional days from start to end (negative when end is earlier)."""
    delta = parse_datetime(end) - parse_datetime(start)
    return delta.total_seconds() / 86400.0


def normalize_pair(pair: str) -> str:
    """
    Canonicalize a trading pair to upper-case BASE/QUOTE.

    Examples:
        >>> normalize_pair(" btc / usdt ")
        'BTC/USDT'
        >>> normalize_pair("eth")
        'ETH'
    """
    parts = [p.strip() for p in (pair or "").split('/')]
    return '/'.join(parts).upper()


def base_symbol(pair: str) -> str:
    """Base asset of a pair, e.g. 'BTC' for 'BTC/USDT'."""
    return normalize_pair(pair).split('/')[0]


def normalize_platform(platform: str) -> str:
    """
    Map a platform name or id to a known platform id (case-insensitive).
    Unknown platforms are returned unchanged.
    """
    text = (platform or "").strip()
    lowered = text.lower()
    for platform_id, name, _ in PLATFORMS:
        if lowered == platform_id or lowered == name.lower():
            return platform_id
    return text


def platform_name(platform_id: str) -> str:
    """Display name for a platform id."""
    for pid, name, _ in PLATFORMS:
        if pid == platform_id:
            return name
    return platform_id


def utc_now() -> datetime:
    """Current time as a naive UTC datetime, comparable with parse_datetime results."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
