"""
Portfolio service for token allocation across exchange accounts.
Combines refreshed exchange balances with manually entered holdings.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import pandas as pd

from config import get_settings
from models import CexSnapshot, ManualAsset
from services.prices import PriceService

logger = logging.getLogger(__name__)


@dataclass
class TokenAllocation:
    """USD exposure to one token across all accounts."""
    symbol: str
    amount: float
    value: float
    share_pct: float


@dataclass
class PortfolioAllocation:
    tokens: List[TokenAllocation]
    total_value: float
    hidden_value: float  # value of positions under the small-asset threshold


class PortfolioService:
    """
    Service for portfolio allocation.
    """

    @staticmethod
    def holdings_frame(
        cex_data: Optional[CexSnapshot],
        manual_assets: Iterable[ManualAsset] = (),
        prices: Optional[Dict[str, float]] = None,
    ) -> pd.DataFrame:
        """
        One row per (source, symbol) holding with columns
        source, symbol, amount, value.

        Manual assets are valued at `prices` (fetched from CoinGecko when not
        given); stablecoins count at 1 USD.
        """
        rows = []
        if cex_data:
            for source_id, holdings in cex_data.exchanges.items():
                for b in holdings.balances:
                    rows.append({'source': holdings.name or source_id, 'symbol': b.symbol.upper(),
                                 'amount': b.amount, 'value': b.value})

        manual_assets = list(manual_assets)
        if manual_assets:
            if prices is None:
                prices = PriceService.fetch_prices(a.symbol for a in manual_assets)
            missing = PriceService.missing_symbols((a.symbol for a in manual_assets), prices)
            if missing:
                logger.warning(f"No price for manual assets: {', '.join(missing)}")
            for asset in manual_assets:
                price = PriceService.price_for(asset.symbol, prices)
                rows.append({'source': asset.exchange, 'symbol': asset.symbol.upper(),
                             'amount': asset.amount, 'value': asset.amount * price})

        return pd.DataFrame(rows, columns=['source', 'symbol', 'amount', 'value'])

    @staticmethod
    def allocation(
        cex_data: Optional[CexSnapshot],
        manual_assets: Iterable[ManualAsset] = (),
        prices: Optional[Dict[str, float]] = None,
        threshold: Optional[float] = None,
    ) -> PortfolioAllocation:
        """
        Per-token totals sorted by value, dropping tokens worth less than
        `threshold` USD (defaults to Settings.small_asset_threshold).
        """
        if threshold is None:
            threshold = get_settings().small_asset_threshold

        df = PortfolioService.holdings_frame(cex_data, manual_assets, prices)
        if df.empty:
            return PortfolioAllocation(tokens=[], total_value=0.0, hidden_value=0.0)

        grouped = df.groupby('symbol', as_index=False)[['amount', 'value']].sum()
        grouped = grouped.sort_values('value', ascending=False, kind='stable')
        visible = grouped[grouped['value'] >= threshold]
        total = float(visible['value'].sum())
        hidden = float(grouped['value'].sum()) - total

        tokens = [
            TokenAllocation(
                symbol=row.symbol,
                amount=float(row.amount),
                value=float(row.value),
                share_pct=float(row.value) / total * 100 if total > 0 else 0.0,
            )
            for row in visible.itertuples(index=False)
        ]
        return PortfolioAllocation(tokens=tokens, total_value=total, hidden_value=hidden)

    @staticmethod
    def exchange_totals(cex_data: Optional[CexSnapshot], manual_assets: Iterable[ManualAsset] = (),
                        prices: Optional[Dict[str, float]] = None) -> Dict[str, float]:
        """USD total per exchange account name, manual holdings included."""
        df = PortfolioService.holdings_frame(cex_data, manual_assets, prices)
        if df.empty:
            return {}
        totals = df.groupby('source')['value'].sum().sort_values(ascending=False)
        return {source: float(value) for source, value in totals.items()}
