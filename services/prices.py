"""
Price service for USD quotes from CoinGecko.
Enhanced with tenacity for retry logic; a failed lookup yields an empty map.
"""

import logging
from typing import Dict, Iterable, List

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import get_settings
from models import Coin

logger = logging.getLogger(__name__)


SYMBOL_TO_COINGECKO_ID = {
    'BTC': 'bitcoin',
    'ETH': 'ethereum',
    'SOL': 'solana',
    'BNB': 'binancecoin',
    'ADA': 'cardano',
    'OKB': 'okb',
    'TON': 'the-open-network',
    'SUI': 'sui',
    'MNT': 'mantle',
    'USDT': 'tether',
    'USDC': 'usd-coin',
    'BBSOL': 'bybit-staked-sol',
    'MXC': 'mxc',
    'XRP': 'ripple',
    'DOGE': 'dogecoin',
    'DOT': 'polkadot',
    'MATIC': 'matic-network',
    'LTC': 'litecoin',
    'AVAX': 'avalanche-2',
    'UNI': 'uniswap',
}

STABLECOINS = {'USDT', 'USDC', 'DAI', 'FDUSD', 'BUSD', 'TUSD', 'USD'}


def get_coingecko_id(symbol: str) -> str:
    """CoinGecko id for a symbol, falling back to the lower-cased symbol."""
    return SYMBOL_TO_COINGECKO_ID.get(symbol.upper(), symbol.lower())


class PriceService:
    """
    Service for fetching USD prices.
    """

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True
    )
    def _get(path: str, params: Dict) -> object:
        """GET a CoinGecko endpoint with retry logic."""
        settings = get_settings()
        headers = {'accept': 'application/json'}
        if settings.coingecko_api_key:
            headers['x-cg-demo-api-key'] = settings.coingecko_api_key
        response = requests.get(
            f"{settings.coingecko_base_url.rstrip('/')}/{path}",
            params=params,
            headers=headers,
            timeout=settings.request_timeout,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def fetch_prices(symbols: Iterable[str]) -> Dict[str, float]:
        """
        Fetch USD prices for a set of symbols.

        Args:
            symbols: Token symbols, any case

        Returns:
            Dict of upper-case symbol -> USD price. Symbols CoinGecko does not
            know are left out; any request failure returns {}.
        """
        unique = sorted({s.upper() for s in symbols if s})
        if not unique:
            return {}

        ids = ','.join(sorted({get_coingecko_id(s) for s in unique}))
        try:
            data = PriceService._get('simple/price', {'ids': ids, 'vs_currencies': 'usd'})
        except Exception as e:
            logger.error(f"Failed to fetch CoinGecko prices: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected CoinGecko price response")
            return {}

        prices = {}
        for symbol in unique:
            quote = data.get(get_coingecko_id(symbol))
            if isinstance(quote, dict) and quote.get('usd'):
                prices[symbol] = float(quote['usd'])
        logger.debug(f"Fetched {len(prices)}/{len(unique)} prices")
        return prices

    @staticmethod
    def fetch_coin_quotes(coin_ids: Iterable[str]) -> Dict[str, Coin]:
        """
        Fetch market quotes (price and 24h change) for monitored coins.

        Returns:
            Dict of CoinGecko id -> Coin; {} on failure
        """
        ids = [c for c in coin_ids if c]
        if not ids:
            return {}
        try:
            data = PriceService._get('coins/markets', {'vs_currency': 'usd', 'ids': ','.join(ids)})
        except Exception as e:
            logger.error(f"Failed to fetch coin quotes: {e}")
            return {}
        if not isinstance(data, list):
            logger.warning("Unexpected CoinGecko markets response")
            return {}

        quotes = {}
        for item in data:
            try:
                coin = Coin.model_validate(item)
            except ValueError as e:
                logger.warning(f"Skipping malformed quote: {e}")
                continue
            quotes[coin.id] = coin
        return quotes

    @staticmethod
    def price_for(symbol: str, prices: Dict[str, float]) -> float:
        """Price from a fetched map; stablecoins are pegged at 1."""
        symbol = symbol.upper()
        if symbol in prices:
            return prices[symbol]
        if symbol in STABLECOINS:
            return 1.0
        return 0.0

    @staticmethod
    def missing_symbols(symbols: Iterable[str], prices: Dict[str, float]) -> List[str]:
        return sorted({s.upper() for s in symbols} - set(prices) - STABLECOINS)
