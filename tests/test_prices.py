"""
Tests for CoinGecko price lookups.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from services.prices import PriceService, get_coingecko_id


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestCoinGeckoId:

    def test_known_and_fallback(self):
        assert get_coingecko_id('avax') == 'avalanche-2'
        assert get_coingecko_id('PEPE') == 'pepe'


class TestFetchPrices:

    @patch('services.prices.requests.get')
    def test_maps_back_to_symbols(self, mock_get):
        mock_get.return_value = _response({'bitcoin': {'usd': 60000}, 'ethereum': {'usd': 3000}})
        prices = PriceService.fetch_prices(['btc', 'ETH', 'NOPE'])
        assert prices == {'BTC': 60000.0, 'ETH': 3000.0}
        params = mock_get.call_args.kwargs['params']
        assert params['vs_currencies'] == 'usd'
        assert set(params['ids'].split(',')) == {'bitcoin', 'ethereum', 'nope'}

    def test_empty_input_skips_request(self):
        with patch('services.prices.requests.get') as mock_get:
            assert PriceService.fetch_prices([]) == {}
            mock_get.assert_not_called()

    @patch.object(PriceService._get.retry, 'sleep', lambda *_: None)
    @patch('services.prices.requests.get', side_effect=requests.ConnectionError('offline'))
    def test_failure_returns_empty_after_retries(self, mock_get):
        assert PriceService.fetch_prices(['BTC']) == {}
        assert mock_get.call_count == 3

    def test_price_for_pegs_stablecoins(self):
        assert PriceService.price_for('usdt', {}) == 1.0
        assert PriceService.price_for('BTC', {'BTC': 5.0}) == 5.0
        assert PriceService.price_for('XYZ', {}) == 0.0


class TestCoinQuotes:

    @patch('services.prices.requests.get')
    def test_quotes(self, mock_get):
        mock_get.return_value = _response([
            {'id': 'bitcoin', 'symbol': 'btc', 'name': 'Bitcoin', 'current_price': 60000,
             'price_change_percentage_24h': -1.5, 'market_cap': 1},
        ])
        quotes = PriceService.fetch_coin_quotes(['bitcoin'])
        assert quotes['bitcoin'].current_price == 60000
        assert quotes['bitcoin'].price_change_percentage_24h == pytest.approx(-1.5)
