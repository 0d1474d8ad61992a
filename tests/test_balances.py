"""
Tests for balance-proxy normalization and the refresh fan-out.
HTTP is mocked with unittest.mock.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from models import CexConfig, CexSnapshot, ExchangeHoldings, Wallet
from services.balances import BalanceService, ResourceLocks, normalize_balance
from services.exceptions import BalanceFetchError


def _response(status=200, payload=None, json_error=False):
    response = MagicMock()
    response.status_code = status
    if json_error:
        response.json.side_effect = ValueError('no json')
    else:
        response.json.return_value = payload
    return response


def _config(config_id, platform='binance', **extra):
    return CexConfig(id=config_id, platform_id=platform, api_key='k', api_secret='s', **extra)


class TestNormalizeBalance:

    def test_value_falls_back_to_amount_times_price(self):
        balance = normalize_balance({'coin': 'eth', 'amount': '2', 'price': 1500})
        assert balance.symbol == 'ETH'
        assert balance.value == 3000

    def test_reported_value_wins(self):
        assert normalize_balance({'symbol': 'BTC', 'amount': 1, 'price': 10, 'value': 12}).value == 12

    def test_rows_without_symbol_or_amount_dropped(self):
        assert normalize_balance({'amount': 1}) is None
        assert normalize_balance({'symbol': 'BTC', 'amount': 'n/a'}) is None
        assert normalize_balance('junk') is None


class TestFetchCexBalance:

    @patch('services.balances.requests.post')
    def test_success(self, mock_post):
        mock_post.return_value = _response(payload={
            'platform': 'binance',
            'balances': [{'symbol': 'BTC', 'amount': 0.5, 'type': 'Spot', 'price': 60000, 'value': 30000},
                         {'bogus': True}],
        })
        result = BalanceService.fetch_cex_balance(_config('c1', password='pp'))
        assert result.kind == 'cex'
        assert result.total == 30000
        assert len(result.balances) == 1
        body = mock_post.call_args.kwargs['json']
        assert body == {'platformId': 'binance', 'apiKey': 'k', 'apiSecret': 's', 'password': 'pp'}
        assert mock_post.call_args.args[0].endswith('/api/cex/balance')

    @patch('services.balances.requests.post')
    def test_non_2xx_raises(self, mock_post):
        mock_post.return_value = _response(status=400, payload={'error': 'Missing credentials'})
        with pytest.raises(BalanceFetchError) as exc:
            BalanceService.fetch_cex_balance(_config('c1'))
        assert exc.value.source_id == 'c1'
        assert 'Missing credentials' in str(exc.value)

    @patch('services.balances.requests.post')
    def test_malformed_payload_raises(self, mock_post):
        mock_post.return_value = _response(payload={'platform': 'binance'})
        with pytest.raises(BalanceFetchError):
            BalanceService.fetch_cex_balance(_config('c1'))

    @patch('services.balances.requests.post')
    def test_not_json_raises(self, mock_post):
        mock_post.return_value = _response(json_error=True)
        with pytest.raises(BalanceFetchError):
            BalanceService.fetch_cex_balance(_config('c1'))


class TestRefresh:
    """Fan-out with per-source isolation."""

    @patch('services.balances.requests.post')
    def test_one_failure_does_not_abort_others(self, mock_post):
        def _post(url, json, timeout):
            if json['platformId'] == 'okx':
                raise requests.ConnectionError('down')
            return _response(payload={'balances': [{'symbol': 'USDT', 'amount': 100, 'value': 100}]})
        mock_post.side_effect = _post

        previous = CexSnapshot(exchanges={'c2': ExchangeHoldings(name='old', total=5)})
        snapshot = BalanceService.refresh_cex(
            [_config('c1'), _config('c2', platform='okx'), _config('c3', platform='bybit', name='Mine')],
            previous=previous,
        )
        assert snapshot.failed == ['c2']
        assert snapshot.exchanges['c1'].total == 100
        assert snapshot.exchanges['c3'].name == 'Mine'
        assert snapshot.exchanges['c2'].name == 'old'
        assert snapshot.total_usd == 205

    def test_no_sources(self):
        assert BalanceService.refresh_cex([]).total_usd == 0

    @patch('services.balances.PriceService.fetch_prices')
    @patch('services.balances.requests.post')
    def test_wallets_priced_from_oracle(self, mock_post, mock_prices):
        mock_post.return_value = _response(payload={
            'chainType': 'evm', 'address': '0xabc',
            'balances': [{'symbol': 'ETH', 'amount': 2}],
        })
        mock_prices.return_value = {'ETH': 3000.0}
        wallet = Wallet(id='w1', name='Main', chain='evm', address='0xabc', chains=['ethereum'])
        snapshot = BalanceService.refresh_wallets([wallet])
        holdings = snapshot.wallets['w1']
        assert holdings.total == 6000
        assert holdings.balances[0].price == 3000
        assert mock_post.call_args.kwargs['json'] == {'chainType': 'evm', 'address': '0xabc', 'chains': ['ethereum']}
        mock_prices.assert_called_once_with({'ETH'})


class TestResourceLocks:
    """Per-source locks are reused and pruned to the configured sources."""

    def test_same_id_shares_a_lock(self):
        locks = ResourceLocks()
        assert locks.get('c1') is locks.get('c1')
        assert locks.get('c1') is not locks.get('c2')

    def test_retain_drops_removed_sources(self):
        locks = ResourceLocks()
        kept = locks.get('c1')
        locks.get('c2')
        locks.retain(['c1'])
        assert len(locks) == 1
        assert locks.get('c1') is kept

    @patch('services.balances.requests.post')
    def test_refresh_prunes_locks_of_removed_configs(self, mock_post):
        mock_post.return_value = _response(payload={'balances': []})
        locks = ResourceLocks()
        with patch('services.balances._cex_locks', locks):
            BalanceService.refresh_cex([_config('c1'), _config('c2')])
            assert len(locks) == 2
            BalanceService.refresh_cex([_config('c2')])
            assert len(locks) == 1
            BalanceService.refresh_cex([])
            assert len(locks) == 0
