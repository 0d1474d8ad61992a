"""
Tests for persisted state, collection mutations and backups.
"""

import json
from unittest.mock import patch

import pytest

from models import AppState, CexConfig, CoinMetadata, FiatTransaction, ManualAsset, Tag, Wallet
from repositories.storage_repository import StorageRepository
from services.exceptions import TransactionValidationError
from services.session import BookkeeperSession
from services.transaction_store import LegInput, TradeEntry


def _save_trade(session):
    return session.store.save_entry(TradeEntry(
        pair='BTC/USDT',
        platform='binance',
        buy=LegInput(date='2025-01-01T00:00:00.000Z', amount='1', price='100'),
        sell=LegInput(date='2025-01-11T00:00:00.000Z', amount='1', price='120'),
    ))


class TestPersistence:
    """Load/save through the storage table."""

    def test_fresh_load_has_defaults(self):
        session = BookkeeperSession.load()
        assert [c.symbol for c in session.state.monitored_coins] == ['BTC', 'ETH', 'SOL']
        assert session.store.all() == []

    def test_mutation_is_persisted(self):
        session = BookkeeperSession.load()
        buy, sell = _save_trade(session)
        reloaded = BookkeeperSession.load()
        assert {tx.id for tx in reloaded.store.all()} == {buy.id, sell.id}
        assert reloaded.store.get(sell.id).pnl == pytest.approx(20)

    def test_document_envelope_uses_camel_case(self):
        session = BookkeeperSession.load()
        _save_trade(session)
        document = json.loads(StorageRepository.get(session.storage_key))
        assert document['version'] == 0
        assert 'monitoredCoins' in document['state']
        tx = document['state']['transactions'][0]
        assert 'isDeleted' in tx and 'relatedTransactionId' in tx

    def test_soft_delete_survives_reload(self):
        session = BookkeeperSession.load()
        buy, sell = _save_trade(session)
        session.store.soft_delete(sell.id)
        reloaded = BookkeeperSession.load()
        assert reloaded.store.get(sell.id).is_deleted
        assert [r.id for r in reloaded.store.trash()] == [sell.id]

    def test_unknown_and_missing_fields(self):
        StorageRepository.set('crypto-bookkeeper-storage', json.dumps({
            'state': {'hideAmounts': True, 'somethingNew': 1}, 'version': 0,
        }))
        session = BookkeeperSession.load()
        assert session.state.hide_amounts is True
        assert session.state.transactions == []

    def test_corrupt_document_starts_fresh(self):
        StorageRepository.set('crypto-bookkeeper-storage', '{not json')
        session = BookkeeperSession.load()
        assert session.store.all() == []

    def test_failed_save_keeps_memory_state(self):
        session = BookkeeperSession.load()
        with patch.object(StorageRepository, 'set', side_effect=RuntimeError('disk full')):
            buy, _ = _save_trade(session)
        assert session.store.get(buy.id) is not None
        assert BookkeeperSession.load().store.all() == []

    def test_autosave_off(self):
        session = BookkeeperSession.load(autosave=False)
        _save_trade(session)
        assert BookkeeperSession.load().store.all() == []
        assert session.save()
        assert len(BookkeeperSession.load().store.all()) == 2


class TestCollections:

    def test_monitored_coins_no_duplicates(self):
        session = BookkeeperSession(AppState(), autosave=False)
        assert not session.add_monitored_coin(CoinMetadata(id='bitcoin', symbol='BTC', name='Bitcoin'))
        assert session.add_monitored_coin(CoinMetadata(id='sui', symbol='SUI', name='Sui'))
        assert session.remove_monitored_coin('bitcoin')
        assert [c.id for c in session.state.monitored_coins] == ['ethereum', 'solana', 'sui']

    def test_cex_config_and_fee_rate(self):
        session = BookkeeperSession(AppState(), autosave=False)
        config = session.add_cex_config(CexConfig(platform_id='binance', api_key='k', api_secret='s',
                                                  maker_fee_rate=0.1, taker_fee_rate=0.075))
        assert session.fee_rate_for('binance') == 0.075
        assert session.fee_rate_for('binance', 'maker') == 0.1
        assert session.fee_rate_for('okx') is None
        session.update_cex_config(config.id, {'name': 'Main'})
        assert session.state.cex_configs[0].name == 'Main'
        assert session.remove_cex_config(config.id)
        assert not session.remove_cex_config(config.id)

    def test_manual_asset_symbol_upper_cased(self):
        session = BookkeeperSession(AppState(), autosave=False)
        asset = session.add_manual_asset(ManualAsset(exchange='Kraken', symbol='eth', amount=2))
        assert asset.symbol == 'ETH'
        updated = session.update_manual_asset(asset.id, {'symbol': 'sol'})
        assert updated.symbol == 'SOL'

    def test_wallet_fiat_tag_and_toggle(self):
        session = BookkeeperSession(AppState(), autosave=False)
        wallet = session.add_wallet(Wallet(name='Main', chain='evm', address='0xabc'))
        session.add_fiat_transaction(FiatTransaction(date='2025-01-01', type='Deposit', amount=100, platform='okx'))
        session.add_tag(Tag(name='long'))
        assert session.update_wallet(wallet.id, {'name': 'Cold'}).name == 'Cold'
        assert session.update_wallet('missing', {'name': 'x'}) is None
        assert session.toggle_hide_amounts() is True
        assert len(session.state.fiat_transactions) == 1


class TestBackup:

    def test_round_trip_replaces_state(self):
        source = BookkeeperSession.load()
        _save_trade(source)
        source.add_tag(Tag(name='swing'))
        document = source.export_backup_json()
        payload = json.loads(document)
        assert payload['version'] == '1.0'
        assert set(payload['data']) >= {'cexConfigs', 'transactions', 'fiatTransactions', 'monitoredCoins',
                                        'wallets', 'tags', 'aiConfig', 'cexExchangeOrder'}

        target = BookkeeperSession(AppState(), storage_key='other', autosave=True)
        target.add_wallet(Wallet(name='w', chain='evm', address='0x1'))
        assert target.import_backup(document)
        assert len(target.store.all()) == 2
        assert [t.name for t in target.state.tags] == ['swing']
        assert target.state.wallets == []
        assert len(BookkeeperSession.load(storage_key='other').store.all()) == 2

    @pytest.mark.parametrize('raw', ['not json', '{"data": {}}', '{"version": "1.0"}',
                                     '{"version": "1.0", "data": {"transactions": [{"amount": 1}]}}',
                                     '{"version": "1.0", "data": {"transactions": [{"date": "2025/01/15", "type": "Buy"}]}}'])
    def test_invalid_backup_leaves_state(self, raw):
        session = BookkeeperSession.load()
        buy, _ = _save_trade(session)
        assert not session.import_backup(raw)
        assert session.store.get(buy.id) is not None

    def test_rejected_dates_keep_listing_working(self):
        """A backup leg with a non-ISO date is refused, so pairs can still be built."""
        session = BookkeeperSession.load()
        _save_trade(session)
        raw = json.dumps({'version': '1.0', 'data': {'transactions': [
            {'id': 'x', 'date': '2025/01/15', 'type': 'Buy', 'pair': 'BTC/USDT', 'amount': 1, 'price': 1},
        ]}})
        assert not session.import_backup(raw)
        assert len(session.store.pairs()) == 1


class TestStoredDates:

    def test_unparseable_stored_date_falls_back_to_defaults(self):
        StorageRepository.set('crypto-bookkeeper-storage', json.dumps({'state': {'transactions': [
            {'id': 'x', 'date': 'yesterday', 'type': 'Buy', 'pair': 'BTC/USDT', 'amount': 1, 'price': 1},
        ]}, 'version': 0}))
        session = BookkeeperSession.load()
        assert session.store.all() == []
        assert session.store.pairs() == []

    def test_update_with_bad_date_is_rejected(self):
        session = BookkeeperSession.load()
        buy, _ = _save_trade(session)
        with pytest.raises(TransactionValidationError):
            session.store.update(buy.id, {'date': '15/01/2025'})
        assert session.store.get(buy.id).date == buy.date
