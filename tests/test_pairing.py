"""
Tests for the pairing engine and the recycle-bin rows.
"""

from services.pairing import build_pairs, build_trash_rows


class TestBuildPairs:
    """Display pairs over active legs."""

    def test_linked_legs_make_one_pair(self, linked_pair):
        pairs = build_pairs(list(linked_pair))
        assert len(pairs) == 1
        pair = pairs[0]
        assert pair.buy.id == 'buy-1'
        assert pair.sell.id == 'sell-1'
        assert pair.pnl == 20.0
        assert pair.apr == 730.0
        assert pair.is_closed

    def test_sell_anchor_takes_buy_display_fields(self, make_tx):
        """A Sell newer than its Buy anchors the row but shows the Buy's date."""
        buy = make_tx(id='b', related_transaction_id='s', platform='okx')
        sell = make_tx(id='s', type='Sell', date='2025-02-01T00:00:00.000Z',
                       related_transaction_id='b', pnl=5.0, apr=1.0, platform='okx')
        pairs = build_pairs([buy, sell])
        assert len(pairs) == 1
        assert pairs[0].id == 's'
        assert pairs[0].date == buy.date
        assert pairs[0].platform == 'okx'

    def test_every_active_leg_appears_exactly_once(self, make_tx, linked_pair):
        legs = list(linked_pair) + [
            make_tx(id='open-buy', date='2025-03-01T00:00:00.000Z'),
            make_tx(id='lone-sell', type='Sell', date='2025-02-01T00:00:00.000Z'),
        ]
        pairs = build_pairs(legs)
        seen = [leg_id for p in pairs for leg_id in p.leg_ids]
        assert sorted(seen) == sorted(tx.id for tx in legs)
        assert len(seen) == len(set(seen))

    def test_deleted_partner_leaves_half_pair(self, linked_pair):
        buy, sell = linked_pair
        sell = sell.model_copy(update={'is_deleted': True})
        pairs = build_pairs([buy, sell])
        assert len(pairs) == 1
        assert pairs[0].buy.id == 'buy-1'
        assert pairs[0].sell is None
        assert pairs[0].pnl is None

    def test_orphaned_link_is_ignored(self, make_tx):
        sell = make_tx(id='s', type='Sell', related_transaction_id='gone', pnl=3.0)
        pairs = build_pairs([sell])
        assert len(pairs) == 1
        assert pairs[0].buy is None
        assert pairs[0].pnl == 3.0

    def test_pairs_sorted_newest_first(self, make_tx):
        legs = [
            make_tx(id='a', date='2025-01-01T00:00:00.000Z'),
            make_tx(id='c', date='2025-03-01T00:00:00.000Z'),
            make_tx(id='b', date='2025-02-01T00:00:00.000Z'),
        ]
        assert [p.id for p in build_pairs(legs)] == ['c', 'b', 'a']

    def test_link_to_same_type_does_not_pair(self, make_tx):
        a = make_tx(id='a', related_transaction_id='b')
        b = make_tx(id='b', related_transaction_id='a', date='2025-01-02T00:00:00.000Z')
        assert len(build_pairs([a, b])) == 2


class TestTrashRows:

    def test_only_deleted_unpaired(self, linked_pair, make_tx):
        buy, sell = linked_pair
        buy = buy.model_copy(update={'is_deleted': True})
        sell = sell.model_copy(update={'is_deleted': True})
        rows = build_trash_rows([buy, sell, make_tx(id='live')])
        assert [r.id for r in rows] == ['sell-1', 'buy-1']
        assert all(r.pnl is None and r.apr is None for r in rows)
        assert rows[0].buy is None and rows[0].sell.id == 'sell-1'
