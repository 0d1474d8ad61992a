"""
Pairing engine - reconstructs buy/sell display pairs from a flat
collection of legs linked through related_transaction_id.
"""

import logging
from typing import Dict, Iterable, List, Optional

from models import Transaction, TransactionPair
from services.common import parse_datetime

logger = logging.getLogger(__name__)


def sort_by_date_desc(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Newest first. Ties keep their original relative order."""
    return sorted(transactions, key=lambda tx: parse_datetime(tx.date), reverse=True)


def _active_partner(
    tx: Transaction,
    index: Dict[str, Transaction],
    wanted_type: str,
) -> Optional[Transaction]:
    """The linked leg, if it exists, is not deleted and has the wanted type."""
    if not tx.related_transaction_id:
        return None
    related = index.get(tx.related_transaction_id)
    if related is None:
        logger.debug(f"Transaction {tx.id} links to missing record {tx.related_transaction_id}")
        return None
    if related.is_deleted or related.type != wanted_type:
        return None
    return related


def build_pairs(transactions: Iterable[Transaction]) -> List[TransactionPair]:
    """
    Build display pairs from the active (non-deleted) legs.

    Legs are visited newest first. A Buy anchors a pair and pulls in its
    linked active Sell; a Sell not yet consumed anchors a pair, keeps its own
    pnl/apr and, when its linked Buy is active, takes the Buy's date,
    platform and pair for display. Other types are shown as buy-side-only rows.
    Orphaned links are ignored.

    Args:
        transactions: All legs, deleted ones included (they are skipped)

    Returns:
        Pairs in the date-desc order of their anchor leg
    """
    all_txs = list(transactions)
    index = {tx.id: tx for tx in all_txs}
    active = [tx for tx in all_txs if not tx.is_deleted]

    processed = set()
    result: List[TransactionPair] = []

    for tx in sort_by_date_desc(active):
        if tx.id in processed:
            continue

        row = TransactionPair(id=tx.id, date=tx.date, platform=tx.platform, pair=tx.pair)

        if tx.is_buy:
            row.buy = tx
            processed.add(tx.id)
            sell = _active_partner(tx, index, "Sell")
            if sell is not None:
                row.sell = sell
                row.pnl = sell.pnl
                row.apr = sell.apr
                processed.add(sell.id)
        elif tx.is_sell:
            row.sell = tx
            row.pnl = tx.pnl
            row.apr = tx.apr
            processed.add(tx.id)
            buy = _active_partner(tx, index, "Buy")
            if buy is not None:
                row.buy = buy
                row.date = buy.date
                row.platform = buy.platform
                row.pair = buy.pair
                processed.add(buy.id)
        else:
            row.buy = tx
            processed.add(tx.id)

        result.append(row)

    return result


def build_trash_rows(transactions: Iterable[Transaction]) -> List[TransactionPair]:
    """
    Flat, date-desc list of soft-deleted legs for the recycle bin.
    No pairing and no pnl/apr on the rows.
    """
    deleted = [tx for tx in transactions if tx.is_deleted]
    return [
        TransactionPair(
            id=tx.id,
            date=tx.date,
            platform=tx.platform,
            pair=tx.pair,
            buy=tx if tx.is_buy else None,
            sell=tx if tx.is_sell else None,
        )
        for tx in sort_by_date_desc(deleted)
    ]
