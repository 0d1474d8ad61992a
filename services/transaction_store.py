"""
Transaction store - the lifecycle of trade legs.
Create (form entry or import), soft-delete, restore, hard-delete and
update, plus statistics over the active set.

Legs live in an id-indexed arena; pairs are derived from it on demand,
so a deleted partner can never leave a dangling object reference behind.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from models import Transaction, TransactionPair, TransactionType, new_id
from services.common import normalize_pair, normalize_platform, parse_datetime, parse_number, to_iso
from services.exceptions import TransactionValidationError
from services.fills import aggregate_fills, to_fill_models
from services.filters import PairFilter, filter_pairs
from services.pairing import build_pairs, build_trash_rows
from services.pnl import calculate_leg_pnl, calculate_import_pnl

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, List[str]], None]


@dataclass
class LegInput:
    """
    One side of a trade entry as typed by the user.

    Numbers may be strings. When `fills` is not None the leg is in
    multi-fill mode and amount/price are derived from the fills; when
    `fee_rate` is set the fee is that percentage of the leg value.
    """
    date: str
    amount: Any = None
    price: Any = None
    fee: Any = None
    fee_rate: Any = None
    fills: Optional[List[Mapping[str, Any]]] = None
    notes: str = ""
    link: str = ""
    type: str = TransactionType.BUY.value

    @property
    def is_multi_fill(self) -> bool:
        return self.fills is not None

    def resolve(self) -> Tuple[Optional[float], Optional[float], float]:
        """Return (amount, price, fee) after fill aggregation and fee-rate mode."""
        amount = parse_number(self.amount)
        price = parse_number(self.price)
        if self.is_multi_fill:
            agg = aggregate_fills(self.fills)
            if not agg.is_empty:
                amount = agg.total_amount
                price = agg.weighted_average_price

        rate = parse_number(self.fee_rate)
        if rate is not None and amount is not None and price is not None:
            fee = amount * price * rate / 100
        else:
            fee = parse_number(self.fee) or 0.0
        return amount, price, fee

    def is_valid(self) -> bool:
        amount, price, _ = self.resolve()
        return bool(amount and amount > 0 and price and price > 0)


@dataclass
class TradeEntry:
    """
    One form submission: a buy leg and an optional sell leg.

    `buy_id` / `sell_id` are set when editing existing legs; those ids are
    reused so the records are replaced in place.
    """
    pair: str
    platform: str
    buy: LegInput
    sell: Optional[LegInput] = None
    buy_id: Optional[str] = None
    sell_id: Optional[str] = None


@dataclass
class BulkResult:
    """Outcome of a bulk operation; each id is handled independently."""
    succeeded: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.failed


@dataclass
class TransactionStats:
    """Aggregates over active legs."""
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    total_fees: float = 0.0
    total_pnl: float = 0.0
    active_count: int = 0
    deleted_count: int = 0


class TransactionStore:
    """
    Mutation API over the transaction collection.

    Every mutating call is synchronous and notifies subscribers once
    with (event name, affected ids) after the collection has changed.
    """

    def __init__(self, transactions: Optional[Iterable[Transaction]] = None):
        self._arena: Dict[str, Transaction] = {}
        self._listeners: List[ChangeListener] = []
        for tx in transactions or []:
            if tx.id in self._arena:
                logger.warning(f"Duplicate transaction id {tx.id} in loaded data, keeping the last one")
            self._arena[tx.id] = tx

    # ==================== Events ====================

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def _emit(self, event: str, ids: List[str]):
        if not ids:
            return
        for listener in list(self._listeners):
            try:
                listener(event, ids)
            except Exception as e:
                logger.error(f"Change listener failed on {event}: {e}")

    # ==================== Reads ====================

    def __len__(self) -> int:
        return len(self._arena)

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._arena

    def get(self, transaction_id: str) -> Optional[Transaction]:
        return self._arena.get(transaction_id)

    def all(self) -> List[Transaction]:
        """Every leg, deleted ones included, in insertion order."""
        return list(self._arena.values())

    def active(self) -> List[Transaction]:
        return [tx for tx in self._arena.values() if not tx.is_deleted]

    def deleted(self) -> List[Transaction]:
        return [tx for tx in self._arena.values() if tx.is_deleted]

    def pairs(self) -> List[TransactionPair]:
        """Display pairs over the active legs."""
        return build_pairs(self._arena.values())

    def trash(self) -> List[TransactionPair]:
        """Recycle-bin rows (soft-deleted legs, unpaired)."""
        return build_trash_rows(self._arena.values())

    def query(self, pair_filter: Optional[PairFilter] = None, now: Optional[datetime] = None) -> List[TransactionPair]:
        """Display pairs narrowed by a filter."""
        pairs = self.pairs()
        if pair_filter is None:
            return pairs
        return filter_pairs(pairs, pair_filter, now)

    def statistics(self) -> TransactionStats:
        """Recomputed from the current active set on every call."""
        stats = TransactionStats()
        for tx in self._arena.values():
            if tx.is_deleted:
                stats.deleted_count += 1
                continue
            stats.active_count += 1
            if tx.is_buy:
                stats.buy_volume += tx.amount * tx.price
            elif tx.is_sell:
                stats.sell_volume += tx.amount * tx.price
            stats.total_fees += tx.fee
            if tx.pnl is not None:
                stats.total_pnl += tx.pnl
        return stats

    def resolve_edit_target(self, transaction_id: str) -> Tuple[Optional[Transaction], Optional[Transaction]]:
        """
        Legs to open in the edit form: (primary, related).

        Opening a Sell that some Buy links to switches the primary leg to
        that Buy. A link to a missing record yields related=None.
        """
        tx = self.get(transaction_id)
        if tx is None:
            return None, None
        if tx.related_transaction_id:
            related = self.get(tx.related_transaction_id)
            if tx.is_sell and related is not None and related.is_buy:
                return related, tx
            return tx, related
        parent = next(
            (t for t in self._arena.values() if t.related_transaction_id == transaction_id),
            None,
        )
        if parent is not None:
            return parent, tx
        return tx, None

    def edit_entry(self, transaction_id: str) -> Optional[TradeEntry]:
        """Prefilled TradeEntry for editing the pair a leg belongs to."""
        primary, related = self.resolve_edit_target(transaction_id)
        if primary is None:
            return None

        def _leg(tx: Transaction) -> LegInput:
            return LegInput(
                date=tx.date,
                amount=tx.amount,
                price=tx.price,
                fee=tx.fee,
                fills=[f.model_dump() for f in tx.fills] if tx.fills else None,
                notes=tx.notes or "",
                link=tx.link or "",
                type=tx.type,
            )

        return TradeEntry(
            pair=primary.pair,
            platform=primary.platform,
            buy=_leg(primary),
            sell=_leg(related) if related is not None else None,
            buy_id=primary.id,
            sell_id=related.id if related is not None else None,
        )

    # ==================== Create / edit ====================

    def replace_all(self, transactions: Iterable[Transaction], notify: bool = True):
        """Swap the whole collection (backup restore). Listeners are kept."""
        self._arena = {tx.id: tx for tx in transactions}
        if notify:
            self._emit("replace", list(self._arena))

    def add(self, transaction: Transaction) -> Transaction:
        """Insert a fully formed leg. Ids must be unique."""
        if transaction.id in self._arena:
            raise TransactionValidationError(f"Transaction {transaction.id} already exists")
        self._arena[transaction.id] = transaction
        logger.debug(f"Added transaction {transaction.id}")
        self._emit("add", [transaction.id])
        return transaction

    def build_entry(self, entry: TradeEntry) -> List[Transaction]:
        """
        Turn a trade entry into one or two legs without touching the store.

        Raises:
            TransactionValidationError: missing pair/platform, no valid leg,
                or a leg that fails record validation
        """
        pair = normalize_pair(entry.pair)
        platform = normalize_platform(entry.platform)
        if not pair or not platform:
            raise TransactionValidationError("Pair and platform are required")

        buy_tx: Optional[Transaction] = None
        sell_tx: Optional[Transaction] = None

        try:
            if entry.buy is not None and entry.buy.is_valid():
                amount, price, fee = entry.buy.resolve()
                buy_date = to_iso(entry.buy.date)
                buy_tx = Transaction(
                    id=entry.buy_id or new_id(),
                    date=buy_date,
                    type=entry.buy.type or TransactionType.BUY.value,
                    platform=platform,
                    pair=pair,
                    amount=amount,
                    price=price,
                    fee=fee,
                    notes=entry.buy.notes,
                    link=entry.buy.link,
                    fills=(to_fill_models(entry.buy.fills, buy_date) or None) if entry.buy.is_multi_fill else None,
                )

            if entry.sell is not None and entry.sell.is_valid():
                amount, price, fee = entry.sell.resolve()
                sell_date = to_iso(entry.sell.date)
                # a sell-only entry carries the main form's notes/link
                source = entry.sell if buy_tx is not None else entry.buy
                sell_tx = Transaction(
                    id=entry.sell_id or new_id(),
                    date=sell_date,
                    type=TransactionType.SELL.value,
                    platform=platform,
                    pair=pair,
                    amount=amount,
                    price=price,
                    fee=fee,
                    notes=source.notes if source else "",
                    link=source.link if source else "",
                    fills=(to_fill_models(entry.sell.fills, sell_date) or None) if entry.sell.is_multi_fill else None,
                )
                if buy_tx is not None:
                    result = calculate_leg_pnl(buy_tx, sell_tx)
                    sell_tx.pnl = result.pnl
                    sell_tx.apr = result.apr
                    sell_tx.related_transaction_id = buy_tx.id
                    buy_tx.related_transaction_id = sell_tx.id
        except ValidationError as e:
            raise TransactionValidationError(str(e)) from e
        except ValueError as e:
            raise TransactionValidationError(f"Invalid date: {e}") from e

        legs = [tx for tx in (buy_tx, sell_tx) if tx is not None]
        if not legs:
            raise TransactionValidationError(
                "Enter a valid amount and price for at least one side (Buy or Sell)"
            )
        return legs

    def save_entry(self, entry: TradeEntry) -> List[Transaction]:
        """
        Create or edit a pair from a trade entry.

        New legs are inserted; legs whose id already exists are replaced in
        place. When editing, a previously existing leg the entry no longer
        produces is soft-deleted.

        Returns:
            The saved legs (buy first)
        """
        legs = self.build_entry(entry)
        produced = {tx.id for tx in legs}
        changed: List[str] = []

        for stale_id in (entry.buy_id, entry.sell_id):
            if stale_id and stale_id not in produced and stale_id in self._arena:
                logger.info(f"Moving orphaned leg {stale_id} to the recycle bin")
                self._arena[stale_id] = self._arena[stale_id].model_copy(update={"is_deleted": True})
                changed.append(stale_id)

        for tx in legs:
            if tx.id in self._arena:
                logger.info(f"Updating transaction {tx.id}")
            else:
                logger.info(f"Adding transaction {tx.id}")
            self._arena[tx.id] = tx
            changed.append(tx.id)

        self._emit("save", changed)
        return legs

    def update(self, transaction_id: str, fields: Mapping[str, Any]) -> Optional[Transaction]:
        """
        Replace fields of a leg in place.

        pnl/apr are not recomputed, even when amount or price change.
        Accepts snake_case or camelCase field names.

        Returns:
            The updated leg, or None if the id is unknown
        """
        current = self._arena.get(transaction_id)
        if current is None:
            return None

        aliases = {info.alias: name for name, info in Transaction.model_fields.items() if info.alias}
        changes = {aliases.get(key, key): value for key, value in fields.items()}
        if changes.get("id", transaction_id) != transaction_id:
            raise TransactionValidationError("Transaction id cannot be changed")
        if "pair" in changes and changes["pair"] is not None:
            changes["pair"] = normalize_pair(changes["pair"])

        try:
            updated = Transaction.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            raise TransactionValidationError(str(e)) from e

        self._arena[transaction_id] = updated
        self._emit("update", [transaction_id])
        return updated

    # ==================== Lifecycle ====================

    def _set_deleted(self, transaction_id: str, deleted: bool) -> bool:
        tx = self._arena.get(transaction_id)
        if tx is None:
            return False
        self._arena[transaction_id] = tx.model_copy(update={"is_deleted": deleted})
        return True

    def soft_delete(self, transaction_id: str) -> bool:
        """Move one leg to the recycle bin. Its partner is untouched."""
        if not self._set_deleted(transaction_id, True):
            logger.warning(f"Soft delete: transaction {transaction_id} not found")
            return False
        self._emit("soft_delete", [transaction_id])
        return True

    def restore(self, transaction_id: str) -> bool:
        """Bring a leg back from the recycle bin."""
        if not self._set_deleted(transaction_id, False):
            logger.warning(f"Restore: transaction {transaction_id} not found")
            return False
        self._emit("restore", [transaction_id])
        return True

    def hard_delete(self, transaction_id: str) -> bool:
        """Remove a leg permanently. Does not cascade; partners keep their link."""
        if self._arena.pop(transaction_id, None) is None:
            logger.warning(f"Hard delete: transaction {transaction_id} not found")
            return False
        self._emit("hard_delete", [transaction_id])
        return True

    def soft_delete_pair(self, transaction_id: str) -> List[str]:
        """
        Move a leg, its linked partner and any leg linking to it to the
        recycle bin.

        Returns:
            Ids that were soft-deleted
        """
        tx = self._arena.get(transaction_id)
        if tx is None:
            return []
        targets = [transaction_id]
        if tx.related_transaction_id and tx.related_transaction_id in self._arena:
            targets.append(tx.related_transaction_id)
        targets.extend(
            t.id for t in self._arena.values()
            if t.related_transaction_id == transaction_id and t.id not in targets
        )
        for target in targets:
            self._set_deleted(target, True)
        self._emit("soft_delete", targets)
        return targets

    def _bulk(self, event: str, ids: Iterable[str], action: Callable[[str], bool]) -> BulkResult:
        result = BulkResult()
        for transaction_id in ids:
            try:
                if action(transaction_id):
                    result.succeeded.append(transaction_id)
                else:
                    result.missing.append(transaction_id)
            except Exception as e:
                logger.error(f"Bulk {event} failed for {transaction_id}: {e}")
                result.failed[transaction_id] = str(e)
        self._emit(event, result.succeeded)
        return result

    def bulk_soft_delete(self, ids: Iterable[str]) -> BulkResult:
        return self._bulk("soft_delete", ids, lambda i: self._set_deleted(i, True))

    def bulk_restore(self, ids: Iterable[str]) -> BulkResult:
        return self._bulk("restore", ids, lambda i: self._set_deleted(i, False))

    def bulk_hard_delete(self, ids: Iterable[str]) -> BulkResult:
        return self._bulk("hard_delete", ids, lambda i: self._arena.pop(i, None) is not None)

    # ==================== Import ====================

    def import_transactions(self, transactions: Iterable[Transaction]) -> List[Transaction]:
        """
        Add imported legs, auto-pairing them first.

        Within each trading pair, buys and sells are sorted by date and
        matched by position; matched legs are cross-linked and the sell gets
        fee-inclusive pnl/apr. Unmatched legs are added as they are.

        Returns:
            The legs added, in insertion order
        """
        incoming = list(transactions)
        for tx in incoming:
            if tx.id in self._arena:
                raise TransactionValidationError(f"Transaction {tx.id} already exists")

        buys: Dict[str, List[Transaction]] = {}
        sells: Dict[str, List[Transaction]] = {}
        standalone: List[Transaction] = []
        for tx in incoming:
            if tx.is_buy:
                buys.setdefault(tx.pair, []).append(tx)
            elif tx.is_sell:
                sells.setdefault(tx.pair, []).append(tx)
            else:
                standalone.append(tx)

        ordered: List[Transaction] = []
        for pair, pair_buys in buys.items():
            pair_sells = sells.pop(pair, [])
            pair_buys.sort(key=lambda t: parse_datetime(t.date))
            pair_sells.sort(key=lambda t: parse_datetime(t.date))

            for i in range(max(len(pair_buys), len(pair_sells))):
                buy = pair_buys[i] if i < len(pair_buys) else None
                sell = pair_sells[i] if i < len(pair_sells) else None
                if buy is not None and sell is not None:
                    result = calculate_import_pnl(buy, sell)
                    buy = buy.model_copy(update={"related_transaction_id": sell.id})
                    sell = sell.model_copy(update={
                        "related_transaction_id": buy.id,
                        "pnl": result.pnl,
                        "apr": result.apr,
                    })
                    ordered.extend([buy, sell])
                elif buy is not None:
                    ordered.append(buy)
                else:
                    ordered.append(sell)

        for pair_sells in sells.values():
            ordered.extend(pair_sells)
        ordered.extend(standalone)

        for tx in ordered:
            self._arena[tx.id] = tx
        logger.info(f"Imported {len(ordered)} transactions")
        self._emit("import", [tx.id for tx in ordered])
        return ordered
