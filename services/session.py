"""
Bookkeeper session - owns the application state for one process, loads
it from and saves it to local storage, and exposes the mutations for
every persisted collection.

Transactions are delegated to TransactionStore; the session subscribes to
its change events and saves after each mutation when autosave is on. A
failed save is logged and not raised, so the in-memory change stands and
the last write can be lost if the process dies before the next save.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from config import get_settings
from models import (
    AIConfig,
    AppState,
    CexConfig,
    CexSnapshot,
    ChainSnapshot,
    Coin,
    CoinMetadata,
    FiatTransaction,
    ManualAsset,
    Tag,
    Transaction,
    Wallet,
)
from repositories.storage_repository import StorageRepository
from services.common import to_iso, utc_now
from services.exceptions import BackupFormatError, StateLoadError, TransactionValidationError
from services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)

# Backup "data" keys and the model each entry is validated against
BACKUP_LIST_FIELDS = {
    'cexConfigs': ('cex_configs', CexConfig),
    'transactions': ('transactions', Transaction),
    'fiatTransactions': ('fiat_transactions', FiatTransaction),
    'monitoredCoins': ('monitored_coins', CoinMetadata),
    'wallets': ('wallets', Wallet),
    'tags': ('tags', Tag),
}


class BookkeeperSession:
    """
    Application state owned by the running process.

    Use `BookkeeperSession.load()` to start from persisted state, or pass an
    AppState directly (tests, demos).
    """

    def __init__(
        self,
        state: Optional[AppState] = None,
        storage_key: Optional[str] = None,
        autosave: Optional[bool] = None,
    ):
        settings = get_settings()
        self.storage_key = storage_key or settings.storage_key
        self.version = settings.storage_version
        self.autosave = settings.autosave if autosave is None else autosave
        self.state = state or AppState()
        self.store = TransactionStore(self.state.transactions)
        self.store.subscribe(self._on_store_change)

    # ==================== Persistence ====================

    @classmethod
    def load(cls, storage_key: Optional[str] = None, autosave: Optional[bool] = None) -> "BookkeeperSession":
        """
        Read persisted state. Nothing stored yet, or a document that cannot
        be parsed, means a fresh default state.
        """
        key = storage_key or get_settings().storage_key
        raw = StorageRepository.get(key)
        if raw is None:
            logger.info(f"No stored state under {key!r}, starting fresh")
            return cls(AppState(), storage_key=key, autosave=autosave)
        try:
            state = cls.parse_document(raw)
        except StateLoadError as e:
            logger.error(f"{e}; starting from defaults")
            state = AppState()
        return cls(state, storage_key=key, autosave=autosave)

    @staticmethod
    def parse_document(raw: str) -> AppState:
        """Parse a `{state, version}` envelope. Unknown fields are ignored, missing ones default."""
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateLoadError(f"Stored state is not valid JSON: {e}") from e
        if not isinstance(envelope, dict):
            raise StateLoadError("Stored state must be a JSON object")
        try:
            return AppState.model_validate(envelope.get('state') or {})
        except ValidationError as e:
            raise StateLoadError(f"Stored state is invalid: {e}") from e

    def snapshot(self) -> AppState:
        """Current state with the live transaction collection."""
        return self.state.model_copy(update={'transactions': self.store.all()})

    def to_document(self) -> str:
        return json.dumps({
            'state': self.snapshot().to_json_dict(),
            'version': self.version,
        })

    def save(self) -> bool:
        """Write the state document. Failures are logged, not raised."""
        try:
            StorageRepository.set(self.storage_key, self.to_document())
            logger.debug(f"Saved state under {self.storage_key!r}")
            return True
        except Exception as e:
            logger.error(f"Failed to persist state: {e}")
            return False

    def _on_store_change(self, event: str, ids: List[str]):
        logger.debug(f"Transactions changed ({event}): {len(ids)} record(s)")
        self._changed()

    def _changed(self):
        if self.autosave:
            self.save()

    # ==================== Generic collection helpers ====================

    def _add(self, collection: List[BaseModel], item: BaseModel) -> BaseModel:
        collection.append(item)
        self._changed()
        return item

    def _remove(self, collection: List[BaseModel], item_id: str) -> bool:
        for i, item in enumerate(collection):
            if item.id == item_id:
                del collection[i]
                self._changed()
                return True
        return False

    def _update(
        self,
        collection: List[BaseModel],
        item_id: str,
        fields: Mapping[str, Any],
        model: Type[BaseModel],
    ) -> Optional[BaseModel]:
        for i, item in enumerate(collection):
            if item.id == item_id:
                try:
                    updated = model.model_validate({**item.model_dump(), **fields})
                except ValidationError as e:
                    raise TransactionValidationError(str(e)) from e
                collection[i] = updated
                self._changed()
                return updated
        return None

    # ==================== Price monitor ====================

    def add_monitored_coin(self, coin: CoinMetadata) -> bool:
        """Add a coin to the watch list. Duplicates are ignored."""
        if any(c.id == coin.id for c in self.state.monitored_coins):
            return False
        self._add(self.state.monitored_coins, coin)
        return True

    def remove_monitored_coin(self, coin_id: str) -> bool:
        return self._remove(self.state.monitored_coins, coin_id)

    def update_prices(self, prices: Mapping[str, Coin]):
        """Merge fresh quotes into the price cache."""
        self.state.prices.update(prices)
        self._changed()

    # ==================== Exchanges ====================

    def add_cex_config(self, config: CexConfig) -> CexConfig:
        return self._add(self.state.cex_configs, config)

    def remove_cex_config(self, config_id: str) -> bool:
        return self._remove(self.state.cex_configs, config_id)

    def update_cex_config(self, config_id: str, fields: Mapping[str, Any]) -> Optional[CexConfig]:
        return self._update(self.state.cex_configs, config_id, fields, CexConfig)

    def fee_rate_for(self, platform_id: str, tier: str = "taker") -> Optional[float]:
        """Percent fee rate configured for a platform, if any."""
        for config in self.state.cex_configs:
            if config.platform_id == platform_id:
                rate = config.maker_fee_rate if tier == "maker" else config.taker_fee_rate
                if rate is not None:
                    return rate
        return None

    def set_cex_data(self, snapshot: Optional[CexSnapshot]):
        self.state.cex_data = snapshot
        self._changed()

    def set_cex_exchange_order(self, order: List[str]):
        self.state.cex_exchange_order = list(order)
        self._changed()

    # ==================== Wallets ====================

    def add_wallet(self, wallet: Wallet) -> Wallet:
        return self._add(self.state.wallets, wallet)

    def remove_wallet(self, wallet_id: str) -> bool:
        return self._remove(self.state.wallets, wallet_id)

    def update_wallet(self, wallet_id: str, fields: Mapping[str, Any]) -> Optional[Wallet]:
        return self._update(self.state.wallets, wallet_id, fields, Wallet)

    def set_chain_data(self, snapshot: Optional[ChainSnapshot]):
        self.state.chain_data = snapshot
        self._changed()

    # ==================== Fiat ledger ====================

    def add_fiat_transaction(self, tx: FiatTransaction) -> FiatTransaction:
        return self._add(self.state.fiat_transactions, tx)

    def remove_fiat_transaction(self, tx_id: str) -> bool:
        return self._remove(self.state.fiat_transactions, tx_id)

    def update_fiat_transaction(self, tx_id: str, fields: Mapping[str, Any]) -> Optional[FiatTransaction]:
        return self._update(self.state.fiat_transactions, tx_id, fields, FiatTransaction)

    # ==================== Manual assets / tags / settings ====================

    def add_manual_asset(self, asset: ManualAsset) -> ManualAsset:
        asset = asset.model_copy(update={'symbol': asset.symbol.upper()})
        return self._add(self.state.manual_assets, asset)

    def remove_manual_asset(self, asset_id: str) -> bool:
        return self._remove(self.state.manual_assets, asset_id)

    def update_manual_asset(self, asset_id: str, fields: Mapping[str, Any]) -> Optional[ManualAsset]:
        fields = dict(fields)
        if fields.get('symbol'):
            fields['symbol'] = fields['symbol'].upper()
        return self._update(self.state.manual_assets, asset_id, fields, ManualAsset)

    def add_tag(self, tag: Tag) -> Tag:
        return self._add(self.state.tags, tag)

    def remove_tag(self, tag_id: str) -> bool:
        return self._remove(self.state.tags, tag_id)

    def set_ai_config(self, config: AIConfig):
        self.state.ai_config = config
        self._changed()

    def toggle_hide_amounts(self) -> bool:
        self.state.hide_amounts = not self.state.hide_amounts
        self._changed()
        return self.state.hide_amounts

    # ==================== Backup ====================

    def export_backup(self) -> Dict[str, Any]:
        """Backup document with every user-entered collection (API keys included)."""
        snapshot = self.snapshot()

        def _dump(items):
            return [item.to_json_dict() for item in items]

        return {
            'version': get_settings().backup_version,
            'exportDate': to_iso(utc_now()),
            'data': {
                'cexConfigs': _dump(snapshot.cex_configs),
                'transactions': _dump(snapshot.transactions),
                'fiatTransactions': _dump(snapshot.fiat_transactions),
                'monitoredCoins': _dump(snapshot.monitored_coins),
                'wallets': _dump(snapshot.wallets),
                'tags': _dump(snapshot.tags),
                'aiConfig': snapshot.ai_config.to_json_dict(),
                'cexExchangeOrder': list(snapshot.cex_exchange_order),
            },
        }

    def export_backup_json(self) -> str:
        return json.dumps(self.export_backup(), indent=2, ensure_ascii=False)

    @staticmethod
    def parse_backup(raw: str) -> Dict[str, Any]:
        """
        Validate a backup document and return the replacement field values.

        Raises:
            BackupFormatError: invalid JSON, missing version/data, or invalid records
        """
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BackupFormatError(f"Backup is not valid JSON: {e}") from e
        if not isinstance(document, dict) or not document.get('version') or not isinstance(document.get('data'), dict):
            raise BackupFormatError("Backup must contain 'version' and 'data'")

        data = document['data']
        fields: Dict[str, Any] = {}
        try:
            for key, (attr, model) in BACKUP_LIST_FIELDS.items():
                fields[attr] = [model.model_validate(item) for item in (data.get(key) or [])]
            fields['ai_config'] = AIConfig.model_validate(data.get('aiConfig') or {})
            fields['cex_exchange_order'] = [str(x) for x in (data.get('cexExchangeOrder') or [])]
        except (ValidationError, TypeError) as e:
            raise BackupFormatError(f"Backup contains invalid records: {e}") from e
        return fields

    def import_backup(self, raw: str) -> bool:
        """
        Replace the backed-up collections wholesale. Fields missing from the
        file are reset to empty/default rather than merged.

        Returns:
            True on success; False (state untouched) if the document is invalid
        """
        try:
            fields = self.parse_backup(raw)
        except BackupFormatError as e:
            logger.error(f"Backup import failed: {e}")
            return False

        transactions = fields.pop('transactions')
        for attr, value in fields.items():
            setattr(self.state, attr, value)
        self.store.replace_all(transactions, notify=False)
        logger.info(f"Imported backup with {len(transactions)} transactions")
        self._changed()
        return True
