"""
Balance service for exchange accounts and on-chain wallets.

Talks to the balance proxy over HTTP, normalizes the heterogeneous rows it
returns into Balance records, and fans out over every configured source
with a thread pool. One source failing never aborts the others.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

import requests

from config import get_settings
from models import (
    Balance,
    CexConfig,
    CexSnapshot,
    ChainSnapshot,
    ExchangeHoldings,
    Wallet,
    WalletHoldings,
)
from services.common import parse_number
from services.exceptions import BalanceFetchError
from services.prices import PriceService

logger = logging.getLogger(__name__)


@dataclass
class CexBalanceResult:
    """Successful exchange lookup."""
    source_id: str
    platform: str
    balances: List[Balance]
    kind: Literal['cex'] = 'cex'

    @property
    def total(self) -> float:
        return sum(b.value for b in self.balances)


@dataclass
class ChainBalanceResult:
    """Successful wallet lookup."""
    source_id: str
    chain_type: str
    address: str
    balances: List[Balance]
    reported_total: Optional[float] = None
    kind: Literal['chain'] = 'chain'

    @property
    def total(self) -> float:
        return sum(b.value for b in self.balances)


@dataclass
class FetchFailure:
    """A lookup that failed; carries the reason for display."""
    source_id: str
    error: str
    kind: Literal['failure'] = 'failure'


FetchResult = Union[CexBalanceResult, ChainBalanceResult, FetchFailure]


@dataclass
class RefreshReport:
    results: List[FetchResult] = field(default_factory=list)

    @property
    def failures(self) -> List[FetchFailure]:
        return [r for r in self.results if r.kind == 'failure']

    @property
    def succeeded(self) -> List[FetchResult]:
        return [r for r in self.results if r.kind != 'failure']


class ResourceLocks:
    """
    One lock per exchange config or wallet, so overlapping refreshes of the
    same source run one after another. Locks for sources that are no longer
    configured are dropped on the next refresh.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, resource_id: str) -> threading.Lock:
        with self._guard:
            if resource_id not in self._locks:
                self._locks[resource_id] = threading.Lock()
            return self._locks[resource_id]

    def retain(self, resource_ids: Iterable[str]):
        keep = set(resource_ids)
        with self._guard:
            for resource_id in [r for r in self._locks if r not in keep]:
                del self._locks[resource_id]


_cex_locks = ResourceLocks()
_wallet_locks = ResourceLocks()


def normalize_balance(row: Mapping[str, Any], default_type: Optional[str] = None) -> Optional[Balance]:
    """
    Map one proxy row onto a Balance.

    Accepts `symbol` or `coin` for the asset, `amount`/`total`/`free` for the
    quantity. `value` falls back to amount * price. Rows without a symbol or
    a numeric amount are dropped.
    """
    if not isinstance(row, Mapping):
        return None
    symbol = row.get('symbol') or row.get('coin') or row.get('currency')
    if not symbol:
        return None

    amount = None
    for key in ('amount', 'total', 'free'):
        amount = parse_number(row.get(key))
        if amount is not None:
            break
    if amount is None:
        return None

    price = parse_number(row.get('price')) or 0.0
    value = parse_number(row.get('value'))
    if value is None:
        value = amount * price

    return Balance(
        symbol=str(symbol).upper(),
        amount=amount,
        type=row.get('type') or default_type,
        price=price,
        value=value,
    )


def _normalize_rows(source_id: str, payload: Any, default_type: Optional[str] = None) -> List[Balance]:
    if not isinstance(payload, Mapping) or not isinstance(payload.get('balances'), list):
        raise BalanceFetchError(source_id, "response has no balances list")
    balances = []
    for row in payload['balances']:
        balance = normalize_balance(row, default_type)
        if balance is None:
            logger.debug(f"{source_id}: dropping malformed balance row {row!r}")
            continue
        balances.append(balance)
    return balances


class BalanceService:
    """
    Service for refreshing holdings through the balance proxy.
    """

    @staticmethod
    def _post(source_id: str, url: str, body: Dict) -> Any:
        settings = get_settings()
        try:
            response = requests.post(url, json=body, timeout=settings.request_timeout)
        except requests.RequestException as e:
            raise BalanceFetchError(source_id, f"request failed: {e}") from e
        if not 200 <= response.status_code < 300:
            detail = ''
            try:
                detail = response.json().get('error', '')
            except ValueError:
                pass
            raise BalanceFetchError(source_id, f"HTTP {response.status_code} {detail}".strip())
        try:
            return response.json()
        except ValueError as e:
            raise BalanceFetchError(source_id, "response is not JSON") from e

    @staticmethod
    def fetch_cex_balance(config: CexConfig) -> CexBalanceResult:
        """
        Fetch balances for one exchange account.

        Raises:
            BalanceFetchError: non-2xx or malformed response
        """
        body = {
            'platformId': config.platform_id,
            'apiKey': config.api_key,
            'apiSecret': config.api_secret,
        }
        if config.password:
            body['password'] = config.password
        payload = BalanceService._post(config.id, get_settings().cex_balance_url, body)
        balances = _normalize_rows(config.id, payload)
        return CexBalanceResult(
            source_id=config.id,
            platform=config.name or payload.get('platform') or config.platform_id,
            balances=balances,
        )

    @staticmethod
    def fetch_chain_balance(wallet: Wallet) -> ChainBalanceResult:
        """
        Fetch balances for one wallet.

        Raises:
            BalanceFetchError: non-2xx or malformed response
        """
        body = {'chainType': wallet.chain, 'address': wallet.address}
        if wallet.chains:
            body['chains'] = list(wallet.chains)
        payload = BalanceService._post(wallet.id, get_settings().chain_balance_url, body)
        balances = _normalize_rows(wallet.id, payload, default_type=wallet.chain)
        return ChainBalanceResult(
            source_id=wallet.id,
            chain_type=payload.get('chainType') or wallet.chain,
            address=payload.get('address') or wallet.address,
            balances=balances,
            reported_total=parse_number(payload.get('totalValue')),
        )

    @staticmethod
    def _guarded(source_id: str, fetch, item, locks: ResourceLocks) -> FetchResult:
        with locks.get(source_id):
            try:
                return fetch(item)
            except BalanceFetchError as e:
                logger.warning(f"Balance fetch failed for {source_id}: {e}")
                return FetchFailure(source_id=source_id, error=str(e))
            except Exception as e:
                logger.error(f"Unexpected error fetching balance for {source_id}: {e}")
                return FetchFailure(source_id=source_id, error=str(e))

    @staticmethod
    def _fan_out(items: List, fetch, locks: ResourceLocks, max_workers: Optional[int] = None) -> RefreshReport:
        report = RefreshReport()
        locks.retain(item.id for item in items)
        if not items:
            return report
        workers = max_workers or get_settings().fetch_max_workers
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_id = {
                executor.submit(BalanceService._guarded, item.id, fetch, item, locks): item.id
                for item in items
            }
            for future in as_completed(future_to_id):
                report.results.append(future.result())
        order = {item.id: i for i, item in enumerate(items)}
        report.results.sort(key=lambda r: order[r.source_id])
        return report

    @staticmethod
    def refresh_cex(
        configs: Iterable[CexConfig],
        previous: Optional[CexSnapshot] = None,
        max_workers: Optional[int] = None,
    ) -> CexSnapshot:
        """
        Refresh every exchange account concurrently.

        Failed accounts keep their holdings from `previous` (if any) and are
        listed in `failed`.
        """
        configs = list(configs)
        report = BalanceService._fan_out(configs, BalanceService.fetch_cex_balance, _cex_locks, max_workers)

        snapshot = CexSnapshot()
        for result in report.results:
            if result.kind == 'failure':
                snapshot.failed.append(result.source_id)
                if previous and result.source_id in previous.exchanges:
                    snapshot.exchanges[result.source_id] = previous.exchanges[result.source_id]
                continue
            snapshot.exchanges[result.source_id] = ExchangeHoldings(
                name=result.platform,
                total=result.total,
                balances=result.balances,
            )
        snapshot.total_usd = sum(h.total for h in snapshot.exchanges.values())
        logger.info(
            f"CEX refresh: {len(report.succeeded)}/{len(configs)} accounts, "
            f"total ${snapshot.total_usd:,.2f}"
        )
        return snapshot

    @staticmethod
    def refresh_wallets(
        wallets: Iterable[Wallet],
        previous: Optional[ChainSnapshot] = None,
        max_workers: Optional[int] = None,
    ) -> ChainSnapshot:
        """
        Refresh every wallet concurrently. Rows the proxy returns without a
        price are priced from CoinGecko.
        """
        wallets = list(wallets)
        report = BalanceService._fan_out(wallets, BalanceService.fetch_chain_balance, _wallet_locks, max_workers)

        unpriced = {
            b.symbol
            for r in report.succeeded
            for b in r.balances
            if not b.price and not b.value
        }
        prices = PriceService.fetch_prices(unpriced) if unpriced else {}

        snapshot = ChainSnapshot()
        for result in report.results:
            if result.kind == 'failure':
                snapshot.failed.append(result.source_id)
                if previous and result.source_id in previous.wallets:
                    snapshot.wallets[result.source_id] = previous.wallets[result.source_id]
                continue
            balances = []
            for b in result.balances:
                if not b.price and not b.value:
                    price = PriceService.price_for(b.symbol, prices)
                    b = b.model_copy(update={'price': price, 'value': b.amount * price})
                balances.append(b)
            snapshot.wallets[result.source_id] = WalletHoldings(
                address=result.address,
                chain_type=result.chain_type,
                total=sum(b.value for b in balances),
                balances=balances,
            )
        snapshot.total_usd = sum(w.total for w in snapshot.wallets.values())
        logger.info(
            f"Wallet refresh: {len(report.succeeded)}/{len(wallets)} wallets, "
            f"total ${snapshot.total_usd:,.2f}"
        )
        return snapshot
