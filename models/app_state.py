"""
Application state - every collection the bookkeeper persists, plus the
small records that live in them.
"""

from typing import Optional, List, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.base import CamelModel, validate_iso_date
from models.balance import CexSnapshot, ChainSnapshot
from models.transaction import Transaction, new_id


class CoinMetadata(CamelModel):
    """A coin on the price monitor watch list."""
    id: str  # CoinGecko id, e.g. "bitcoin"
    symbol: str
    name: str


class Coin(BaseModel):
    """Cached price quote. Keys follow the CoinGecko market schema."""
    model_config = ConfigDict(extra='ignore')

    id: str
    symbol: str
    name: str = ""
    current_price: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None


class CexConfig(CamelModel):
    """API credentials for one exchange account."""
    id: str = Field(default_factory=new_id)
    platform_id: str  # ccxt exchange id, e.g. "binance"
    api_key: str
    api_secret: str
    password: Optional[str] = None  # passphrase for OKX-style exchanges
    name: Optional[str] = None  # user defined name
    maker_fee_rate: Optional[float] = None  # percent
    taker_fee_rate: Optional[float] = None  # percent


class Wallet(CamelModel):
    """An on-chain address to scan."""
    id: str = Field(default_factory=new_id)
    name: str
    chain: str  # chain type: "evm", "solana", "bitcoin", ...
    address: str
    chains: Optional[List[str]] = None  # EVM networks to scan
    tags: List[str] = Field(default_factory=list)


class FiatTransaction(CamelModel):
    """Deposit or withdrawal of fiat/stablecoin on a platform."""
    id: str = Field(default_factory=new_id)
    date: str  # ISO 8601
    type: Literal['Deposit', 'Withdraw']
    currency: str = "USD"
    amount: float = Field(ge=0)
    platform: str
    notes: Optional[str] = None

    @field_validator('date')
    @classmethod
    def _iso_date(cls, value: str) -> str:
        return validate_iso_date(value)


class ManualAsset(CamelModel):
    """Holding entered by hand for an exchange without API access."""
    id: str = Field(default_factory=new_id)
    exchange: str
    symbol: str
    amount: float = Field(ge=0)
    note: Optional[str] = None


class Tag(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    color: Optional[str] = None


class AIConfig(CamelModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None


def default_monitored_coins() -> List[CoinMetadata]:
    return [
        CoinMetadata(id='bitcoin', symbol='BTC', name='Bitcoin'),
        CoinMetadata(id='ethereum', symbol='ETH', name='Ethereum'),
        CoinMetadata(id='solana', symbol='SOL', name='Solana'),
    ]


class AppState(CamelModel):
    """
    Everything persisted under the storage key.
    Missing fields fall back to these defaults so older documents stay readable.
    """
    monitored_coins: List[CoinMetadata] = Field(default_factory=default_monitored_coins)
    prices: Dict[str, Coin] = Field(default_factory=dict)
    cex_configs: List[CexConfig] = Field(default_factory=list)
    cex_data: Optional[CexSnapshot] = None
    chain_data: Optional[ChainSnapshot] = None
    cex_exchange_order: List[str] = Field(default_factory=list)
    wallets: List[Wallet] = Field(default_factory=list)
    fiat_transactions: List[FiatTransaction] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    manual_assets: List[ManualAsset] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    ai_config: AIConfig = Field(default_factory=AIConfig)
    hide_amounts: bool = False
