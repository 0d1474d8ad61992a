"""
Balance models - canonical holdings shapes produced by normalizing
balance-proxy responses.
"""

from typing import Optional, List, Dict

from pydantic import Field

from models.base import CamelModel


class Balance(CamelModel):
    """One asset holding on an exchange account or wallet."""
    symbol: str
    amount: float = 0.0
    type: Optional[str] = None  # "Spot/Unified", "Funding", "Earn", chain name, ...
    price: float = 0.0
    value: float = 0.0


class ExchangeHoldings(CamelModel):
    """Balances of one configured exchange account."""
    name: str
    total: float = 0.0
    balances: List[Balance] = Field(default_factory=list)


class CexSnapshot(CamelModel):
    """Last refresh result across all configured exchanges."""
    total_usd: float = 0.0
    exchanges: Dict[str, ExchangeHoldings] = Field(default_factory=dict)
    failed: List[str] = Field(default_factory=list)  # config ids that failed


class WalletHoldings(CamelModel):
    """Balances of one on-chain wallet."""
    address: str
    chain_type: str
    total: float = 0.0
    balances: List[Balance] = Field(default_factory=list)


class ChainSnapshot(CamelModel):
    """Last refresh result across all wallets."""
    total_usd: float = 0.0
    wallets: Dict[str, WalletHoldings] = Field(default_factory=dict)
    failed: List[str] = Field(default_factory=list)
