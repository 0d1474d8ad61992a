"""
Transaction model - one trade leg (buy or sell), optionally linked to
its opposite leg through related_transaction_id.
"""

from enum import Enum
from typing import Optional, List
from uuid import uuid4

from pydantic import Field, field_validator, model_validator

from models.base import CamelModel, validate_iso_date


class TransactionType(str, Enum):
    """Known leg types. Legacy records may carry other free-text types."""
    BUY = "Buy"
    SELL = "Sell"


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid4())


class Fill(CamelModel):
    """One partial execution within a multi-fill trade."""
    price: float = 0.0
    amount: float = 0.0
    date: str = ""


class Transaction(CamelModel):
    """Represents one buy/sell leg."""
    id: str = Field(default_factory=new_id)
    date: str  # ISO 8601
    type: str = TransactionType.BUY.value
    platform: str = ""
    pair: str = ""  # e.g., "BTC/USDT"
    amount: float = Field(default=0.0, ge=0)
    price: float = Field(default=0.0, ge=0)
    fee: float = Field(default=0.0, ge=0)
    fills: Optional[List[Fill]] = None
    related_transaction_id: Optional[str] = None
    pnl: Optional[float] = None  # Sell legs only, frozen at creation
    apr: Optional[float] = None  # Sell legs only, frozen at creation
    intent: Optional[str] = None  # Long, Short, etc.
    is_deleted: bool = False
    notes: Optional[str] = None
    link: Optional[str] = None

    @field_validator('date')
    @classmethod
    def _iso_date(cls, value: str) -> str:
        return validate_iso_date(value)

    @field_validator('pair')
    @classmethod
    def _canonical_pair(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator('fee', mode='before')
    @classmethod
    def _default_fee(cls, value):
        return 0.0 if value is None or value == '' else value

    @model_validator(mode='after')
    def _pnl_only_on_sell(self) -> "Transaction":
        if not self.is_sell and (self.pnl is not None or self.apr is not None):
            raise ValueError(f"pnl/apr are only allowed on Sell legs, got type {self.type!r}")
        return self

    @property
    def is_buy(self) -> bool:
        return self.type == TransactionType.BUY.value

    @property
    def is_sell(self) -> bool:
        return self.type == TransactionType.SELL.value

    @property
    def value(self) -> float:
        """Notional value of the leg (amount * price)."""
        return self.amount * self.price

    @property
    def has_fills(self) -> bool:
        return bool(self.fills)
