"""
StorageEntry model - one persisted JSON document addressed by key.
"""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class StorageEntry(SQLModel, table=True):
    """Key/value row holding a serialized JSON document."""
    __tablename__ = "storage_entry"

    key: str = Field(primary_key=True)  # e.g., "crypto-bookkeeper-storage"
    value: str  # JSON text
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
