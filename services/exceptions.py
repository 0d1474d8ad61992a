"""
Exception types raised by the bookkeeping services.
"""

from typing import Optional


class BookkeeperError(Exception):
    """Base class for all bookkeeper errors."""


class TransactionValidationError(BookkeeperError):
    """A trade entry or record update failed validation; nothing was committed."""


class CsvImportError(BookkeeperError):
    """A CSV file could not be imported. The whole file is rejected."""

    def __init__(self, message: str, row: Optional[int] = None):
        self.row = row
        if row is not None:
            message = f"Row {row}: {message}"
        super().__init__(message)


class BackupFormatError(BookkeeperError):
    """A backup document is missing its version/data envelope or is malformed."""


class StateLoadError(BookkeeperError):
    """The persisted state document exists but cannot be parsed."""


class BalanceFetchError(BookkeeperError):
    """A balance-proxy call failed or returned a malformed payload."""

    def __init__(self, source_id: str, message: str):
        self.source_id = source_id
        super().__init__(f"{source_id}: {message}")
