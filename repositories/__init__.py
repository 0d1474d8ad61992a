"""
Repositories package for Crypto Bookkeeper.
Provides data access layer for all database operations.
"""

from repositories.storage_repository import StorageRepository

__all__ = [
    'StorageRepository',
]
