"""
Storage Repository - data access layer for StorageEntry documents.
Optimized with optional session parameter for transaction reuse.
"""

from datetime import datetime, timezone
from typing import Optional, List
from sqlmodel import Session, select

from db_engine import get_engine
from models import StorageEntry


class StorageRepository:
    """Repository for keyed JSON document reads and writes."""

    @staticmethod
    def get(key: str, session: Optional[Session] = None) -> Optional[str]:
        """
        Retrieve the raw document stored under a key.

        Args:
            key: Storage key to look up
            session: Optional existing session for transaction reuse

        Returns:
            JSON text or None if nothing is stored
        """
        def _get(sess: Session) -> Optional[str]:
            entry = sess.get(StorageEntry, key)
            return entry.value if entry else None

        if session is not None:
            return _get(session)
        else:
            with Session(get_engine()) as session:
                return _get(session)

    @staticmethod
    def set(key: str, value: str, session: Optional[Session] = None) -> StorageEntry:
        """
        Insert or replace the document stored under a key.

        Args:
            key: Storage key
            value: JSON text to store
            session: Optional existing session for transaction reuse

        Returns:
            The stored StorageEntry
        """
        def _set(sess: Session) -> StorageEntry:
            entry = sess.get(StorageEntry, key)
            if entry:
                entry.value = value
                entry.updated_at = datetime.now(timezone.utc)
            else:
                entry = StorageEntry(key=key, value=value)
            sess.add(entry)
            sess.commit()
            sess.refresh(entry)
            return entry

        if session is not None:
            return _set(session)
        else:
            with Session(get_engine()) as session:
                return _set(session)

    @staticmethod
    def delete(key: str, session: Optional[Session] = None) -> bool:
        """
        Delete the document stored under a key.

        Returns:
            True if a document was removed, False otherwise
        """
        def _delete(sess: Session) -> bool:
            try:
                entry = sess.get(StorageEntry, key)
                if entry:
                    sess.delete(entry)
                    sess.commit()
                    return True
                return False
            except Exception as e:
                sess.rollback()
                raise e

        if session is not None:
            return _delete(session)
        else:
            with Session(get_engine()) as session:
                return _delete(session)

    @staticmethod
    def keys(session: Optional[Session] = None) -> List[str]:
        """List every stored key."""
        def _keys(sess: Session) -> List[str]:
            return list(sess.exec(select(StorageEntry.key)).all())

        if session is not None:
            return _keys(session)
        else:
            with Session(get_engine()) as session:
                return _keys(session)
