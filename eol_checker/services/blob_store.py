"""
Blob Store - key-value JSON documents persisted in the blobs table
"""
import copy
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from eol_checker.database.db_config import get_db_session
from eol_checker.database.models import Blob

logger = logging.getLogger(__name__)

# Store names (centralized for consistency)
STORE_NAMES = {
    'JOBS': 'eol-jobs',
    'AUTO_CHECK': 'auto-check-state',
    'LOGS': 'logs',
}


class BlobStore:
    """
    One named store. Every operation runs in its own short session so
    readers always see the latest committed document.
    """

    def __init__(self, name: str):
        self.name = name

    def get(self, key: str, strong: bool = False) -> Optional[Dict[str, Any]]:
        """
        Read a document.

        Args:
            key: Blob key
            strong: Bypass any identity-map state and re-read from the database

        Returns:
            A copy of the stored JSON document, or None when missing
        """
        session = get_db_session()
        try:
            stmt = select(Blob).where(Blob.store == self.name, Blob.key == key)
            if strong:
                stmt = stmt.execution_options(populate_existing=True)
            blob = session.execute(stmt).scalar_one_or_none()
            if blob is None:
                return None
            return copy.deepcopy(blob.value)
        finally:
            session.close()

    def set(self, key: str, value: Dict[str, Any]) -> None:
        """Write a document, replacing any previous value (full overwrite)."""
        session = get_db_session()
        try:
            blob = session.execute(
                select(Blob).where(Blob.store == self.name, Blob.key == key)
            ).scalar_one_or_none()
            if blob is None:
                session.add(Blob(store=self.name, key=key, value=copy.deepcopy(value)))
            else:
                blob.value = copy.deepcopy(value)
            try:
                session.commit()
            except IntegrityError:
                # Concurrent insert of the same key won: overwrite it instead
                session.rollback()
                blob = session.execute(
                    select(Blob).where(Blob.store == self.name, Blob.key == key)
                ).scalar_one()
                blob.value = copy.deepcopy(value)
                session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, key: str) -> bool:
        """Delete a document. Returns False when it was already gone."""
        session = get_db_session()
        try:
            blob = session.execute(
                select(Blob).where(Blob.store == self.name, Blob.key == key)
            ).scalar_one_or_none()
            if blob is None:
                return False
            session.delete(blob)
            session.commit()
            return True
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list(self, prefix: Optional[str] = None) -> List[str]:
        """List keys in the store, optionally filtered by prefix."""
        session = get_db_session()
        try:
            stmt = select(Blob.key).where(Blob.store == self.name)
            if prefix:
                stmt = stmt.where(Blob.key.startswith(prefix, autoescape=True))
            return list(session.execute(stmt.order_by(Blob.key)).scalars())
        finally:
            session.close()


def get_jobs_store() -> BlobStore:
    return BlobStore(STORE_NAMES['JOBS'])


def get_auto_check_store() -> BlobStore:
    return BlobStore(STORE_NAMES['AUTO_CHECK'])


def get_log_store() -> BlobStore:
    return BlobStore(STORE_NAMES['LOGS'])
