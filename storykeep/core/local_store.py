"""
Durable local key-value storage for drafts.
Synchronous get/set/delete; writes raise when storage is unavailable or full.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from .config import DRAFTS_DB_PATH, LOCAL_STORE_QUOTA_BYTES
from .db import get_db, init_db
from .errors import QuotaExceededError


class ILocalStore(ABC):
    """Abstract interface for local key-value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored string for key, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Removing a missing key is not an error."""
        pass


class SQLiteLocalStore(ILocalStore):
    """Local store backed by a SQLite file."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DRAFTS_DB_PATH
        init_db(self.db_path)

    def get(self, key: str) -> Optional[str]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM local_kv WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO local_kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                (key, value)
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM local_kv WHERE key = ?", (key,))
            conn.commit()


class InMemoryLocalStore(ILocalStore):
    """In-memory local store with a capacity limit on the UTF-8 size of keys plus values."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes if quota_bytes is not None else LOCAL_STORE_QUOTA_BYTES
        self._data: Dict[str, str] = {}

    @staticmethod
    def _entry_size(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def usage(self) -> int:
        return sum(self._entry_size(k, v) for k, v in self._data.items())

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        current = self._data.get(key)
        projected = self.usage() + self._entry_size(key, value)
        if current is not None:
            projected -= self._entry_size(key, current)

        if projected > self.quota_bytes:
            raise QuotaExceededError(
                f"Writing '{key}' needs {projected} of {self.quota_bytes} available bytes"
            )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()
