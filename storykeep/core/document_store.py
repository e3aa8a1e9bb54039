"""
Remote document store used for admin settings and for records under reconciliation.
Documents are JSON objects addressed by (collection, doc_id); writes replace the whole document.
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from .config import DB_PATH
from .db import get_db, init_db


class IDocumentStore(ABC):
    """Abstract interface for the remote document store."""

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document, or None if it does not exist."""
        pass

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Replace the document with fields (full replace, not a patch)."""
        pass


class InMemoryDocumentStore(IDocumentStore):
    """Process-local document store. Returns copies so callers cannot mutate stored state."""

    def __init__(self):
        self._documents: Dict[Tuple[str, str], Dict[str, Any]] = {}

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get((collection, doc_id))
        return copy.deepcopy(document) if document is not None else None

    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._documents[(collection, doc_id)] = copy.deepcopy(fields)


class SQLiteDocumentStore(IDocumentStore):
    """Document store backed by SQLite. Blocking calls run in a worker thread."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH
        init_db(self.db_path)

    def _get_sync(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id)
            )
            row = cursor.fetchone()
            return json.loads(row[0]) if row else None

    def _set_sync(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        data = json.dumps(fields)
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?) "
                "ON CONFLICT(collection, doc_id) DO UPDATE SET data = excluded.data, updated_at = CURRENT_TIMESTAMP",
                (collection, doc_id, data)
            )
            conn.commit()

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get_sync, collection, doc_id)

    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._set_sync, collection, doc_id, fields)
