"""
Draft reconciliation - persists an in-progress local edit of a record and merges it
against the server copy with a last-write-wins policy on modification timestamps.

Merge rules:
- local newer (lastSaved > remote updatedAt): every local field wins, but identity and
  creation metadata (id, createdBy, createdAt, type) stay as on the remote record.
- remote newer or tie: remote record, with local values overlaid only where they differ.
  This keeps server-side changes (e.g. a publish-status flip by another editor) when the
  local edit is stale.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .document_store import IDocumentStore
from .errors import LocalPersistenceError, RemoteWriteError
from .local_store import ILocalStore
from .retry import RetryPolicy, publish_policy, retry_async
from .schema import (
    IDENTITY_FIELDS,
    LAST_SAVED_FIELD,
    UPDATED_AT_FIELD,
    DraftState,
    FieldChange,
)
from ..util.logging import logger

STORAGE_KEY_PREFIX = "draft_"

Record = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware datetime. None if unusable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _local_is_newer(local: Record, remote: Record) -> bool:
    local_ts = parse_timestamp(local.get(LAST_SAVED_FIELD) or local.get(UPDATED_AT_FIELD))
    remote_ts = parse_timestamp(remote.get(UPDATED_AT_FIELD))
    if local_ts is None or remote_ts is None:
        return False
    return local_ts > remote_ts


def merge_drafts(local: Record, remote: Optional[Record]) -> Record:
    """
    Reconcile a local draft with the remote record of the same entity. Pure, no I/O.

    Raises:
        ValueError: remote is None. A draft with no remote copy is authoritative
            and should be created, not merged.
    """
    if remote is None:
        raise ValueError("merge requires a remote record; create the record from the local draft instead")

    if _local_is_newer(local, remote):
        merged = {**remote, **local}
        for field in IDENTITY_FIELDS:
            if field in remote:
                merged[field] = remote[field]
        return merged

    merged = dict(remote)
    for key, value in local.items():
        if key != LAST_SAVED_FIELD and value != remote.get(key):
            merged[key] = value
    return merged


def diff_fields(local: Record, remote: Record) -> List[FieldChange]:
    """List fields whose local value differs from the remote one, ignoring timestamps."""
    ignored = {LAST_SAVED_FIELD, UPDATED_AT_FIELD}
    changes = []
    keys = list(local.keys()) + [k for k in remote.keys() if k not in local]
    for key in keys:
        if key in ignored:
            continue
        local_value = local.get(key)
        remote_value = remote.get(key)
        if local_value != remote_value:
            changes.append(FieldChange(field=key, remote_value=remote_value, local_value=local_value))
    return changes


def _strip_bookkeeping(record: Record) -> Record:
    return {k: v for k, v in record.items() if k != LAST_SAVED_FIELD}


class DraftStore:
    """
    Local draft holder for one logical record, keyed draft_<record_type>_<record_id>.

    Storage failures never propagate out of save_local/load_local/clear_local: they are
    delivered as LocalPersistenceError to on_error (and logged), and prior state is kept.
    """

    merge = staticmethod(merge_drafts)

    def __init__(self, local_store: ILocalStore, record_type: str, record_id: str,
                 on_error: Optional[Callable[[LocalPersistenceError], None]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        if not record_type or not record_id:
            raise ValueError("record_type and record_id are required")

        self.local_store = local_store
        self.record_type = record_type
        self.record_id = record_id
        self.on_error = on_error
        self.clock = clock or _utcnow

        self._local_draft: Optional[Record] = None
        self._has_local_draft = False
        self.last_error: Optional[LocalPersistenceError] = None

    @property
    def key(self) -> str:
        return f"{STORAGE_KEY_PREFIX}{self.record_type}_{self.record_id}"

    @property
    def has_local_draft(self) -> bool:
        return self._has_local_draft

    @property
    def local_draft(self) -> Optional[Record]:
        return dict(self._local_draft) if self._local_draft is not None else None

    @property
    def state(self) -> DraftState:
        return DraftState.DRAFTING if self._has_local_draft else DraftState.NO_DRAFT

    def _notify(self, operation: str, message: str, cause: Exception):
        error = LocalPersistenceError(f"{message}: {cause}", key=self.key, operation=operation)
        error.__cause__ = cause
        self.last_error = error
        logger.log_draft_operation(operation, self.key, "failed", {"error": str(cause)})
        if self.on_error is not None:
            self.on_error(error)

    def save_local(self, record: Record) -> Optional[Record]:
        """Persist record plus a fresh lastSaved. Returns the stored draft, or None on failure."""
        draft = {**record, LAST_SAVED_FIELD: self.clock().isoformat()}

        try:
            serialized = json.dumps(draft)
            self.local_store.set(self.key, serialized)
        except Exception as e:
            self._notify("save", "Failed to save draft locally", e)
            return None

        self._local_draft = draft
        self._has_local_draft = True
        logger.log_draft_operation("save", self.key, details={"fields": len(draft)})
        return dict(draft)

    def load_local(self) -> Optional[Record]:
        """Read the stored draft. Missing or unreadable drafts read as None."""
        try:
            stored = self.local_store.get(self.key)
        except Exception as e:
            self._notify("load", "Failed to load local draft", e)
            return None

        if stored is None:
            self._local_draft = None
            self._has_local_draft = False
            return None

        try:
            draft = json.loads(stored)
            if not isinstance(draft, dict):
                raise ValueError(f"expected a JSON object, got {type(draft).__name__}")
        except ValueError as e:
            self._notify("load", "Failed to load local draft", e)
            self._local_draft = None
            self._has_local_draft = False
            return None

        self._local_draft = draft
        self._has_local_draft = True
        return dict(draft)

    def _remove(self, operation: str) -> bool:
        try:
            self.local_store.delete(self.key)
        except Exception as e:
            self._notify(operation, f"Failed to {operation} local draft", e)
            return False

        self._local_draft = None
        self._has_local_draft = False
        return True

    def clear_local(self) -> None:
        """Remove the stored draft. Idempotent."""
        if self._remove("clear"):
            logger.log_draft_operation("clear", self.key)

    def discard(self) -> Optional[Record]:
        """
        Drop the draft without applying it (user declined recovery).
        Returns the discarded draft, or None if there was none or removal failed.
        """
        draft = self._local_draft if self._local_draft is not None else self.load_local()
        if not self._remove("discard"):
            return None

        if draft is not None:
            logger.log_draft_operation("discard", self.key, details={"fields": sorted(k for k in draft if k != LAST_SAVED_FIELD)})
        return draft

    def changed_fields(self, remote: Record) -> List[FieldChange]:
        """Fields the current local draft would change on remote. Empty without a draft."""
        if self._local_draft is None:
            return []
        return diff_fields(self._local_draft, remote)

    def recover(self, remote: Optional[Record]) -> Optional[Record]:
        """
        Apply the local draft: merge it with remote (or take it as-is when there is no
        remote copy yet), clear the draft, and return the reconciled record.
        """
        draft = self._local_draft if self._local_draft is not None else self.load_local()
        if draft is None:
            return None

        recovered = merge_drafts(draft, remote) if remote is not None else draft
        self.clear_local()
        return _strip_bookkeeping(recovered)

    async def publish(self, document_store: IDocumentStore, collection: str,
                      record: Optional[Record] = None,
                      policy: Optional[RetryPolicy] = None,
                      sleep=None) -> Record:
        """
        Write the record (default: the current local draft) to the remote store with a
        fresh updatedAt, retrying with exponential backoff, then clear the draft.

        Raises:
            ValueError: nothing to publish.
            RemoteWriteError: every attempt failed; the local draft is kept.
        """
        source = record if record is not None else self._local_draft
        if source is None:
            source = self.load_local()
        if source is None:
            raise ValueError(f"No local draft to publish for {self.key}")

        payload = _strip_bookkeeping(source)
        payload[UPDATED_AT_FIELD] = self.clock().isoformat()
        policy = policy or publish_policy()

        async def write():
            await document_store.set_document(collection, self.record_id, payload)

        try:
            await retry_async(write, policy, name="draft.publish", sleep=sleep)
        except Exception as e:
            logger.log_draft_operation("publish", self.key, "failed", {"error": str(e)})
            raise RemoteWriteError(f"Failed to publish {self.key} after {policy.max_attempts} attempts: {e}") from e

        logger.log_draft_operation("publish", self.key, details={"collection": collection})
        self.clear_local()
        return payload
