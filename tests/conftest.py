"""
Shared fixtures: controllable clock, recorded sleeps, and a document store that counts
calls and can be told to fail or to hold reads open.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from storykeep.core.admin_settings import AdminSettingsService
from storykeep.core.document_store import InMemoryDocumentStore
from storykeep.core.local_store import InMemoryLocalStore
from storykeep.core.retry import RetryPolicy, fixed_delay

COLLECTION = "adminSettings"
DOC_ID = "testAdmins"
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class SleepRecorder:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class RecordingDocumentStore(InMemoryDocumentStore):
    def __init__(self):
        super().__init__()
        self.reads = 0
        self.writes = 0
        self.fail_reads = 0
        self.fail_writes = 0
        self.read_gate: Optional[asyncio.Event] = None

    def preload(self, collection: str, doc_id: str, document: Dict[str, Any]):
        """Put a document in place without counting a write."""
        self._documents[(collection, doc_id)] = dict(document)

    def peek(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._documents.get((collection, doc_id))

    async def get_document(self, collection, doc_id):
        """Reads the document first, then holds the result until read_gate is set."""
        self.reads += 1
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise ConnectionError("remote store unavailable")
        document = await super().get_document(collection, doc_id)
        if self.read_gate is not None:
            await self.read_gate.wait()
        return document

    async def set_document(self, collection, doc_id, fields):
        self.writes += 1
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise PermissionError("write denied")
        await super().set_document(collection, doc_id, fields)


def settings_document(admin_emails, notification_emails=None, updated_by="system", last_updated=T0):
    return {
        "adminEmails": list(admin_emails),
        "notificationEmails": list(notification_emails or []),
        "lastUpdated": last_updated.isoformat(),
        "updatedBy": updated_by,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def doc_store():
    return RecordingDocumentStore()


@pytest.fixture
def local_store():
    return InMemoryLocalStore()


@pytest.fixture
def service(doc_store, clock, sleeps):
    return AdminSettingsService(
        doc_store,
        collection=COLLECTION,
        doc_id=DOC_ID,
        ttl_sec=300,
        fetch_policy=RetryPolicy(3, fixed_delay(1.0)),
        clock=clock,
        now=lambda: datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
        sleep=sleeps,
    )
