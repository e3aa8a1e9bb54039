"""
Cached admin settings accessor: TTL cache, single-flight reads, retry, and mutations.
"""

import asyncio
from unittest.mock import patch

import pytest

from storykeep.core import admin_settings as admin_settings_module
from storykeep.core.admin_settings import (
    get_admin_settings_service,
    reset_admin_settings_service,
    validate_admin_email,
)
from storykeep.core.errors import (
    DuplicateAdminError,
    InvalidEmailError,
    LastAdminError,
    NotFoundError,
    RemoteWriteError,
    SettingsFetchError,
)

from conftest import COLLECTION, DOC_ID, settings_document


class TestGetSettings:
    """Reads, cache lifetime and the retry budget."""

    @pytest.mark.asyncio
    async def test_missing_document_is_initialized_with_defaults(self, service, doc_store):
        settings = await service.get_settings()

        assert settings.admin_emails == []
        assert settings.notification_emails == []
        assert settings.updated_by == "system"
        assert doc_store.reads == 1
        assert doc_store.writes == 1
        assert doc_store.peek(COLLECTION, DOC_ID)["updatedBy"] == "system"

    @pytest.mark.asyncio
    async def test_cache_hit_just_before_ttl(self, service, doc_store, clock):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))

        first = await service.get_settings()
        clock.advance(300 - 0.001)
        second = await service.get_settings()

        assert second is first
        assert doc_store.reads == 1

    @pytest.mark.asyncio
    async def test_cache_miss_just_after_ttl(self, service, doc_store, clock):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))

        await service.get_settings()
        clock.advance(300 + 0.001)
        await service.get_settings()

        assert doc_store.reads == 2

    @pytest.mark.asyncio
    async def test_force_bypasses_fresh_cache(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))

        await service.get_settings()
        await service.get_settings(force=True)

        assert doc_store.reads == 2

    @pytest.mark.asyncio
    async def test_concurrent_forced_reads_issue_one_remote_call(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        doc_store.read_gate = asyncio.Event()

        first = asyncio.create_task(service.get_settings(force=True))
        second = asyncio.create_task(service.get_settings(force=True))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert service.fetch_in_progress
        assert second.done()

        doc_store.read_gate.set()
        result = await first

        assert doc_store.reads == 1
        assert result.admin_emails == ["a@x.com"]
        # Nothing was cached yet, so the coalesced caller gets None
        assert await second is None
        assert not service.fetch_in_progress

    @pytest.mark.asyncio
    async def test_coalesced_caller_gets_stale_cache(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        cached = await service.get_settings()

        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com", "b@x.com"]))
        doc_store.read_gate = asyncio.Event()
        first = asyncio.create_task(service.get_settings(force=True))
        second = asyncio.create_task(service.get_settings(force=True))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert await second is cached

        doc_store.read_gate.set()
        fresh = await first
        assert fresh.admin_emails == ["a@x.com", "b@x.com"]
        assert doc_store.reads == 2

    @pytest.mark.asyncio
    async def test_transient_read_failures_are_retried(self, service, doc_store, sleeps):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        doc_store.fail_reads = 2

        settings = await service.get_settings()

        assert settings.admin_emails == ["a@x.com"]
        assert doc_store.reads == 3
        assert sleeps.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_three_failures_raise_and_keep_stale_cache(self, service, doc_store, sleeps):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        cached = await service.get_settings()

        doc_store.fail_reads = 3
        with pytest.raises(SettingsFetchError) as exc_info:
            await service.get_settings(force=True)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert doc_store.reads == 4
        assert sleeps.delays == [1.0, 1.0]
        assert not service.fetch_in_progress

        # Non-forced read is still served from the preserved cache
        assert await service.get_settings() is cached
        assert doc_store.reads == 4

    @pytest.mark.asyncio
    async def test_failure_without_cache_leaves_nothing_cached(self, service, doc_store):
        doc_store.fail_reads = 3

        with pytest.raises(SettingsFetchError):
            await service.get_settings()

        assert service.cached_settings is None
        assert service.settings is None


class TestAddAdmin:
    """Adding admins: normalization, duplicates, write-through and invalidation."""

    @pytest.mark.asyncio
    async def test_add_admin_lowercases_and_refreshes(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()

        result = await service.add_admin("B@x.com", "a@x.com")

        assert result.admin_emails == ["a@x.com", "b@x.com"]
        assert result.updated_by == "a@x.com"
        stored = doc_store.peek(COLLECTION, DOC_ID)
        assert stored["adminEmails"] == ["a@x.com", "b@x.com"]
        assert stored["updatedBy"] == "a@x.com"
        # Cache was invalidated: the post-write state came from a fresh remote read
        assert doc_store.writes == 1
        assert doc_store.reads == 2
        assert service.is_admin("b@x.com")

    @pytest.mark.asyncio
    async def test_add_admin_loads_settings_first_when_needed(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))

        result = await service.add_admin("c@x.com", "a@x.com")

        assert result.admin_emails == ["a@x.com", "c@x.com"]
        assert doc_store.reads == 2

    @pytest.mark.asyncio
    async def test_duplicate_admin_is_rejected_without_write(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()

        with pytest.raises(DuplicateAdminError) as exc_info:
            await service.add_admin("A@X.com", "a@x.com")

        assert exc_info.value.email == "a@x.com"
        assert doc_store.writes == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,message", [
        ("", "Email is required"),
        ("not-an-email", "Invalid email format"),
        ("two words@x.com", "Invalid email format"),
    ])
    async def test_invalid_email_is_rejected(self, service, doc_store, email, message):
        with pytest.raises(InvalidEmailError, match=message):
            await service.add_admin(email, "a@x.com")

        assert doc_store.reads == 0
        assert doc_store.writes == 0

    @pytest.mark.asyncio
    async def test_write_failure_is_not_retried_and_invalidates_cache(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()
        doc_store.fail_writes = 1

        with pytest.raises(RemoteWriteError):
            await service.add_admin("b@x.com", "a@x.com")

        assert doc_store.writes == 1
        assert service.cached_settings is None
        assert doc_store.peek(COLLECTION, DOC_ID)["adminEmails"] == ["a@x.com"]


class TestMutationDuringRead:
    """A read already in flight must not leave pre-write data in the cache."""

    @pytest.mark.asyncio
    async def test_add_admin_waits_for_in_flight_read(self, service, doc_store, clock):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()

        doc_store.read_gate = asyncio.Event()
        read_task = asyncio.create_task(service.get_settings(force=True))
        await asyncio.sleep(0)
        add_task = asyncio.create_task(service.add_admin("b@x.com", "a@x.com"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert doc_store.writes == 1
        assert not add_task.done()

        doc_store.read_gate.set()
        stale = await read_task
        result = await add_task

        assert stale.admin_emails == ["a@x.com"]
        assert result.admin_emails == ["a@x.com", "b@x.com"]
        assert service.cached_settings.admin_emails == ["a@x.com", "b@x.com"]
        assert service.is_admin("b@x.com")

        clock.advance(200)
        reads = doc_store.reads
        assert (await service.get_settings()).admin_emails == ["a@x.com", "b@x.com"]
        assert doc_store.reads == reads

    @pytest.mark.asyncio
    async def test_read_invalidated_mid_flight_is_not_cached(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        doc_store.read_gate = asyncio.Event()

        read_task = asyncio.create_task(service.get_settings())
        await asyncio.sleep(0)
        service.invalidate()
        doc_store.read_gate.set()
        result = await read_task

        assert result.admin_emails == ["a@x.com"]
        assert service.cached_settings is None
        assert service.settings is None
        assert not service.fetch_in_progress

    @pytest.mark.asyncio
    async def test_mutation_with_nothing_loaded_waits_for_first_read(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        doc_store.read_gate = asyncio.Event()

        read_task = asyncio.create_task(service.get_settings())
        await asyncio.sleep(0)
        add_task = asyncio.create_task(service.add_admin("c@x.com", "a@x.com"))
        await asyncio.sleep(0)
        doc_store.read_gate.set()

        await read_task
        result = await add_task

        assert result.admin_emails == ["a@x.com", "c@x.com"]
        assert doc_store.writes == 1


class TestRemoveAdmin:
    """Removing admins and the last-admin invariant."""

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_removed(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["only@x.com"]))
        await service.get_settings()

        with pytest.raises(LastAdminError):
            await service.remove_admin("only@x.com", "x")

        assert doc_store.writes == 0
        assert doc_store.peek(COLLECTION, DOC_ID)["adminEmails"] == ["only@x.com"]

    @pytest.mark.asyncio
    async def test_unknown_email_is_not_found(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com", "b@x.com"]))
        await service.get_settings()

        with pytest.raises(NotFoundError):
            await service.remove_admin("c@x.com", "a@x.com")

        assert doc_store.writes == 0

    @pytest.mark.asyncio
    async def test_remove_admin_also_drops_notifications(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(
            ["a@x.com", "b@x.com"], notification_emails=["b@x.com"]))
        await service.get_settings()

        result = await service.remove_admin("B@X.COM", "a@x.com")

        assert result.admin_emails == ["a@x.com"]
        assert result.notification_emails == []
        assert result.updated_by == "a@x.com"
        assert not service.is_admin("b@x.com")


class TestIsAdmin:
    """Synchronous membership checks against the last-loaded settings."""

    def test_false_before_settings_load(self, service, doc_store):
        assert service.is_admin("a@x.com") is False
        assert doc_store.reads == 0

    @pytest.mark.asyncio
    async def test_case_insensitive_after_load(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()

        assert service.is_admin("A@X.com")
        assert not service.is_admin("b@x.com")
        assert not service.is_admin("")

    @pytest.mark.asyncio
    async def test_still_answers_after_cache_expiry(self, service, doc_store, clock):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()
        clock.advance(10_000)

        assert service.is_admin("a@x.com")
        assert doc_store.reads == 1


class TestNotificationRecipients:
    """Notification recipients live in the same document as the admin list."""

    @pytest.mark.asyncio
    async def test_enable_and_disable(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com", "b@x.com"]))
        await service.get_settings()

        enabled = await service.set_notification_recipient("B@x.com", True, "a@x.com")
        assert enabled.notification_emails == ["b@x.com"]
        assert service.is_notification_recipient("b@x.com")

        disabled = await service.set_notification_recipient("b@x.com", False, "a@x.com")
        assert disabled.notification_emails == []
        assert doc_store.writes == 2

    @pytest.mark.asyncio
    async def test_unchanged_value_writes_nothing(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"], notification_emails=["a@x.com"]))
        await service.get_settings()

        result = await service.set_notification_recipient("a@x.com", True, "a@x.com")

        assert result.notification_emails == ["a@x.com"]
        assert doc_store.writes == 0

    @pytest.mark.asyncio
    async def test_non_admin_cannot_be_recipient(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["a@x.com"]))
        await service.get_settings()

        with pytest.raises(NotFoundError):
            await service.set_notification_recipient("z@x.com", True, "a@x.com")


class TestSeedAndList:
    """Initial seeding and admin list rows."""

    @pytest.mark.asyncio
    async def test_seed_normalizes_and_deduplicates(self, service, doc_store):
        result = await service.seed_admins(["Alice@Example.com", "alice@example.com", "bob@example.com"])

        assert result.admin_emails == ["alice@example.com", "bob@example.com"]
        assert result.updated_by == "system"
        assert doc_store.writes == 1

    @pytest.mark.asyncio
    async def test_seed_requires_an_admin(self, service, doc_store):
        with pytest.raises(InvalidEmailError, match="At least one admin"):
            await service.seed_admins([])

        assert doc_store.writes == 0

    @pytest.mark.asyncio
    async def test_list_admins(self, service, doc_store):
        doc_store.preload(COLLECTION, DOC_ID, settings_document(["alice@example.com"], updated_by="root@example.com"))
        await service.get_settings()

        entries = service.list_admins()

        assert len(entries) == 1
        assert entries[0].id == "alice@example.com"
        assert entries[0].name == "alice"
        assert entries[0].added_by == "root@example.com"

    def test_list_admins_empty_before_load(self, service):
        assert service.list_admins() == []


class TestHelpers:
    """Module-level helpers."""

    def test_validate_admin_email_normalizes(self):
        assert validate_admin_email("  Someone@Example.COM ") == "someone@example.com"

    def test_process_service_is_shared(self, tmp_path):
        reset_admin_settings_service()
        try:
            with patch.object(admin_settings_module, "DB_PATH", str(tmp_path / "docs.db")):
                first = get_admin_settings_service()
                second = get_admin_settings_service()
            assert first is second
            assert first.document_store.db_path == str(tmp_path / "docs.db")
        finally:
            reset_admin_settings_service()
