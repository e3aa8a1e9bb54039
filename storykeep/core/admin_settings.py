"""
Cached access to the singleton admin settings document.

Reads are served from a per-instance TTL cache; at most one remote read is in flight
per service, and callers arriving while it runs get the current cached value instead
of starting another. Mutations are full-document replaces followed by cache
invalidation and a forced re-fetch, which waits for any read already in flight rather
than coalescing with it. A read that started before an invalidation is never cached.

Known limitation: mutations read-modify-write the whole document, so two admins
mutating concurrently race at the store and the last writer wins.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import ValidationError

from .config import DB_PATH, SETTINGS_CACHE_TTL_SEC, SETTINGS_COLLECTION, SETTINGS_DOC_ID
from .document_store import IDocumentStore, SQLiteDocumentStore
from .errors import (
    DuplicateAdminError,
    InvalidEmailError,
    LastAdminError,
    NotFoundError,
    RemoteWriteError,
    SettingsFetchError,
)
from .retry import RetryPolicy, retry_async, settings_fetch_policy
from .schema import AdminEmailRequest, AdminEntry, AdminSettings, CacheEntry, normalize_email
from ..util.logging import audit_event, logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_admin_email(email: str) -> str:
    """Return the normalized address or raise InvalidEmailError."""
    try:
        return AdminEmailRequest(email=email or "").email
    except ValidationError as e:
        error = e.errors()[0]
        cause = error.get("ctx", {}).get("error")
        message = str(cause) if cause is not None else error["msg"]
        raise InvalidEmailError(message, email=email) from e


class AdminSettingsService:
    """Owns the settings cache, the in-flight flag and the last-loaded settings."""

    def __init__(self, document_store: IDocumentStore,
                 collection: str = SETTINGS_COLLECTION,
                 doc_id: str = SETTINGS_DOC_ID,
                 ttl_sec: float = SETTINGS_CACHE_TTL_SEC,
                 fetch_policy: Optional[RetryPolicy] = None,
                 clock: Callable[[], float] = time.monotonic,
                 now: Callable[[], datetime] = _utcnow,
                 sleep=None):
        self.document_store = document_store
        self.collection = collection
        self.doc_id = doc_id
        self.ttl_sec = ttl_sec
        self.fetch_policy = fetch_policy or settings_fetch_policy()
        self.clock = clock
        self.now = now
        self.sleep = sleep

        self._cache: Optional[CacheEntry] = None
        self._fetch_in_progress = False
        self._fetch_done: Optional[asyncio.Event] = None
        self._settings: Optional[AdminSettings] = None
        # Bumped on every invalidation; a read started under an older value is not cached
        self._generation = 0

    @property
    def settings(self) -> Optional[AdminSettings]:
        """Last successfully loaded settings, independent of cache expiry."""
        return self._settings

    @property
    def cached_settings(self) -> Optional[AdminSettings]:
        return self._cache.settings if self._cache else None

    @property
    def fetch_in_progress(self) -> bool:
        return self._fetch_in_progress

    def invalidate(self) -> None:
        """Drop the cache entry so the next read goes to the store."""
        self._cache = None
        self._generation += 1

    async def get_settings(self, force: bool = False) -> Optional[AdminSettings]:
        """
        Return the admin settings.

        Order: fresh cache (unless force) -> current cache value if a fetch is already in
        flight (may be stale or None) -> remote read with retry.

        Raises:
            SettingsFetchError: every read attempt failed. The cache is left as it was.
        """
        if not force and self._cache is not None and self._cache.is_fresh(self.clock(), self.ttl_sec):
            logger.log_settings_fetch("cache", details={"age_sec": round(self.clock() - self._cache.last_fetch_time, 3)})
            return self._cache.settings

        if self._fetch_in_progress:
            logger.log_settings_fetch("in_flight", details={"has_cached": self._cache is not None})
            return self.cached_settings

        # No await between the check above and this assignment
        self._fetch_in_progress = True
        self._fetch_done = asyncio.Event()
        generation = self._generation
        try:
            settings = await retry_async(
                self._read_remote,
                self.fetch_policy,
                name="settings.fetch",
                sleep=self.sleep,
            )
        except Exception as e:
            logger.log_settings_fetch("remote", "failed", {"error": str(e)[:100]})
            raise SettingsFetchError(
                f"Failed to fetch admin settings after {self.fetch_policy.max_attempts} attempts",
                attempts=self.fetch_policy.max_attempts,
            ) from e
        finally:
            self._fetch_in_progress = False
            self._fetch_done.set()

        if generation != self._generation:
            # Invalidated while reading: the result may predate a write
            logger.debug("Settings read finished after invalidation; result not cached")
            return settings

        self._cache = CacheEntry(settings=settings, last_fetch_time=self.clock())
        self._settings = settings
        logger.log_settings_fetch("remote", details={
            "admin_count": len(settings.admin_emails),
            "updated_by": settings.updated_by,
        })
        return settings

    async def _read_remote(self) -> AdminSettings:
        document = await self.document_store.get_document(self.collection, self.doc_id)
        if document is not None:
            return AdminSettings.model_validate(document)

        defaults = AdminSettings(
            admin_emails=[],
            notification_emails=[],
            last_updated=self.now(),
            updated_by="system",
        )
        await self.document_store.set_document(self.collection, self.doc_id, defaults.to_document())
        logger.info(f"Initialized default admin settings at {self.collection}/{self.doc_id}")
        return defaults

    async def _refresh(self) -> AdminSettings:
        """Forced read that waits out a fetch already in flight instead of coalescing with it."""
        while self._fetch_in_progress:
            await self._fetch_done.wait()
        return await self.get_settings(force=True)

    async def _loaded_settings(self) -> AdminSettings:
        if self._settings is not None:
            return self._settings
        return await self._refresh()

    async def _write_and_refresh(self, updated: AdminSettings, action: str, target: str, actor: str) -> AdminSettings:
        try:
            await self.document_store.set_document(self.collection, self.doc_id, updated.to_document())
        except Exception as e:
            logger.log_settings_mutation(action, target, actor, "failed", {"error": str(e)[:100]})
            raise RemoteWriteError(f"Failed to {action.replace('_', ' ')} '{target}': {e}") from e
        finally:
            self.invalidate()

        logger.log_settings_mutation(action, target, actor)
        audit_event(f"admin_settings.{action}", {"target": target, "actor": actor},
                    {"admin_count": len(updated.admin_emails)})
        return await self._refresh()

    async def add_admin(self, email: str, added_by: str) -> AdminSettings:
        """
        Add an admin email (lower-cased).

        Raises:
            InvalidEmailError: malformed address.
            DuplicateAdminError: already an admin; nothing is written.
            RemoteWriteError: the write failed. The cache is invalidated regardless.
        """
        email = validate_admin_email(email)
        current = await self._loaded_settings()

        if email in current.admin_emails:
            logger.log_settings_mutation("add_admin", email, added_by, "rejected")
            raise DuplicateAdminError(f"{email} is already an admin", email=email)

        updated = AdminSettings(
            admin_emails=[*current.admin_emails, email],
            notification_emails=current.notification_emails,
            last_updated=self.now(),
            updated_by=added_by,
        )
        return await self._write_and_refresh(updated, "add_admin", email, added_by)

    async def remove_admin(self, email: str, updated_by: str) -> AdminSettings:
        """
        Remove an admin email. The last remaining admin cannot be removed.

        Raises:
            NotFoundError: not an admin; nothing is written.
            LastAdminError: removal would leave the list empty; nothing is written.
            RemoteWriteError: the write failed.
        """
        email = normalize_email(email or "")
        current = await self._loaded_settings()

        if email not in current.admin_emails:
            logger.log_settings_mutation("remove_admin", email, updated_by, "rejected")
            raise NotFoundError(f"{email} is not in the admin list", email=email)

        if len(current.admin_emails) <= 1:
            logger.log_settings_mutation("remove_admin", email, updated_by, "rejected")
            raise LastAdminError("Cannot remove the last admin", email=email)

        updated = AdminSettings(
            admin_emails=[e for e in current.admin_emails if e != email],
            notification_emails=[e for e in current.notification_emails if e != email],
            last_updated=self.now(),
            updated_by=updated_by,
        )
        return await self._write_and_refresh(updated, "remove_admin", email, updated_by)

    async def set_notification_recipient(self, email: str, enabled: bool, updated_by: str) -> AdminSettings:
        """
        Turn admin notifications on or off for an admin. Only admins can be recipients.
        Setting the current value again writes nothing.
        """
        email = normalize_email(email or "")
        current = await self._loaded_settings()

        if email not in current.admin_emails:
            raise NotFoundError(f"{email} is not in the admin list", email=email)

        is_recipient = email in current.notification_emails
        if is_recipient == enabled:
            return current

        if enabled:
            recipients = [*current.notification_emails, email]
        else:
            recipients = [e for e in current.notification_emails if e != email]

        updated = AdminSettings(
            admin_emails=current.admin_emails,
            notification_emails=recipients,
            last_updated=self.now(),
            updated_by=updated_by,
        )
        action = "enable_notifications" if enabled else "disable_notifications"
        return await self._write_and_refresh(updated, action, email, updated_by)

    async def seed_admins(self, emails: List[str], updated_by: str = "system") -> AdminSettings:
        """Replace the settings document with the given admin list (initial setup)."""
        normalized = []
        for email in emails:
            valid = validate_admin_email(email)
            if valid not in normalized:
                normalized.append(valid)

        if not normalized:
            raise InvalidEmailError("At least one admin email is required")

        seeded = AdminSettings(
            admin_emails=normalized,
            notification_emails=[],
            last_updated=self.now(),
            updated_by=updated_by,
        )
        return await self._write_and_refresh(seeded, "seed_admins", ",".join(normalized), updated_by)

    def is_admin(self, email: str) -> bool:
        """Check membership against the last-loaded settings. Never fetches."""
        if not email or self._settings is None:
            return False
        return normalize_email(email) in self._settings.admin_emails

    def is_notification_recipient(self, email: str) -> bool:
        if not email or self._settings is None:
            return False
        return normalize_email(email) in self._settings.notification_emails

    def list_admins(self) -> List[AdminEntry]:
        """Admin rows for display, derived from the last-loaded settings."""
        if self._settings is None:
            return []

        settings = self._settings
        return [
            AdminEntry(
                id=email,
                email=email,
                name=email.split("@")[0],
                added_by=settings.updated_by,
                added_at=settings.last_updated,
            )
            for email in settings.admin_emails
        ]


_service: Optional[AdminSettingsService] = None


def get_admin_settings_service() -> AdminSettingsService:
    """Process-wide service backed by the SQLite document store at DB_PATH."""
    global _service
    if _service is None:
        _service = AdminSettingsService(SQLiteDocumentStore(DB_PATH))
    return _service


def reset_admin_settings_service() -> None:
    global _service
    _service = None
