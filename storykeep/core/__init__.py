"""
Draft reconciliation store, cached admin settings accessor, and the storage and retry
pieces they are built on.
"""

from .admin_settings import AdminSettingsService, get_admin_settings_service
from .autosave import AutoSaveScheduler, register_draft_autosave
from .document_store import IDocumentStore, InMemoryDocumentStore, SQLiteDocumentStore
from .drafts import DraftStore, diff_fields, merge_drafts
from .errors import (
    DuplicateAdminError,
    InvalidEmailError,
    LastAdminError,
    LocalPersistenceError,
    NotFoundError,
    QuotaExceededError,
    RemoteWriteError,
    SettingsFetchError,
    StorykeepError,
)
from .local_store import ILocalStore, InMemoryLocalStore, SQLiteLocalStore
from .retry import RetryPolicy, exponential_backoff, fixed_delay, retry_async
from .schema import AdminEntry, AdminSettings, DraftState, FieldChange

__all__ = [
    'AdminSettingsService',
    'get_admin_settings_service',
    'AutoSaveScheduler',
    'register_draft_autosave',
    'IDocumentStore',
    'InMemoryDocumentStore',
    'SQLiteDocumentStore',
    'DraftStore',
    'diff_fields',
    'merge_drafts',
    'DuplicateAdminError',
    'InvalidEmailError',
    'LastAdminError',
    'LocalPersistenceError',
    'NotFoundError',
    'QuotaExceededError',
    'RemoteWriteError',
    'SettingsFetchError',
    'StorykeepError',
    'ILocalStore',
    'InMemoryLocalStore',
    'SQLiteLocalStore',
    'RetryPolicy',
    'exponential_backoff',
    'fixed_delay',
    'retry_async',
    'AdminEntry',
    'AdminSettings',
    'DraftState',
    'FieldChange',
]
