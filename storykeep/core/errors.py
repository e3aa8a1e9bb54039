"""
Error taxonomy for draft persistence and admin settings access.
"""

from typing import Optional


class StorykeepError(Exception):
    """Base class for all errors raised by storykeep."""
    pass


class LocalPersistenceError(StorykeepError):
    """Local storage unavailable, over quota, or holding an unreadable draft."""

    def __init__(self, message: str, key: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.key = key
        self.operation = operation


class QuotaExceededError(StorykeepError):
    """A local store write would exceed the store's capacity."""
    pass


class SettingsFetchError(StorykeepError):
    """Remote read of the admin settings failed after the retry budget."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class RemoteWriteError(StorykeepError):
    """Write to the remote document store failed."""
    pass


class AdminSettingsRuleError(StorykeepError):
    """Business-rule rejection of an admin settings mutation. Never retried."""

    def __init__(self, message: str, email: Optional[str] = None):
        super().__init__(message)
        self.email = email


class DuplicateAdminError(AdminSettingsRuleError):
    pass


class NotFoundError(AdminSettingsRuleError):
    pass


class LastAdminError(AdminSettingsRuleError):
    pass


class InvalidEmailError(AdminSettingsRuleError):
    pass
