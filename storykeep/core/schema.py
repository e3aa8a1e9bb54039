"""
Typed shapes for drafts, admin settings documents and cache entries.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Bookkeeping field the local store stamps on every saved draft
LAST_SAVED_FIELD = "lastSaved"
UPDATED_AT_FIELD = "updatedAt"

# Identity/creation metadata always taken from the remote record when local wins
IDENTITY_FIELDS = ("id", "createdBy", "createdAt", "type")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _normalize_email_list(emails: List[str]) -> List[str]:
    """Lower-case and de-duplicate, keeping first-seen order."""
    seen = []
    for email in emails:
        normalized = normalize_email(email)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


class DraftState(str, Enum):
    NO_DRAFT = "no_draft"
    DRAFTING = "drafting"


class AdminSettings(BaseModel):
    """Singleton admin settings document. Field aliases match the stored document."""
    model_config = ConfigDict(populate_by_name=True)

    admin_emails: List[str] = Field(default_factory=list, alias="adminEmails")
    notification_emails: List[str] = Field(default_factory=list, alias="notificationEmails")
    last_updated: datetime = Field(alias="lastUpdated")
    updated_by: str = Field(alias="updatedBy")

    @field_validator('admin_emails', 'notification_emails')
    @classmethod
    def emails_must_be_normalized(cls, v):
        return _normalize_email_list(v)

    @field_validator('updated_by')
    @classmethod
    def updated_by_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('updatedBy cannot be empty')
        return v

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the JSON document shape written to the remote store."""
        return self.model_dump(mode="json", by_alias=True)


class AdminEmailRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def email_must_be_valid(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Email is required')
        if not EMAIL_PATTERN.match(v):
            raise ValueError('Invalid email format')
        return v.lower()


class AdminEntry(BaseModel):
    """Admin list row derived from the settings document."""
    id: str
    email: str
    name: str
    added_by: str
    added_at: datetime


@dataclass
class CacheEntry:
    settings: AdminSettings
    last_fetch_time: float  # monotonic seconds

    def is_fresh(self, now: float, ttl_sec: float) -> bool:
        return (now - self.last_fetch_time) < ttl_sec


@dataclass
class FieldChange:
    """A field whose local draft value differs from the remote record."""
    field: str
    remote_value: Any
    local_value: Any
