"""
Configuration for draft reconciliation and the cached admin settings accessor.
Values come from the environment (optionally a .env file) and are read once at import.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

# Remote document store (SQLite stand-in for the hosted document database)
DB_PATH = os.getenv("DB_PATH", "./data/storykeep.db")

# Durable local key-value storage for drafts
DRAFTS_DB_PATH = os.getenv("DRAFTS_DB_PATH", "./data/drafts.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Admin settings singleton document
SETTINGS_COLLECTION = os.getenv("SETTINGS_COLLECTION", "adminSettings")
SETTINGS_DOC_ID = os.getenv("SETTINGS_DOC_ID", "storykeepAdmins")
SETTINGS_CACHE_TTL_SEC = float(os.getenv("SETTINGS_CACHE_TTL_SEC", "300"))  # 5 minutes
SETTINGS_FETCH_MAX_ATTEMPTS = int(os.getenv("SETTINGS_FETCH_MAX_ATTEMPTS", "3"))
SETTINGS_FETCH_RETRY_DELAY_SEC = float(os.getenv("SETTINGS_FETCH_RETRY_DELAY_SEC", "1.0"))

# Draft publish retry (exponential backoff)
PUBLISH_MAX_ATTEMPTS = int(os.getenv("PUBLISH_MAX_ATTEMPTS", "4"))
PUBLISH_INITIAL_DELAY_SEC = float(os.getenv("PUBLISH_INITIAL_DELAY_SEC", "1.0"))

# Draft autosave
AUTOSAVE_ENABLED = os.getenv("AUTOSAVE_ENABLED", "true").lower() == "true"
AUTOSAVE_INTERVAL_SEC = float(os.getenv("AUTOSAVE_INTERVAL_SEC", "10"))

# Capacity of the in-memory local store, mirrors typical browser storage limits
LOCAL_STORE_QUOTA_BYTES = int(os.getenv("LOCAL_STORE_QUOTA_BYTES", str(5 * 1024 * 1024)))

# Comma separated list used by scripts/init_admin_settings.py
INITIAL_ADMIN_EMAILS = os.getenv("INITIAL_ADMIN_EMAILS", "")

VERSION = "0.3.0"


def ensure_db_directory(db_path: Optional[str] = None):
    """Ensure the directory holding a database file exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_initial_admin_emails() -> List[str]:
    """Parse INITIAL_ADMIN_EMAILS into a list, dropping blanks."""
    raw = os.getenv("INITIAL_ADMIN_EMAILS", INITIAL_ADMIN_EMAILS)
    return [email.strip() for email in raw.split(",") if email.strip()]


def is_autosave_enabled():
    return AUTOSAVE_ENABLED


def get_autosave_interval():
    """Get autosave interval in seconds."""
    return AUTOSAVE_INTERVAL_SEC


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if SETTINGS_CACHE_TTL_SEC < 0:
        issues.append("SETTINGS_CACHE_TTL_SEC must be >= 0")

    if SETTINGS_FETCH_MAX_ATTEMPTS < 1:
        issues.append("SETTINGS_FETCH_MAX_ATTEMPTS must be >= 1")

    if SETTINGS_FETCH_RETRY_DELAY_SEC < 0:
        issues.append("SETTINGS_FETCH_RETRY_DELAY_SEC must be >= 0")

    if PUBLISH_MAX_ATTEMPTS < 1:
        issues.append("PUBLISH_MAX_ATTEMPTS must be >= 1")

    if PUBLISH_INITIAL_DELAY_SEC < 0:
        issues.append("PUBLISH_INITIAL_DELAY_SEC must be >= 0")

    if AUTOSAVE_INTERVAL_SEC <= 0:
        issues.append("AUTOSAVE_INTERVAL_SEC must be > 0")

    if LOCAL_STORE_QUOTA_BYTES <= 0:
        issues.append("LOCAL_STORE_QUOTA_BYTES must be > 0")

    if not SETTINGS_COLLECTION or not SETTINGS_DOC_ID:
        issues.append("SETTINGS_COLLECTION and SETTINGS_DOC_ID must not be empty")

    return issues
