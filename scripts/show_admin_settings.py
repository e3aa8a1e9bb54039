#!/usr/bin/env python3
"""
Print the current admin settings document.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from storykeep.core.admin_settings import AdminSettingsService
from storykeep.core.config import DB_PATH, validate_config
from storykeep.core.document_store import SQLiteDocumentStore
from storykeep.core.errors import SettingsFetchError


def main():
    parser = argparse.ArgumentParser(description="Show the admin settings document")
    parser.add_argument("--db", default=DB_PATH, help=f"Document store database path (default: {DB_PATH})")
    parser.add_argument("--json", action="store_true", help="Print the raw document as JSON")
    args = parser.parse_args()

    issues = validate_config()
    if issues:
        print(f"Configuration invalid: {issues}", file=sys.stderr)
        return 1

    service = AdminSettingsService(SQLiteDocumentStore(args.db))

    try:
        settings = asyncio.run(service.get_settings(force=True))
    except SettingsFetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(settings.to_document(), indent=2))
        return 0

    print(f"Last updated: {settings.last_updated.isoformat()} by {settings.updated_by}")
    print(f"Admins ({len(settings.admin_emails)}):")
    for entry in service.list_admins():
        marker = " [notify]" if service.is_notification_recipient(entry.email) else ""
        print(f"  - {entry.email} ({entry.name}){marker}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
