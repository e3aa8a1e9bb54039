#!/usr/bin/env python3
"""
Seed the admin settings document with an initial admin list.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storykeep.core.admin_settings import AdminSettingsService
from storykeep.core.config import DB_PATH, get_initial_admin_emails, validate_config
from storykeep.core.document_store import SQLiteDocumentStore
from storykeep.core.errors import StorykeepError


def main():
    parser = argparse.ArgumentParser(
        description="Initialize the admin allow-list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s alice@example.com bob@example.com
  %(prog)s --db ./data/storykeep.db          # Use INITIAL_ADMIN_EMAILS

Environment variables:
- DB_PATH=./data/storykeep.db
- INITIAL_ADMIN_EMAILS=alice@example.com,bob@example.com (used when no emails are given)
        """
    )

    parser.add_argument(
        "emails",
        nargs="*",
        help="Admin email addresses (default: INITIAL_ADMIN_EMAILS)"
    )

    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"Document store database path (default: {DB_PATH})"
    )

    parser.add_argument(
        "--updated-by",
        default="system",
        help="Identity recorded as the mutator (default: system)"
    )

    args = parser.parse_args()

    issues = validate_config()
    if issues:
        print(f"Configuration invalid: {issues}", file=sys.stderr)
        return 1

    emails = args.emails or get_initial_admin_emails()
    if not emails:
        print("No admin emails given and INITIAL_ADMIN_EMAILS is empty", file=sys.stderr)
        return 1

    service = AdminSettingsService(SQLiteDocumentStore(args.db))

    try:
        settings = asyncio.run(service.seed_admins(emails, updated_by=args.updated_by))
    except StorykeepError as e:
        print(f"Error initializing admin settings: {e}", file=sys.stderr)
        return 1

    admin_emails = settings.admin_emails
    print(f"Admin settings initialized with {len(admin_emails)} admin(s):")
    for email in admin_emails:
        print(f"  - {email}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
