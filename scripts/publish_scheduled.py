#!/usr/bin/env python3
"""Publish scheduled posts whose publish date has passed. Meant for cron.

Usage:
  python scripts/publish_scheduled.py [--dry-run]
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.folio.modules.blog.service import publish_due_scheduled  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--dry-run", action="store_true", help="List due posts without publishing")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///folio.db").strip()
    with script_session(db_url) as s:
        posts = publish_due_scheduled(s)
        for p in posts:
            print(f"{'Would publish' if args.dry_run else 'Published'}: {p.slug} ({p.published_at:%Y-%m-%d %H:%M})")
        if args.dry_run:
            s.rollback()
    if not posts:
        print("No scheduled posts due")


if __name__ == "__main__":
    main()
