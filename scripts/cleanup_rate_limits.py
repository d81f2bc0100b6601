#!/usr/bin/env python3
"""Delete expired rate-limit counters.

Usage:
  python scripts/cleanup_rate_limits.py
"""

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.folio.ratelimit import cleanup_expired  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///folio.db").strip()
    with script_session(db_url) as s:
        removed = cleanup_expired(s)
    print(f"Removed {removed} expired rate limit record(s)")


if __name__ == "__main__":
    main()
