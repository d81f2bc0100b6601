#!/usr/bin/env python3
"""
Container entrypoint: release, then hand the process over to gunicorn.

Environment:
  PORT             listen port (default 8080)
  WEB_CONCURRENCY  gunicorn workers (default 2)
  GUNICORN_TIMEOUT worker timeout in seconds (default 60)
  SKIP_RELEASE     set to 1 to start without migrating/seeding

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, low: int, high: int) -> str:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return str(default)
    try:
        value = int(raw)
    except ValueError:
        value = None
    if value is None or not (low <= value <= high):
        print(f"[start] {name}={raw!r} is not an integer in {low}..{high}", flush=True)
        sys.exit(1)
    return str(value)


def gunicorn_argv() -> list[str]:
    port = _int_env("PORT", 8080, low=1, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, low=1, high=64)
    timeout = _int_env("GUNICORN_TIMEOUT", 60, low=1, high=3600)
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", timeout,
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    argv = gunicorn_argv()

    if (os.environ.get("SKIP_RELEASE") or "").strip() != "1":
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"[start] release failed: {e}", flush=True)
            sys.exit(1)

    print(f"[start] exec {' '.join(argv)}", flush=True)
    # exec keeps gunicorn as the container's main process
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
