"""
Database-backed fixed-window rate limiting.

Counters live in `rate_limits`, so limits hold across gunicorn workers.
The limiter fails open: if the database is unavailable the request is allowed.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

from flask import current_app, jsonify, make_response
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.folio.models import RateLimit
from app.folio.security import client_ip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Limit:
    max_requests: int
    window_seconds: int


PRESETS: dict[str, Limit] = {
    "PUBLIC_API": Limit(100, 15 * 60),
    "SEARCH": Limit(30, 60),
    "CONTACT": Limit(5, 60 * 60),
    "ADMIN_API": Limit(200, 15 * 60),
    "UPLOAD": Limit(20, 60 * 60),
    "LOGIN": Limit(5, 15 * 60),
    "PROFILE_SECURITY": Limit(5, 60 * 60),
}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after_seconds: int = 0

    def headers(self) -> dict[str, str]:
        h = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.replace(microsecond=0).isoformat() + "Z",
        }
        if self.retry_after_seconds > 0:
            h["Retry-After"] = str(self.retry_after_seconds)
        return h


def _open_session() -> Session:
    # Separate from the request session so a limiter failure never poisons request work.
    return current_app.extensions["sqlalchemy_sessionmaker"]()


def check_rate_limit(
    action: str,
    identifier: str,
    *,
    max_requests: int,
    window_seconds: int,
    now: datetime | None = None,
) -> RateLimitResult:
    key = f"{action}:{identifier}"
    now = now or datetime.utcnow()
    expires_at = now + timedelta(seconds=window_seconds)

    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return RateLimitResult(True, max_requests, max_requests, expires_at)

    s = _open_session()
    try:
        record = s.get(RateLimit, key, with_for_update=True)
        if record is None or record.expires_at < now:
            if record is None:
                record = RateLimit(key=key)
                s.add(record)
            record.count = 1
            record.window_start = now
            record.expires_at = expires_at
            s.commit()
            return RateLimitResult(True, max_requests, max_requests - 1, expires_at)

        if record.count >= max_requests:
            retry_after = max(0, math.ceil((record.expires_at - now).total_seconds()))
            reset_at = record.expires_at
            s.rollback()
            return RateLimitResult(False, max_requests, 0, reset_at, retry_after)

        record.count += 1
        remaining = max(0, max_requests - record.count)
        reset_at = record.expires_at
        s.commit()
        return RateLimitResult(True, max_requests, remaining, reset_at)
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Rate limit check failed for %s (allowing request): %s", key, e)
        return RateLimitResult(True, max_requests, max_requests, expires_at)
    finally:
        s.close()


def check_preset(preset: str, identifier: str | None = None) -> RateLimitResult:
    limit = PRESETS[preset]
    return check_rate_limit(
        preset.lower(),
        identifier or client_ip(),
        max_requests=limit.max_requests,
        window_seconds=limit.window_seconds,
    )


def too_many_requests(result: RateLimitResult, message: str = "Too many requests. Please try again later."):
    resp = make_response(jsonify({"error": message, "retryAfter": result.retry_after_seconds}), 429)
    resp.headers.update(result.headers())
    return resp


def rate_limit(preset: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Route decorator: apply a preset keyed by client ip and attach X-RateLimit-* headers."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            result = check_preset(preset)
            if not result.allowed:
                logger.warning("Rate limit hit: preset=%s ip=%s", preset, client_ip())
                return too_many_requests(result)
            resp = make_response(fn(*args, **kwargs))
            for k, v in result.headers().items():
                resp.headers.setdefault(k, v)
            return resp

        return wrapped

    return decorator


def cleanup_expired(s: Session, *, now: datetime | None = None) -> int:
    """Delete expired counters. Returns number of rows removed."""
    now = now or datetime.utcnow()
    res = s.execute(delete(RateLimit).where(RateLimit.expires_at < now))
    return int(res.rowcount or 0)
