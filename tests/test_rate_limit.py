from datetime import datetime, timedelta

import pytest

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import Base, RateLimit
from app.folio.ratelimit import PRESETS, check_rate_limit, cleanup_expired


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MEDIA_ROOT", str(tmp_path / "media"))
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


def test_fixed_window_counts_and_blocks(app):
    now = datetime(2024, 1, 1, 12, 0, 0)
    with app.app_context():
        results = [check_rate_limit("test", "1.2.3.4", max_requests=3, window_seconds=60, now=now) for _ in range(3)]
        assert [r.remaining for r in results] == [2, 1, 0]
        assert all(r.allowed for r in results)

        blocked = check_rate_limit("test", "1.2.3.4", max_requests=3, window_seconds=60, now=now + timedelta(seconds=20))
        assert not blocked.allowed
        assert blocked.retry_after_seconds == 40
        assert blocked.headers()["Retry-After"] == "40"

        # other identifiers have their own window
        assert check_rate_limit("test", "5.6.7.8", max_requests=3, window_seconds=60, now=now).allowed

        # window expired: counter restarts
        fresh = check_rate_limit("test", "1.2.3.4", max_requests=3, window_seconds=60, now=now + timedelta(seconds=61))
        assert fresh.allowed
        assert fresh.remaining == 2


def test_disabled_limiter_always_allows(app):
    app.config["RATE_LIMIT_ENABLED"] = False
    with app.app_context():
        for _ in range(10):
            assert check_rate_limit("test", "ip", max_requests=1, window_seconds=60).allowed
    with session_scope(app) as s:
        assert s.query(RateLimit).count() == 0


def test_cleanup_expired(app):
    now = datetime(2024, 1, 1, 12, 0, 0)
    with app.app_context():
        check_rate_limit("a", "ip", max_requests=5, window_seconds=10, now=now)
        check_rate_limit("b", "ip", max_requests=5, window_seconds=3600, now=now)
    with session_scope(app) as s:
        assert cleanup_expired(s, now=now + timedelta(minutes=5)) == 1
    with session_scope(app) as s:
        assert [r.key for r in s.query(RateLimit).all()] == ["b:ip"]


def test_public_endpoint_reports_headers(app):
    client = app.test_client()
    r = client.get("/api/posts", headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"})
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == str(PRESETS["PUBLIC_API"].max_requests)
    assert r.headers["X-RateLimit-Remaining"] == str(PRESETS["PUBLIC_API"].max_requests - 1)
    with session_scope(app) as s:
        assert s.get(RateLimit, "public_api:9.9.9.9") is not None


def test_login_lockout(app):
    client = app.test_client()
    for _ in range(PRESETS["LOGIN"].max_requests):
        assert client.post("/auth/login", json={"email": "x@example.com", "password": "bad"}).status_code == 401
    r = client.post("/auth/login", json={"email": "x@example.com", "password": "bad"})
    assert r.status_code == 429
    assert r.json["error"] == "Too many login attempts. Please try again later."
