import pytest
from werkzeug.security import generate_password_hash

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import AuditEvent, Base, Permission, Role, User
from app.folio.modules.settings.service import DEFAULT_SETTINGS, ensure_default_settings, parse_value, stringify_value
from scripts.init_db import PERMISSIONS


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MEDIA_ROOT", str(tmp_path / "media"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        ensure_default_settings(s)
        r = Role(key="admin", name="Administrator")
        for key, name in PERMISSIONS:
            r.permissions.append(Permission(key=key, name=name))
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([r, u])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client) -> dict:
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    return {"X-CSRF-Token": r.json["csrfToken"]}


def test_public_settings_shape(client):
    r = client.get("/api/site-settings")
    assert r.status_code == 200
    data = r.json["data"]
    assert set(data) == {"site", "author", "social", "seo"}
    assert data["site"]["name"] == "Folio"
    assert data["social"]["github"] is None
    assert data["seo"]["twitterCard"] == "summary_large_image"
    assert "s-maxage=60" in r.headers["Cache-Control"]


def test_admin_update_invalidates_public_cache(app, client):
    assert client.get("/api/site-settings").json["data"]["site"]["name"] == "Folio"
    headers = _login(client)

    r = client.put(
        "/admin/settings",
        json={"site_name": "My Corner", "social_github": "https://github.com/me", "not_a_key": "x"},
        headers=headers,
    )
    assert r.status_code == 200
    assert sorted(r.json["updated"]) == ["site_name", "social_github"]
    assert r.json["unknown"] == ["not_a_key"]

    data = client.get("/api/site-settings").json["data"]
    assert data["site"]["name"] == "My Corner"
    assert data["social"]["github"] == "https://github.com/me"

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "settings.update").one()
        assert "site_name" in ev.metadata_json


def test_admin_settings_formats(client):
    _login(client)
    grouped = client.get("/admin/settings").json["settings"]
    assert grouped["contact"]["contact_enabled"] is True
    assert grouped["features"]["feature_comments_enabled"] is False

    raw = client.get("/admin/settings?format=raw").json["settings"]
    assert len(raw) == len(DEFAULT_SETTINGS)
    assert {"key", "value", "type", "category", "description", "updatedAt"} <= set(raw[0])

    structured = client.get("/admin/settings?format=structured").json["settings"]
    assert structured["author"]["name"] == "Your Name"

    assert client.get("/admin/settings?format=xml").status_code == 400


def test_admin_settings_rejects_bad_payload(client):
    headers = _login(client)
    assert client.put("/admin/settings", json={}, headers=headers).status_code == 400
    assert client.put("/admin/settings", json=["site_name"], headers=headers).status_code == 400


def test_ensure_defaults_is_idempotent(app):
    with session_scope(app) as s:
        assert ensure_default_settings(s) == 0


def test_value_conversions():
    assert parse_value("42", "number") == 42
    assert parse_value("1.5", "number") == 1.5
    assert parse_value("abc", "number") is None
    assert parse_value("true", "boolean") is True
    assert parse_value("0", "boolean") is False
    assert parse_value('{"a": [1]}', "json") == {"a": [1]}
    assert parse_value("", "string") is None
    assert stringify_value(False) == "false"
    assert stringify_value({"a": 1}) == '{"a": 1}'
    assert stringify_value(None) is None
