"""Tests for the admin profile, credential changes and the audit trail."""
import io

import pytest
from PIL import Image
from werkzeug.security import generate_password_hash

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import Base, Permission, Role, User
from app.folio.modules.media.models import MediaAsset
from app.folio.modules.settings.models import SiteSetting
from app.folio.modules.settings.service import ensure_default_settings
from scripts.init_db import PERMISSIONS


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
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
        u = User(email="admin@example.com", password_hash=generate_password_hash("old-password"), is_active=True)
        u.roles.append(r)
        other = User(email="taken@example.com", password_hash=generate_password_hash("x"), is_active=True)
        s.add_all([r, u, other])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com", password="old-password"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    return r, {"X-CSRF-Token": r.json.get("csrfToken", "")}


def _upload_png(client, headers, color) -> dict:
    buf = io.BytesIO()
    Image.new("RGB", (500, 500), color).save(buf, format="PNG")
    r = client.post(
        "/admin/media",
        data={"file": (io.BytesIO(buf.getvalue()), "avatar.png", "image/png")},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    return r.json["media"]


def test_profile_get_and_patch(client):
    _, headers = _login(client)
    r = client.get("/admin/profile")
    assert r.status_code == 200
    assert r.json["data"]["email"] == "admin@example.com"
    assert r.json["data"]["avatarUrls"] == {}

    r = client.patch(
        "/admin/profile",
        json={"displayName": "  Ada  ", "bio": "", "githubHandle": "ada"},
        headers=headers,
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["displayName"] == "Ada"
    assert data["bio"] is None
    assert data["githubHandle"] == "ada"


def test_profile_patch_validation(client):
    _, headers = _login(client)
    r = client.patch("/admin/profile", json={"websiteUrl": "ftp://nope"}, headers=headers)
    assert r.status_code == 400
    r = client.patch("/admin/profile", json={"displayName": "x" * 101}, headers=headers)
    assert r.status_code == 400
    r = client.patch("/admin/profile", json={"avatarMediaId": "7"}, headers=headers)
    assert r.status_code == 400
    r = client.patch("/admin/profile", json={"avatarMediaId": 999}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Avatar media not found"


def test_avatar_replacement_deletes_previous_asset(app, client):
    _, headers = _login(client)
    first = _upload_png(client, headers, (10, 10, 200))
    second = _upload_png(client, headers, (10, 200, 10))

    r = client.patch("/admin/profile", json={"avatarMediaId": first["id"]}, headers=headers)
    assert r.status_code == 200
    urls = r.json["data"]["avatarUrls"]
    assert urls["thumbnail"].endswith("-thumbnail.webp")
    assert urls["small"].endswith("-small.webp")
    assert client.get("/api/site-settings").json["data"]["author"]["avatarUrl"] == urls["small"]

    r = client.patch("/admin/profile", json={"avatarMediaId": second["id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["avatarMediaId"] == second["id"]
    with session_scope(app) as s:
        assert s.get(MediaAsset, first["id"]) is None
        assert s.get(SiteSetting, "author_avatar_url").value == r.json["data"]["avatarUrls"]["small"]

    r = client.patch("/admin/profile", json={"avatarMediaId": None}, headers=headers)
    assert r.json["data"]["avatarUrl"] is None
    with session_scope(app) as s:
        assert s.get(MediaAsset, second["id"]) is None


def test_change_password(client):
    _, headers = _login(client)
    body = {"action": "password", "currentPassword": "wrong", "newPassword": "new-password-1", "confirmPassword": "new-password-1"}
    r = client.put("/admin/profile", json=body, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Current password is incorrect"

    r = client.put("/admin/profile", json={**body, "currentPassword": "old-password", "confirmPassword": "x"}, headers=headers)
    assert r.json["error"] == "Passwords do not match"

    r = client.put("/admin/profile", json={**body, "newPassword": "short", "confirmPassword": "short"}, headers=headers)
    assert r.status_code == 400

    r = client.put("/admin/profile", json={**body, "currentPassword": "old-password"}, headers=headers)
    assert r.status_code == 200
    assert r.json["message"] == "Password updated successfully"

    client.post("/auth/logout")
    r, _ = _login(client, password="new-password-1")
    assert r.status_code == 200


def test_change_email(app, client):
    _, headers = _login(client)
    r = client.put(
        "/admin/profile",
        json={"action": "email", "currentPassword": "old-password", "email": "taken@example.com"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json["error"] == "Email is already taken"

    r = client.put(
        "/admin/profile",
        json={"action": "email", "currentPassword": "old-password", "email": "New@Example.com"},
        headers=headers,
    )
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "new@example.com").one()

    assert client.put("/admin/profile", json={"action": "nope", "currentPassword": "x"}, headers=headers).status_code == 400


def test_audit_trail_filters(client):
    _, headers = _login(client)
    client.patch("/admin/profile", json={"displayName": "Ada"}, headers=headers)

    r = client.get("/admin/audit")
    assert r.status_code == 200
    actions = [e["action"] for e in r.json["events"]]
    assert actions[:2] == ["user.update_profile", "auth.login"]
    assert r.json["events"][0]["metadata"] == {"fields": ["displayName"]}

    r = client.get("/admin/audit?action=login&actor_email=admin")
    assert [e["action"] for e in r.json["events"]] == ["auth.login"]

    assert client.get("/admin/audit?date_from=yesterday").status_code == 400
