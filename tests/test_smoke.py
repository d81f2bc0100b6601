import pytest
from werkzeug.security import generate_password_hash

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import AuditEvent, Base, Permission, Role, User


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

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p = Permission(key="admin.view", name="Admin: view dashboard")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([p, r, u])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous is sent to login
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["next"] == "/admin/"
    assert r.json["csrfToken"]
    assert r.json["user"]["roles"] == ["admin"]

    r = client.get("/admin/")
    assert r.status_code == 200
    assert r.json["posts"]["total"] == 0
    assert r.json["messages"]["total"] == 0


def test_login_accepts_form_post(client):
    r = client.post("/auth/login", data={"email": "ADMIN@example.com", "password": "pw", "next": "/admin/posts"})
    assert r.status_code == 200
    assert r.json["next"] == "/admin/posts"


def test_login_rejects_open_redirect(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw", "next": "//evil.example"})
    assert r.json["next"] == "/admin/"


def test_bad_credentials_are_audited(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "admin@example.com"


def test_login_requires_fields(client):
    r = client.post("/auth/login", json={"email": "admin@example.com"})
    assert r.status_code == 400


def test_me_and_logout(client):
    assert client.get("/auth/me").status_code == 401
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"
    assert r.json["user"]["permissions"] == ["admin.view"]

    assert client.post("/auth/logout").json["ok"] is True
    assert client.get("/auth/me").status_code == 401


def test_missing_permission_is_forbidden(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/settings")
    assert r.status_code == 403
    assert r.json["missingPermission"] == "settings.edit"


def test_admin_mutation_requires_csrf(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.patch("/admin/profile", json={"displayName": "Someone"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_security_headers_present(client):
    r = client.get("/health")
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert "frame-ancestors 'none'" in r.headers["Content-Security-Policy"]


def test_home_payload(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json["site"]["name"] == "Folio"
    assert r.json["recentPosts"] == []
    assert r.json["featuredProjects"] == []
    assert "X-RateLimit-Limit" in r.headers


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json["error"] == "Not found"
