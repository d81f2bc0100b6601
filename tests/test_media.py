"""Tests for media upload, processing, serving and deletion."""
import io
from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image
from werkzeug.security import generate_password_hash

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import AuditEvent, Base, Permission, Role, User
from app.folio.modules.media.models import MediaAsset, MediaVariant
from app.folio.modules.media.service import delete_assets
from app.folio.modules.media.processing import (
    IMAGE_VARIANTS,
    UploadError,
    process_image,
    should_generate,
    storage_dir,
    validate_upload,
)
from app.folio.storage import LocalStorage, StorageError, normalize_key
from scripts.init_db import PERMISSIONS


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("MEDIA_ROOT", str(tmp_path / "media"))
    monkeypatch.setenv("UPLOAD_MAX_SIZE_MB", "2")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
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


def _image_bytes(fmt: str, size=(1000, 800), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    mode = "P" if fmt == "GIF" else "RGB"
    Image.new(mode, size, color if mode == "RGB" else 1).save(buf, format=fmt)
    return buf.getvalue()


def _upload(client, headers, data: bytes, filename: str, mime: str, **form):
    return client.post(
        "/admin/media",
        data={"file": (io.BytesIO(data), filename, mime), **form},
        headers=headers,
        content_type="multipart/form-data",
    )


def test_upload_png_creates_webp_original_and_variants(app, client, tmp_path):
    headers = _login(client)
    r = _upload(client, headers, _image_bytes("PNG"), "Photo One.png", "image/png", altText="A red square")
    assert r.status_code == 201
    media = r.json["media"]
    assert r.json["isDuplicate"] is False
    assert media["mimeType"] == "image/webp"
    assert media["originalFilename"] == "Photo_One.png"
    assert media["altText"] == "A red square"
    assert (media["width"], media["height"]) == (1000, 800)
    assert media["storagePath"].startswith(storage_dir() + "/")
    assert media["storagePath"].endswith("-original.webp")
    assert media["url"] == "/media/" + media["storagePath"]

    variants = {v["variantName"]: v for v in media["variants"]}
    assert set(variants) == {"thumbnail", "small", "medium"}
    assert (variants["thumbnail"]["width"], variants["thumbnail"]["height"]) == (150, 150)
    assert (variants["small"]["width"], variants["small"]["height"]) == (400, 320)
    assert variants["medium"]["width"] == 800

    root = tmp_path / "media"
    assert (root / media["storagePath"]).is_file()
    for v in media["variants"]:
        assert (root / Path(v["url"][len("/media/"):])).is_file()

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "media.upload").one()
        assert ev.entity_id == str(media["id"])


def test_upload_duplicate_returns_existing(client):
    headers = _login(client)
    data = _image_bytes("PNG", size=(300, 200))
    first = _upload(client, headers, data, "a.png", "image/png")
    assert first.status_code == 201
    second = _upload(client, headers, data, "b.png", "image/png")
    assert second.status_code == 200
    assert second.json["isDuplicate"] is True
    assert second.json["media"]["id"] == first.json["media"]["id"]


def test_upload_gif_is_kept_as_is(client):
    headers = _login(client)
    data = _image_bytes("GIF", size=(600, 400))
    r = _upload(client, headers, data, "anim.gif", "image/gif")
    assert r.status_code == 201
    media = r.json["media"]
    assert media["mimeType"] == "image/gif"
    assert media["fileSize"] == len(data)
    assert media["storagePath"].endswith("-original.gif")
    assert media["variants"] == []


def test_upload_pdf_is_stored_untouched(client):
    headers = _login(client)
    data = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n%%EOF\n"
    r = _upload(client, headers, data, "resume.pdf", "application/pdf")
    assert r.status_code == 201
    assert r.json["media"]["storagePath"].endswith(".pdf")

    served = client.get(r.json["media"]["url"])
    assert served.status_code == 200
    assert served.data == data
    assert served.headers["Cache-Control"] == "public, max-age=31536000, immutable"


@pytest.mark.parametrize(
    "data,filename,mime,error",
    [
        (b"", "empty.png", "image/png", "File is empty"),
        (b"MZ\x90\x00", "tool.exe", "application/x-msdownload", "File type not allowed: application/x-msdownload"),
        (b"\x89PNG\r\n\x1a\n0000", "image.jpg", "image/png", "File extension does not match file type"),
        (b"GIF89a-not-a-png", "fake.png", "image/png", "File content does not match declared type"),
        (
            b'<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script></svg>',
            "x.svg",
            "image/svg+xml",
            "File contains potentially dangerous content",
        ),
    ],
)
def test_upload_rejections(client, data, filename, mime, error):
    headers = _login(client)
    r = _upload(client, headers, data, filename, mime)
    assert r.status_code == 400
    assert r.json["error"] == error


def test_upload_too_large(client):
    headers = _login(client)
    data = b"a" * (2 * 1024 * 1024 + 10)
    r = _upload(client, headers, data, "big.txt", "text/plain")
    assert r.status_code == 400
    assert r.json["error"] == "File too large. Maximum size is 2MB"


def test_upload_without_file(client):
    headers = _login(client)
    r = client.post("/admin/media", data={"altText": "x"}, headers=headers, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json["error"] == "No file provided"


def test_upload_rejects_oversized_pixel_count(client, monkeypatch):
    headers = _login(client)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1_000)
    r = _upload(client, headers, _image_bytes("PNG", size=(100, 100)), "huge.png", "image/png")
    assert r.status_code == 400
    assert r.json["error"] == "Image dimensions too large"


def test_media_list_filters_and_stats(client):
    headers = _login(client)
    _upload(client, headers, _image_bytes("PNG", size=(64, 64)), "small.png", "image/png")
    _upload(client, headers, b"hello notes\n", "notes.txt", "text/plain")

    r = client.get("/admin/media")
    assert r.status_code == 200
    assert r.json["total"] == 2
    assert r.json["stats"]["total"] == 2
    assert r.json["stats"]["images"] == 1
    assert r.json["stats"]["documents"] == 1

    assert client.get("/admin/media?type=images").json["total"] == 1
    assert client.get("/admin/media?search=notes").json["total"] == 1
    assert client.get("/admin/media?type=bogus").status_code == 400


def test_media_update_and_delete_removes_files(app, client, tmp_path):
    headers = _login(client)
    media = _upload(client, headers, _image_bytes("PNG"), "p.png", "image/png").json["media"]

    r = client.patch(f"/admin/media/{media['id']}", json={"altText": "new alt", "caption": "c"}, headers=headers)
    assert r.status_code == 200
    assert r.json["media"]["altText"] == "new alt"
    assert client.patch(f"/admin/media/{media['id']}", json={"altText": "x" * 301}, headers=headers).status_code == 400

    r = client.delete(f"/admin/media/{media['id']}", headers=headers)
    assert r.status_code == 200
    assert client.get(f"/admin/media/{media['id']}").status_code == 404
    assert not (tmp_path / "media" / media["storagePath"]).exists()
    with session_scope(app) as s:
        assert s.query(MediaVariant).count() == 0


def test_media_bulk_delete(app, client):
    headers = _login(client)
    a = _upload(client, headers, b"one file\n", "a.txt", "text/plain").json["media"]
    b = _upload(client, headers, b"two file\n", "b.txt", "text/plain").json["media"]

    assert client.delete("/admin/media", json={"ids": []}, headers=headers).status_code == 400
    r = client.delete("/admin/media", json={"ids": [a["id"], b["id"], 999]}, headers=headers)
    assert r.status_code == 200
    assert r.json["deleted"] == 2
    with session_scope(app) as s:
        assert s.query(MediaAsset).count() == 0


def test_delete_keeps_files_when_transaction_rolls_back(app, client, tmp_path):
    headers = _login(client)
    media = _upload(client, headers, b"keep me\n", "keep.txt", "text/plain").json["media"]
    path = tmp_path / "media" / media["storagePath"]

    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            user = s.query(User).filter(User.email == "admin@example.com").one()
            count, keys = delete_assets(s, [media["id"]], user)
            assert count == 1
            assert keys == [media["storagePath"]]
            raise RuntimeError("commit failed")

    assert path.is_file()
    with session_scope(app) as s:
        assert s.get(MediaAsset, media["id"]) is not None


def test_serving_missing_files(client):
    r = client.get("/media/uploads/2020/01/01/missing.webp")
    assert r.status_code == 200
    assert r.headers["X-Media-Status"] == "placeholder"
    assert r.mimetype == "image/svg+xml"

    r = client.get("/media/uploads/2020/01/01/missing.pdf")
    assert r.status_code == 404


def test_normalize_key_rejects_traversal(tmp_path):
    assert normalize_key("/uploads//2024/./a.webp") == "uploads/2024/a.webp"
    for bad in ("../etc/passwd", "uploads/../../x", "..\\secret", ""):
        with pytest.raises(StorageError):
            normalize_key(bad)

    storage = LocalStorage(tmp_path)
    storage.put_bytes("uploads/a.txt", b"x")
    assert storage.exists("uploads/a.txt")
    with pytest.raises(StorageError):
        storage.open("uploads/nope.txt")


def test_should_generate_skips_small_sources():
    thumbnail = IMAGE_VARIANTS[0]
    assert should_generate(thumbnail, 1000, 800)
    assert not should_generate(thumbnail, 100, 100)
    assert should_generate(thumbnail, 100, 300)


def test_process_image_caps_original_dimension():
    data = _image_bytes("JPEG", size=(3000, 1000))
    result = process_image(data, "image/jpeg", max_dimension=1500, now=datetime(2024, 5, 6))
    assert (result.original.width, result.original.height) == (1500, 500)
    assert result.original.key.startswith("uploads/2024/05/06/")
    assert [v.variant_name for v in result.variants] == ["thumbnail", "small", "medium", "large", "xlarge"]

    bare = process_image(data, "image/jpeg", generate_variants=False)
    assert bare.variants == []


def test_validate_upload_json_and_text():
    validate_upload(b'{"a": 1}', "data.json", "application/json", max_size_bytes=100)
    with pytest.raises(UploadError):
        validate_upload(b"{not json", "data.json", "application/json", max_size_bytes=100)
    with pytest.raises(UploadError):
        validate_upload(b"bad\x00bytes", "notes.txt", "text/plain", max_size_bytes=100)
