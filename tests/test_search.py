from datetime import datetime, timedelta

import pytest

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import Base
from app.folio.modules.blog.models import Post, Tag
from app.folio.modules.blog.search import highlight_snippet, search_terms


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MEDIA_ROOT", str(tmp_path / "media"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    now = datetime.utcnow()
    with session_scope(app) as s:
        flask_tag = Tag(name="Flask", slug="flask")
        s.add_all(
            [
                Post(
                    title="Deploying Flask apps",
                    slug="deploying-flask",
                    excerpt="Gunicorn and friends",
                    content_markdown="A long guide to shipping python services.",
                    status="published",
                    published_at=now - timedelta(days=2),
                    tags=[flask_tag],
                ),
                Post(
                    title="Weekend notes",
                    slug="weekend-notes",
                    excerpt="Assorted links",
                    content_markdown="I finally tried flask with htmx this weekend.",
                    status="published",
                    published_at=now - timedelta(days=1),
                ),
                Post(
                    title="Flask drafts",
                    slug="flask-drafts",
                    content_markdown="flask flask flask",
                    status="draft",
                ),
            ]
        )

    return app.test_client()


def test_search_ranks_title_hits_first(client):
    r = client.get("/api/search?q=flask")
    assert r.status_code == 200
    body = r.json
    assert body["total"] == 2
    assert [x["slug"] for x in body["results"]] == ["deploying-flask", "weekend-notes"]
    assert body["results"][0]["relevance"] == 10
    assert body["results"][1]["relevance"] == 1
    assert "flask" in body["results"][1]["excerpt"]


def test_search_requires_every_term(client):
    r = client.get("/api/search?q=flask+htmx")
    assert [x["slug"] for x in r.json["results"]] == ["weekend-notes"]


def test_search_short_query_returns_empty_with_popular(client):
    r = client.get("/api/search?q=a")
    assert r.status_code == 200
    assert r.json["results"] == []
    assert r.json["popular"] == ["Flask"]


def test_search_validation(client):
    assert client.get("/api/search").status_code == 400
    assert client.get("/api/search?q=" + "x" * 201).status_code == 400
    assert client.get("/api/search?q=flask&limit=0").status_code == 400
    assert client.get("/api/search?q=flask&limit=abc").status_code == 400
    assert client.get("/api/search?q=flask&suggestions=maybe").status_code == 400


def test_search_suggestions(client):
    r = client.get("/api/search?q=fla&suggestions=true")
    assert r.status_code == 200
    assert r.json["suggestions"] == ["Deploying Flask apps", "Tag: Flask"]


def test_search_pagination(client):
    r = client.get("/api/search?q=flask&limit=1&offset=1")
    assert r.json["total"] == 2
    assert [x["slug"] for x in r.json["results"]] == ["weekend-notes"]


def test_search_terms_normalizes():
    assert search_terms("  Flask, HTMX! a ") == ["flask", "htmx"]
    assert search_terms("") == []


def test_highlight_snippet_windows_first_hit():
    text = "x" * 100 + " flask " + "y" * 300
    snippet = highlight_snippet(text, ["flask"])
    assert snippet.startswith("...")
    assert snippet.endswith("...")
    assert "flask" in snippet
    assert highlight_snippet("short", ["nothing"]) == "short"
    assert highlight_snippet("z" * 250, ["nothing"]) == "z" * 200 + "..."
