from datetime import date

import pytest

from app.folio import create_app
from app.folio.db import session_scope
from app.folio.models import Base
from app.folio.modules.portfolio.models import (
    Certification,
    Education,
    Experience,
    ExperienceHighlight,
    ExperienceTechnology,
    Project,
    ProjectTechnology,
    Skill,
)
from app.folio.modules.portfolio.service import FEATURED_PROJECTS_LIMIT


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MEDIA_ROOT", str(tmp_path / "media"))
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _project(slug, *, sort_order=0, featured=False, private=False, techs=()):
    p = Project(
        title=slug.title(),
        slug=slug,
        description=f"About {slug}",
        is_featured=featured,
        is_private=private,
        sort_order=sort_order,
    )
    p.technologies = [ProjectTechnology(technology=t, sort_order=i) for i, t in enumerate(techs)]
    return p


def test_projects_list_hides_private_and_sorts(app, client):
    with session_scope(app) as s:
        s.add_all(
            [
                _project("second", sort_order=2),
                _project("first", sort_order=1, techs=("Python", "Flask")),
                _project("secret", sort_order=0, private=True),
            ]
        )

    r = client.get("/api/projects")
    assert r.status_code == 200
    projects = r.json["projects"]
    assert [p["slug"] for p in projects] == ["first", "second"]
    assert projects[0]["technologies"] == ["Python", "Flask"]

    assert client.get("/api/projects/first").json["project"]["title"] == "First"
    assert client.get("/api/projects/secret").status_code == 404
    assert client.get("/api/projects/missing").status_code == 404


def test_featured_projects_are_capped(app, client):
    with session_scope(app) as s:
        s.add_all([_project(f"p{i}", sort_order=i, featured=True) for i in range(FEATURED_PROJECTS_LIMIT + 2)])
        s.add(_project("plain"))

    featured = client.get("/api/projects?featured=true").json["projects"]
    assert len(featured) == FEATURED_PROJECTS_LIMIT
    assert all(p["isFeatured"] for p in featured)
    assert featured[0]["slug"] == "p0"

    home = client.get("/").json
    assert len(home["featuredProjects"]) == FEATURED_PROJECTS_LIMIT


def test_resume(app, client):
    with session_scope(app) as s:
        s.add_all(
            [
                Skill(name="Python", category="backend", sort_order=0),
                Skill(name="Postgres", category="backend", sort_order=1),
                Skill(name="CSS", category="frontend", sort_order=0),
                Experience(
                    title="Engineer",
                    company="Old Co",
                    start_date=date(2018, 1, 1),
                    end_date=date(2020, 6, 1),
                ),
                Experience(
                    title="Senior Engineer",
                    company="New Co",
                    start_date=date(2020, 7, 1),
                    is_current=True,
                    highlights=[ExperienceHighlight(highlight="Shipped the thing", sort_order=0)],
                    technologies=[ExperienceTechnology(technology="Go", sort_order=0)],
                ),
                Education(degree="BSc", school="State University", field_of_study="CS", end_date=date(2017, 5, 1)),
                Certification(name="Cloud Cert", issuer="Cloud Inc", issue_date=date(2022, 3, 1)),
            ]
        )

    r = client.get("/api/resume")
    assert r.status_code == 200
    data = r.json
    assert {k: [x["name"] for x in v] for k, v in data["skills"].items()} == {
        "backend": ["Python", "Postgres"],
        "frontend": ["CSS"],
    }
    assert [e["company"] for e in data["experiences"]] == ["New Co", "Old Co"]
    current = data["experiences"][0]
    assert current["isCurrent"] is True
    assert current["endDate"] is None
    assert current["highlights"] == ["Shipped the thing"]
    assert current["technologies"] == ["Go"]
    assert data["education"][0]["school"] == "State University"
    assert data["certifications"][0]["name"] == "Cloud Cert"
