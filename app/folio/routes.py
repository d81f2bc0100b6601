from flask import Blueprint, jsonify

from app.folio.db import db_session
from app.folio.modules.blog.service import list_published, serialize_post
from app.folio.modules.portfolio.service import list_projects, serialize_project
from app.folio.modules.settings.service import public_settings
from app.folio.ratelimit import rate_limit

bp = Blueprint("routes", __name__)


@bp.get("/")
@rate_limit("PUBLIC_API")
def index():
    """Home page payload: site info, latest posts and featured projects."""
    s = db_session()
    posts, _ = list_published(s, page=1, page_size=5)
    return jsonify(
        {
            "site": public_settings(s)["site"],
            "recentPosts": [serialize_post(p, full=False) for p in posts],
            "featuredProjects": [serialize_project(p) for p in list_projects(s, featured=True)],
        }
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200
