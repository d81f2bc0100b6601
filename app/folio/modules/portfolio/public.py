from flask import Blueprint, jsonify, request

from app.folio.db import db_session
from app.folio.modules.portfolio.service import get_project_by_slug, list_projects, resume_data, serialize_project
from app.folio.ratelimit import rate_limit
from app.folio.utils import json_error

bp = Blueprint("portfolio", __name__)


@bp.get("/api/projects")
@rate_limit("PUBLIC_API")
def projects_list():
    featured = (request.args.get("featured") or "").lower() == "true"
    projects = list_projects(db_session(), featured=featured)
    return jsonify({"projects": [serialize_project(p) for p in projects]})


@bp.get("/api/projects/<slug>")
@rate_limit("PUBLIC_API")
def project_detail(slug: str):
    project = get_project_by_slug(db_session(), slug)
    if not project:
        return json_error("Project not found", 404)
    return jsonify({"project": serialize_project(project)})


@bp.get("/api/resume")
@rate_limit("PUBLIC_API")
def resume():
    return jsonify(resume_data(db_session()))
