from flask import Blueprint, jsonify

from app.folio.db import db_session
from app.folio.modules.settings.service import public_settings
from app.folio.ratelimit import rate_limit

bp = Blueprint("site_settings", __name__)


@bp.get("/api/site-settings")
@rate_limit("PUBLIC_API")
def site_settings():
    resp = jsonify({"data": public_settings(db_session())})
    resp.headers["Cache-Control"] = "public, s-maxage=60, stale-while-revalidate=120"
    return resp
