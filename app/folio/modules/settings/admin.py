from flask import Blueprint, jsonify, request

from app.folio.db import db_session
from app.folio.modules.settings.service import (
    all_settings,
    invalidate_public_cache,
    serialize_setting,
    settings_by_category,
    settings_map,
    structure_public,
    update_settings,
    validate_settings_payload,
)
from app.folio.rbac import current_user, require_permission
from app.folio.utils import json_error

bp = Blueprint("settings_admin", __name__)


@bp.get("/settings")
@require_permission("settings.edit")
def settings_get():
    s = db_session()
    fmt = (request.args.get("format") or "grouped").strip().lower()
    if fmt == "raw":
        return jsonify({"settings": [serialize_setting(r) for r in all_settings(s)]})
    if fmt == "structured":
        return jsonify({"settings": structure_public(settings_map(s))})
    if fmt != "grouped":
        return json_error("format must be one of: grouped, raw, structured", 400)
    return jsonify({"settings": settings_by_category(s)})


@bp.put("/settings")
@require_permission("settings.edit")
def settings_put():
    s = db_session()
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        payload = {k: v for k, v in payload.items() if k != "csrf_token"}
    errors = validate_settings_payload(payload)
    if errors:
        return json_error(errors[0], 400, details=errors)
    updated, unknown = update_settings(s, payload, current_user())
    s.commit()
    invalidate_public_cache()
    return jsonify({"success": True, "updated": updated, "unknown": unknown})
