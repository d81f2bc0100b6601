from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from app.folio.db import db_session
from app.folio.modules.media.models import MediaAsset
from app.folio.modules.media.processing import TYPE_GROUPS, UploadError
from app.folio.modules.media.service import (
    delete_assets,
    delete_stored_files,
    list_assets,
    media_stats,
    serialize_asset,
    update_asset,
    upload_asset,
    validate_asset_update,
)
from app.folio.ratelimit import check_preset, rate_limit, too_many_requests
from app.folio.rbac import current_user, require_permission
from app.folio.security import client_ip
from app.folio.storage import StorageError, storage_from_config
from app.folio.utils import arg_int, json_body, json_error, page_meta

bp = Blueprint("media_admin", __name__)
logger = logging.getLogger(__name__)

MEDIA_TYPES = (*TYPE_GROUPS.keys(), "other")


def _get_asset_or_404(s, asset_id: int):
    asset = s.get(MediaAsset, asset_id)
    if not asset:
        return None, json_error("Media asset not found", 404)
    return asset, None


@bp.get("/media")
@require_permission("media.view")
@rate_limit("ADMIN_API")
def media_list():
    s = db_session()
    page = arg_int("page", 1, minimum=1)
    limit = arg_int("limit", 20, minimum=1, maximum=100)
    type_ = (request.args.get("type") or "").strip() or None
    if type_ and type_ not in MEDIA_TYPES:
        return json_error(f"Invalid type. Must be one of: {', '.join(MEDIA_TYPES)}", 400)
    search = (request.args.get("search") or "").strip() or None
    if search and len(search) > 100:
        return json_error("Search query too long", 400)

    assets, total = list_assets(s, page=page, page_size=limit, type_=type_, search=search)
    return jsonify(
        {
            "media": [serialize_asset(a) for a in assets],
            **page_meta(total, page, limit),
            "stats": media_stats(s),
        }
    )


@bp.post("/media")
@require_permission("media.upload")
def media_upload():
    limit = check_preset("UPLOAD")
    if not limit.allowed:
        return too_many_requests(limit, "Upload rate limit exceeded. Please try again later.")

    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file provided", 400)

    s = db_session()
    cfg = current_app.config
    data = f.read()
    filename = secure_filename(f.filename) or "upload.bin"
    mime_type = (f.mimetype or "application/octet-stream").strip().lower()

    try:
        asset, duplicate = upload_asset(
            s,
            storage_from_config(cfg),
            data=data,
            filename=filename,
            mime_type=mime_type,
            alt_text=request.form.get("altText"),
            user=current_user(),
            upload_ip=client_ip(),
            max_size_bytes=int(cfg.get("UPLOAD_MAX_SIZE_MB", 50)) * 1024 * 1024,
            max_dimension=int(cfg.get("UPLOAD_MAX_DIMENSION", 4096)),
            generate_variants=bool(cfg.get("UPLOAD_GENERATE_VARIANTS", True)),
        )
    except UploadError as e:
        return json_error(str(e), 400)
    except StorageError:
        s.rollback()
        logger.exception("Media upload storage failure filename=%s", filename)
        return json_error("Failed to upload file", 500)

    if duplicate:
        resp = jsonify({"media": serialize_asset(asset), "isDuplicate": True, "message": "This file has already been uploaded"})
        resp.headers.update(limit.headers())
        return resp, 200

    s.commit()
    logger.info("Media uploaded id=%s mime=%s variants=%s", asset.id, asset.mime_type, len(asset.variants))
    resp = jsonify({"media": serialize_asset(asset), "isDuplicate": False})
    resp.headers.update(limit.headers())
    return resp, 201


@bp.delete("/media")
@require_permission("media.delete")
@rate_limit("ADMIN_API")
def media_bulk_delete():
    ids = json_body().get("ids")
    if not isinstance(ids, list) or not (1 <= len(ids) <= 100):
        return json_error("Between 1 and 100 media IDs are required", 400)
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return json_error("Invalid media ID", 400)

    s = db_session()
    count, keys = delete_assets(s, ids, current_user())
    s.commit()
    delete_stored_files(storage_from_config(current_app.config), keys)
    return jsonify({"success": True, "deleted": count})


@bp.get("/media/<int:asset_id>")
@require_permission("media.view")
@rate_limit("ADMIN_API")
def media_detail(asset_id: int):
    asset, err = _get_asset_or_404(db_session(), asset_id)
    if err:
        return err
    return jsonify({"media": serialize_asset(asset)})


@bp.patch("/media/<int:asset_id>")
@require_permission("media.upload")
@rate_limit("ADMIN_API")
def media_update(asset_id: int):
    s = db_session()
    asset, err = _get_asset_or_404(s, asset_id)
    if err:
        return err
    payload = json_body()
    errors = validate_asset_update(payload)
    if errors:
        return json_error(errors[0], 400, details=errors)
    update_asset(s, asset, payload, current_user())
    s.commit()
    return jsonify({"media": serialize_asset(asset)})


@bp.delete("/media/<int:asset_id>")
@require_permission("media.delete")
@rate_limit("ADMIN_API")
def media_delete(asset_id: int):
    s = db_session()
    asset, err = _get_asset_or_404(s, asset_id)
    if err:
        return err
    _, keys = delete_assets(s, [asset.id], current_user())
    s.commit()
    delete_stored_files(storage_from_config(current_app.config), keys)
    return jsonify({"success": True})
