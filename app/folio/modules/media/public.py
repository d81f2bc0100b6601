from __future__ import annotations

import mimetypes

from flask import Blueprint, Response, current_app, send_file

from app.folio.storage import StorageError, normalize_key, storage_from_config
from app.folio.utils import json_error

bp = Blueprint("media", __name__)

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tif", ".tiff")

PLACEHOLDER_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300" viewBox="0 0 400 300">'
    '<rect width="400" height="300" fill="#e5e7eb"/>'
    '<text x="200" y="155" font-family="sans-serif" font-size="16" fill="#6b7280" text-anchor="middle">'
    "Image unavailable</text></svg>"
)


def _placeholder() -> Response:
    resp = Response(PLACEHOLDER_SVG, mimetype="image/svg+xml")
    resp.headers["Cache-Control"] = "no-cache"
    resp.headers["X-Media-Status"] = "placeholder"
    return resp


@bp.get("/media/<path:key>")
def media_file(key: str):
    try:
        key = normalize_key(key)
    except StorageError:
        return json_error("Invalid path", 400)

    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(key)
    except StorageError:
        if key.lower().endswith(IMAGE_EXTENSIONS):
            return _placeholder()
        return json_error("File not found", 404)

    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    resp = send_file(fobj, mimetype=mimetype, download_name=key.rsplit("/", 1)[-1], max_age=31536000)
    resp.headers["Cache-Control"] = IMMUTABLE_CACHE
    return resp
