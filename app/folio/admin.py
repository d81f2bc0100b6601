from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from werkzeug.security import check_password_hash, generate_password_hash

from app.folio.audit import record_event
from app.folio.db import db_session
from app.folio.models import AuditEvent, User
from app.folio.modules.blog.models import Post
from app.folio.modules.blog.service import serialize_post, status_counts
from app.folio.modules.inbox.service import message_stats, recent_messages, serialize_message
from app.folio.modules.media.models import MediaAsset
from app.folio.modules.media.service import best_variant_url, delete_assets, delete_stored_files
from app.folio.modules.settings.service import invalidate_public_cache, update_settings
from app.folio.ratelimit import check_preset, rate_limit, too_many_requests
from app.folio.rbac import current_user, require_permission
from app.folio.storage import storage_from_config
from app.folio.utils import EMAIL_RE, arg_int, iso, json_body, json_error

bp = Blueprint("admin", __name__)
logger = logging.getLogger(__name__)

# payload key -> (column, max length)
PROFILE_FIELDS = {
    "displayName": ("display_name", 100),
    "bio": ("bio", 2000),
    "title": ("title", 100),
    "location": ("location", 100),
    "websiteUrl": ("website_url", 255),
    "twitterHandle": ("twitter_handle", 50),
    "githubHandle": ("github_handle", 50),
    "linkedinHandle": ("linkedin_handle", 100),
}
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 100


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


# ---------- Dashboard ----------
@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    recent_posts = s.scalars(select(Post).order_by(Post.created_at.desc(), Post.id.desc()).limit(5)).all()
    return jsonify(
        {
            "posts": status_counts(s),
            "messages": message_stats(s),
            "recentPosts": [serialize_post(p, full=False) for p in recent_posts],
            "recentMessages": [serialize_message(m, full=False) for m in recent_messages(s, 5)],
        }
    )


# ---------- Profile ----------
def _avatar_urls(asset: MediaAsset | None) -> dict:
    if asset is None:
        return {}
    return {
        "thumbnail": best_variant_url(asset, 150),
        "small": best_variant_url(asset, 400),
        "original": asset.public_url,
    }


def serialize_profile(u: User, avatar: MediaAsset | None) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "displayName": u.display_name,
        "bio": u.bio,
        "title": u.title,
        "location": u.location,
        "websiteUrl": u.website_url,
        "twitterHandle": u.twitter_handle,
        "githubHandle": u.github_handle,
        "linkedinHandle": u.linkedin_handle,
        "avatarUrl": u.avatar_url,
        "avatarMediaId": u.avatar_media_id,
        "avatarUrls": _avatar_urls(avatar),
        "lastLoginAt": iso(u.last_login_at),
        "createdAt": iso(u.created_at),
    }


def validate_profile_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    for key, (_, max_len) in PROFILE_FIELDS.items():
        if key not in payload or payload[key] is None:
            continue
        value = payload[key]
        if not isinstance(value, str):
            errors.append(f"{key} must be a string")
        elif len(value) > max_len:
            errors.append(f"{key} must be at most {max_len} characters")
    if payload.get("displayName") == "":
        errors.append("displayName cannot be empty")
    url = payload.get("websiteUrl")
    if isinstance(url, str) and url and not url.lower().startswith(("http://", "https://")):
        errors.append("websiteUrl must be an http(s) URL")
    if "avatarMediaId" in payload and payload["avatarMediaId"] is not None:
        mid = payload["avatarMediaId"]
        if isinstance(mid, bool) or not isinstance(mid, int):
            errors.append("avatarMediaId must be an integer or null")
    return errors


def _set_avatar(s, user: User, media_id: int | None) -> tuple[str | None, list[str]]:
    """Point the profile at a new avatar and delete the previous avatar asset.

    Returns (error, storage keys to remove after commit).
    """
    new_asset = None
    if media_id is not None:
        new_asset = s.get(MediaAsset, media_id)
        if new_asset is None:
            return "Avatar media not found", []

    stale_keys: list[str] = []
    old_id = user.avatar_media_id
    if old_id and old_id != media_id:
        _, stale_keys = delete_assets(s, [old_id], user)

    user.avatar_media_id = new_asset.id if new_asset else None
    user.avatar_url = best_variant_url(new_asset, 400) if new_asset else None
    update_settings(s, {"author_avatar_url": user.avatar_url}, user)
    return None, stale_keys


@bp.get("/profile")
@require_permission("admin.view")
@rate_limit("ADMIN_API")
def profile_get():
    s = db_session()
    u = current_user()
    avatar = s.get(MediaAsset, u.avatar_media_id) if u.avatar_media_id else None
    return jsonify({"data": serialize_profile(u, avatar)})


@bp.patch("/profile")
@require_permission("admin.view")
@rate_limit("ADMIN_API")
def profile_patch():
    s = db_session()
    u = current_user()
    payload = json_body()
    payload.pop("csrf_token", None)
    errors = validate_profile_payload(payload)
    if errors:
        return json_error(errors[0], 400, details=errors)

    changed: list[str] = []
    for key, (column, _) in PROFILE_FIELDS.items():
        if key in payload:
            value = payload[key]
            if isinstance(value, str):
                value = value.strip() or None
            setattr(u, column, value)
            changed.append(key)

    stale_keys: list[str] = []
    if "avatarMediaId" in payload:
        err, stale_keys = _set_avatar(s, u, payload["avatarMediaId"])
        if err:
            s.rollback()
            return json_error(err, 400)
        changed.append("avatarMediaId")

    u.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=u,
        action="user.update_profile",
        entity_type="User",
        entity_id=str(u.id),
        metadata={"fields": changed},
    )
    s.commit()
    if stale_keys:
        delete_stored_files(storage_from_config(current_app.config), stale_keys)
    if "avatarMediaId" in changed:
        invalidate_public_cache()

    avatar = s.get(MediaAsset, u.avatar_media_id) if u.avatar_media_id else None
    return jsonify({"message": "Profile updated", "data": serialize_profile(u, avatar)})


@bp.put("/profile")
@require_permission("admin.view")
def profile_security():
    limit = check_preset("PROFILE_SECURITY")
    if not limit.allowed:
        return too_many_requests(limit, "Rate limit exceeded. Please try again later.")

    s = db_session()
    u = current_user()
    body = json_body()
    action = body.get("action")
    current_password = body.get("currentPassword")
    if action not in ("email", "password"):
        return json_error("Invalid action", 400)
    if not isinstance(current_password, str) or not current_password:
        return json_error("Current password is required", 400)

    if action == "email":
        email = str(body.get("email") or "").strip().lower()
        if not EMAIL_RE.match(email) or len(email) > 255:
            return json_error("A valid email address is required", 400)
        if not check_password_hash(u.password_hash, current_password):
            return json_error("Current password is incorrect", 400)
        taken = s.scalar(select(User.id).where(User.email == email, User.id != u.id))
        if taken:
            return json_error("Email is already taken", 400)
        old_email = u.email
        u.email = email
        u.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=u,
            action="user.update_email",
            entity_type="User",
            entity_id=str(u.id),
            metadata={"from": old_email, "to": email},
        )
        s.commit()
        message = "Email updated successfully"
    else:
        new_password = body.get("newPassword")
        confirm = body.get("confirmPassword")
        if not isinstance(new_password, str) or not (MIN_PASSWORD_LENGTH <= len(new_password) <= MAX_PASSWORD_LENGTH):
            return json_error(f"New password must be {MIN_PASSWORD_LENGTH} to {MAX_PASSWORD_LENGTH} characters", 400)
        if new_password != confirm:
            return json_error("Passwords do not match", 400)
        if not check_password_hash(u.password_hash, current_password):
            return json_error("Current password is incorrect", 400)
        u.password_hash = generate_password_hash(new_password)
        u.updated_at = datetime.utcnow()
        record_event(s, actor=u, action="user.update_password", entity_type="User", entity_id=str(u.id))
        s.commit()
        message = "Password updated successfully"

    resp = jsonify({"message": message})
    resp.headers.update(limit.headers())
    return resp


# ---------- Audit ----------
def serialize_audit_event(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "createdAt": iso(ev.created_at),
        "requestId": ev.request_id,
        "actorUserId": ev.actor_user_id,
        "actorEmail": ev.actor_user_email,
        "action": ev.action,
        "entityType": ev.entity_type,
        "entityId": ev.entity_id,
        "reason": ev.reason,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
        "clientIp": ev.client_ip,
    }


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail (newest first) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    raw_from = (request.args.get("date_from") or "").strip()
    raw_to = (request.args.get("date_to") or "").strip()
    date_from = _parse_date(raw_from)
    date_to = _parse_date(raw_to)
    if (raw_from and not date_from) or (raw_to and not date_to):
        return json_error("date_from/date_to must be YYYY-MM-DD", 400)
    limit = arg_int("limit", 200, minimum=1, maximum=500)

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
    return jsonify({"events": [serialize_audit_event(ev) for ev in events]})
