from __future__ import annotations

import uuid
from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.folio.audit import record_event
from app.folio.db import db_session
from app.folio.models import User
from app.folio.ratelimit import check_preset, too_many_requests
from app.folio.rbac import user_permission_keys
from app.folio.security import client_ip, ensure_csrf_token
from app.folio.utils import json_error

bp = Blueprint("auth", __name__)


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz", "/media/")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except (SQLAlchemyError, ValueError, TypeError) as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "displayName": u.display_name,
        "roles": sorted(r.key for r in u.roles),
        "permissions": user_permission_keys(u),
    }


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//") and "\\" not in nxt:
        return nxt
    return None


def _login_fields() -> tuple[str, str, str]:
    if request.is_json:
        data = request.get_json(silent=True)
        data = data if isinstance(data, dict) else {}
    else:
        data = request.form
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    nxt = str(data.get("next") or "").strip()
    return email, password, nxt


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return jsonify({"next": _safe_next(nxt), "csrfToken": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    email, password, nxt = _login_fields()
    ip = client_ip()

    limit = check_preset("LOGIN", ip)
    if not limit.allowed:
        current_app.logger.warning("Login rate limit hit ip=%s", ip)
        return too_many_requests(limit, "Too many login attempts. Please try again later.")

    if not email or not password:
        return json_error("Email and password are required", 400)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return json_error("Invalid credentials", 401)

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        user.last_login_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify(
            {
                "ok": True,
                "user": serialize_user(user),
                "csrfToken": ensure_csrf_token(),
                "next": _safe_next(nxt) or "/admin/",
            }
        )
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        return json_error("Not authenticated", 401)
    return jsonify({"user": serialize_user(user), "csrfToken": ensure_csrf_token()})
