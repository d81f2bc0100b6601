from __future__ import annotations

import math

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_, select

from app.folio.db import db_session
from app.folio.modules.blog.models import POST_STATUSES, Post
from app.folio.modules.blog.service import (
    PostError,
    create_post,
    delete_post,
    serialize_post,
    update_post,
    validate_post_payload,
)
from app.folio.rbac import current_user, require_permission
from app.folio.utils import arg_int, json_body, json_error

bp = Blueprint("blog_admin", __name__)


# ---------- List ----------
@bp.get("/posts")
@require_permission("posts.view")
def posts_list():
    s = db_session()
    page = arg_int("page", 1, minimum=1)
    limit = arg_int("limit", 10, minimum=1, maximum=100)
    status = (request.args.get("status") or "").strip()
    search = (request.args.get("search") or "").strip()

    q = select(Post)
    if status and status != "all":
        if status not in POST_STATUSES:
            return json_error(f"Invalid status. Must be one of: {', '.join(POST_STATUSES)}", 400)
        q = q.where(Post.status == status)
    if search:
        like = f"%{search}%"
        q = q.where(or_(Post.title.ilike(like), Post.excerpt.ilike(like)))

    total = s.scalar(select(func.count()).select_from(q.subquery())) or 0
    posts = s.scalars(q.order_by(Post.created_at.desc(), Post.id.desc()).limit(limit).offset((page - 1) * limit)).all()
    return jsonify(
        {
            "posts": [serialize_post(p, full=False) for p in posts],
            "pagination": {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit)},
        }
    )


# ---------- Create ----------
@bp.post("/posts")
@require_permission("posts.edit")
def posts_create():
    s = db_session()
    payload = json_body()
    errors = validate_post_payload(payload)
    if errors:
        return json_error(errors[0], 400, details=errors)
    try:
        post = create_post(s, payload, current_user())
    except PostError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"post": serialize_post(post)}), 201


# ---------- Detail ----------
@bp.get("/posts/<int:post_id>")
@require_permission("posts.view")
def post_detail(post_id: int):
    post = db_session().get(Post, post_id)
    if not post:
        return json_error("Post not found", 404)
    return jsonify({"post": serialize_post(post)})


@bp.route("/posts/<int:post_id>", methods=["PUT", "PATCH"])
@require_permission("posts.edit")
def post_update(post_id: int):
    s = db_session()
    post = s.get(Post, post_id)
    if not post:
        return json_error("Post not found", 404)
    payload = json_body()
    errors = validate_post_payload(payload, partial=True)
    if errors:
        return json_error(errors[0], 400, details=errors)
    try:
        update_post(s, post, payload, current_user())
    except PostError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"post": serialize_post(post)})


@bp.delete("/posts/<int:post_id>")
@require_permission("posts.edit")
def post_delete(post_id: int):
    s = db_session()
    post = s.get(Post, post_id)
    if not post:
        return json_error("Post not found", 404)
    delete_post(s, post, current_user())
    s.commit()
    return jsonify({"success": True})
