from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.folio.db import db_session
from app.folio.modules.inbox.models import MESSAGE_STATUSES, InboxMessage
from app.folio.modules.inbox.service import (
    BULK_ACTIONS,
    bulk_action,
    hard_delete,
    list_messages,
    message_stats,
    serialize_message,
    set_status,
    unread_count,
)
from app.folio.rbac import current_user, require_permission
from app.folio.utils import arg_int, json_body, json_error, page_meta

bp = Blueprint("inbox_admin", __name__)


def _ids_from_body(body: dict) -> list[int] | None:
    ids = body.get("ids")
    if not isinstance(ids, list) or not ids:
        return None
    try:
        return [int(i) for i in ids]
    except (TypeError, ValueError):
        return None


@bp.get("/messages")
@require_permission("inbox.view")
def messages_list():
    s = db_session()
    page = arg_int("page", 1, minimum=1)
    page_size = arg_int("pageSize", 20, minimum=1, maximum=100)
    status = (request.args.get("status") or "").strip() or None
    if status and status not in MESSAGE_STATUSES:
        return json_error(f"Invalid status. Must be one of: {', '.join(MESSAGE_STATUSES)}", 400)
    messages, total = list_messages(s, page=page, page_size=page_size, status=status)
    return jsonify(
        {
            "messages": [serialize_message(m, full=False) for m in messages],
            **page_meta(total, page, page_size),
            "stats": message_stats(s),
        }
    )


@bp.patch("/messages")
@require_permission("inbox.manage")
def messages_bulk_update():
    s = db_session()
    body = json_body()
    ids = _ids_from_body(body)
    if ids is None:
        return json_error("Message IDs are required", 400)
    action = body.get("action")
    if action not in BULK_ACTIONS:
        return json_error("Invalid action", 400)
    count = bulk_action(s, ids, action, current_user())
    s.commit()
    return jsonify({"success": True, "count": count})


@bp.delete("/messages")
@require_permission("inbox.manage")
def messages_purge():
    s = db_session()
    ids = _ids_from_body(json_body())
    if ids is None:
        return json_error("Message IDs are required", 400)
    count = hard_delete(s, ids, current_user())
    s.commit()
    return jsonify({"success": True, "count": count})


@bp.get("/messages/<int:message_id>")
@require_permission("inbox.view")
def message_detail(message_id: int):
    s = db_session()
    msg = s.get(InboxMessage, message_id)
    if not msg:
        return json_error("Message not found", 404)
    if msg.status == "unread":
        set_status(s, msg, "read")
        s.commit()
    return jsonify({"message": serialize_message(msg)})


@bp.patch("/messages/<int:message_id>")
@require_permission("inbox.manage")
def message_update(message_id: int):
    s = db_session()
    msg = s.get(InboxMessage, message_id)
    if not msg:
        return json_error("Message not found", 404)
    status = json_body().get("status")
    if status not in MESSAGE_STATUSES:
        return json_error("Invalid status", 400)
    set_status(s, msg, status, current_user())
    s.commit()
    return jsonify({"message": serialize_message(msg)})


@bp.delete("/messages/<int:message_id>")
@require_permission("inbox.manage")
def message_delete(message_id: int):
    s = db_session()
    msg = s.get(InboxMessage, message_id)
    if not msg:
        return json_error("Message not found", 404)
    set_status(s, msg, "deleted", current_user())
    s.commit()
    return jsonify({"success": True})


@bp.get("/inbox/unread-count")
@require_permission("inbox.view")
def inbox_unread_count():
    return jsonify({"count": unread_count(db_session())})
