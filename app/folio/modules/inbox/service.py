from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update

from app.folio.audit import record_event
from app.folio.modules.inbox.models import MESSAGE_STATUSES, InboxMessage
from app.folio.security import strip_tags
from app.folio.utils import EMAIL_RE, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.folio.models import User

# action -> resulting status
BULK_ACTIONS = {
    "read": "read",
    "unread": "unread",
    "archive": "archived",
    "spam": "spam",
    "delete": "deleted",
    "restore": "read",
}


def serialize_message(m: InboxMessage, *, full: bool = True) -> dict:
    data = {
        "id": m.id,
        "source": m.source,
        "name": m.name,
        "email": m.email,
        "subject": m.subject,
        "status": m.status,
        "createdAt": iso(m.created_at),
        "readAt": iso(m.read_at),
    }
    if full:
        data.update({"body": m.body, "ip": m.ip, "userAgent": m.user_agent, "metadata": m.metadata_json or {}})
    else:
        data["preview"] = (m.body or "")[:140]
    return data


# ---------- Contact form ----------
def validate_contact_payload(payload: dict) -> list[str]:
    """Validate a contact submission. Returns list of errors."""
    errors: list[str] = []
    name = payload.get("name")
    email = payload.get("email")
    subject = payload.get("subject")
    message = payload.get("message")

    if not isinstance(name, str) or not name.strip():
        errors.append("Name is required")
    elif len(name) > 200:
        errors.append("Name too long")

    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        errors.append("Please enter a valid email address")
    elif len(email) > 255:
        errors.append("Email too long")

    if subject is not None and (not isinstance(subject, str) or len(subject) > 500):
        errors.append("Subject too long")

    if not isinstance(message, str) or len(message.strip()) < 10:
        errors.append("Message must be at least 10 characters")
    elif len(message) > 5000:
        errors.append("Message too long")
    return errors


def sanitize_contact(payload: dict) -> dict:
    return {
        "name": strip_tags(str(payload.get("name") or ""))[:200],
        "email": str(payload.get("email") or "").strip().lower()[:255],
        "subject": strip_tags(str(payload.get("subject") or ""))[:500] or None,
        "message": strip_tags(str(payload.get("message") or ""))[:10000],
    }


def create_contact_message(
    s: "Session",
    clean: dict,
    *,
    ip: str | None,
    user_agent: str | None,
    metadata: dict | None = None,
) -> InboxMessage:
    msg = InboxMessage(
        source="contact",
        name=clean["name"] or "Anonymous",
        email=clean["email"],
        subject=clean["subject"],
        body=clean["message"],
        status="unread",
        ip=ip,
        user_agent=user_agent,
        metadata_json=metadata,
        created_at=datetime.utcnow(),
    )
    s.add(msg)
    s.flush()
    return msg


# ---------- Admin ----------
def list_messages(s: "Session", *, page: int = 1, page_size: int = 20, status: str | None = None) -> tuple[list[InboxMessage], int]:
    q = select(InboxMessage)
    if status:
        q = q.where(InboxMessage.status == status)
    else:
        q = q.where(InboxMessage.status != "deleted")
    total = s.scalar(select(func.count()).select_from(q.subquery())) or 0
    rows = s.scalars(
        q.order_by(InboxMessage.created_at.desc(), InboxMessage.id.desc()).limit(page_size).offset((page - 1) * page_size)
    ).all()
    return list(rows), int(total)


def message_stats(s: "Session") -> dict[str, int]:
    stats = {"total": 0, "unread": 0, "read": 0, "archived": 0, "spam": 0}
    rows = s.execute(
        select(InboxMessage.status, func.count()).where(InboxMessage.status != "deleted").group_by(InboxMessage.status)
    ).all()
    for status, n in rows:
        if status in stats:
            stats[status] = int(n)
        stats["total"] += int(n)
    return stats


def unread_count(s: "Session") -> int:
    return int(s.scalar(select(func.count()).select_from(InboxMessage).where(InboxMessage.status == "unread")) or 0)


def set_status(s: "Session", msg: InboxMessage, status: str, user: "User | None" = None) -> InboxMessage:
    if status not in MESSAGE_STATUSES:
        raise ValueError(f"Invalid status: {status}")
    old = msg.status
    msg.status = status
    if status == "read" and msg.read_at is None:
        msg.read_at = datetime.utcnow()
    if user is not None and old != status:
        record_event(
            s,
            actor=user,
            action="inbox.status",
            entity_type="InboxMessage",
            entity_id=str(msg.id),
            metadata={"old": old, "new": status},
        )
    return msg


def bulk_action(s: "Session", ids: list[int], action: str, user: "User") -> int:
    status = BULK_ACTIONS[action]
    values: dict = {"status": status}
    if status == "read":
        values["read_at"] = func.coalesce(InboxMessage.read_at, datetime.utcnow())
    res = s.execute(update(InboxMessage).where(InboxMessage.id.in_(ids)).values(**values))
    count = int(res.rowcount or 0)
    record_event(
        s,
        actor=user,
        action=f"inbox.bulk_{action}",
        entity_type="InboxMessage",
        metadata={"ids": ids, "count": count},
    )
    return count


def hard_delete(s: "Session", ids: list[int], user: "User") -> int:
    res = s.execute(delete(InboxMessage).where(InboxMessage.id.in_(ids)))
    count = int(res.rowcount or 0)
    record_event(
        s,
        actor=user,
        action="inbox.purge",
        entity_type="InboxMessage",
        metadata={"ids": ids, "count": count},
    )
    return count


def recent_messages(s: "Session", limit: int = 5) -> list[InboxMessage]:
    return list(
        s.scalars(
            select(InboxMessage)
            .where(InboxMessage.status != "deleted")
            .order_by(InboxMessage.created_at.desc(), InboxMessage.id.desc())
            .limit(limit)
        ).all()
    )
