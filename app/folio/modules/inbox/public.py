from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from app.folio.db import db_session
from app.folio.modules.inbox.service import create_contact_message, sanitize_contact, validate_contact_payload
from app.folio.modules.settings.service import get_setting
from app.folio.ratelimit import check_preset, too_many_requests
from app.folio.security import MIN_SUBMIT_MS, client_ip, detect_bot
from app.folio.utils import json_body, json_error

bp = Blueprint("contact", __name__)
logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Your message has been sent successfully. Thank you!"


def _fake_success():
    # Bots get the same answer as humans so the filter is not probed.
    return jsonify({"success": True, "message": SUCCESS_MESSAGE}), 201


def _ms_to_iso(ms: int | float) -> str | None:
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


@bp.post("/api/contact")
def contact_submit():
    s = db_session()
    if get_setting(s, "contact_enabled", True) is False:
        return json_error("The contact form is currently disabled.", 403)

    ip = client_ip()
    user_agent = request.headers.get("User-Agent") or ""

    limit = check_preset("CONTACT", ip)
    if not limit.allowed:
        return too_many_requests(limit)

    payload = json_body()
    honeypot = payload.get("website")
    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
        timestamp = None
    now_ms = int(time.time() * 1000)

    if honeypot:
        logger.warning("Contact honeypot triggered ip=%s", ip)
        return _fake_success()
    if timestamp and now_ms - timestamp < MIN_SUBMIT_MS:
        logger.warning("Contact submitted too fast (%sms) ip=%s", now_ms - timestamp, ip)
        return _fake_success()
    bot = detect_bot(user_agent=user_agent, timestamp_ms=timestamp, honeypot=honeypot, now_ms=now_ms)
    if bot.is_likely_bot:
        logger.warning("Contact bot detected ip=%s reasons=%s", ip, ", ".join(bot.reasons))
        return _fake_success()

    errors = validate_contact_payload(payload)
    if errors:
        return json_error(errors[0], 400)

    clean = sanitize_contact(payload)
    if not clean["message"]:
        return json_error("Message cannot be empty after removing invalid content", 400)

    msg = create_contact_message(
        s,
        clean,
        ip=ip,
        user_agent=user_agent,
        metadata={
            "referrer": request.headers.get("Referer"),
            "submittedAt": datetime.now(timezone.utc).isoformat(),
            "formLoadedAt": _ms_to_iso(timestamp) if timestamp else None,
            "submissionDurationMs": now_ms - timestamp if timestamp else None,
        },
    )
    s.commit()
    logger.info("Contact message stored id=%s", msg.id)

    success_message = get_setting(s, "contact_success_message", SUCCESS_MESSAGE)
    resp = jsonify({"success": True, "message": success_message, "id": msg.id})
    resp.headers.update(limit.headers())
    return resp, 201
