import re
import secrets
import time
from dataclasses import dataclass, field

from flask import Request, Response, request, session

BOT_UA_PATTERNS = ("bot", "crawler", "spider", "headless", "phantom", "selenium", "puppeteer", "playwright")
MIN_SUBMIT_MS = 3000

_CSP_DIRECTIVES = (
    ("default-src", "'self'"),
    ("script-src", "'self'"),
    ("style-src", "'self' 'unsafe-inline' https://fonts.googleapis.com"),
    ("img-src", "'self' data: blob: https:"),
    ("font-src", "'self' https://fonts.gstatic.com"),
    ("connect-src", "'self'"),
    ("frame-ancestors", "'none'"),
    ("base-uri", "'self'"),
    ("form-action", "'self'"),
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "; ".join(f"{k} {v}" for k, v in _CSP_DIRECTIVES),
}


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        data = req.get_json(silent=True)
        if isinstance(data, dict):
            token = data.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def apply_security_headers(response: Response) -> Response:
    for key, value in SECURITY_HEADERS.items():
        response.headers.setdefault(key, value)
    return response


def client_ip(req: Request | None = None) -> str:
    """
    Best-effort client address: first X-Forwarded-For hop, then X-Real-IP, then the socket peer.
    IPv4-mapped IPv6 addresses are unwrapped.
    """
    req = req or request
    ip = ""
    forwarded = req.headers.get("X-Forwarded-For") or ""
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    if not ip:
        ip = (req.headers.get("X-Real-IP") or "").strip()
    if not ip:
        ip = req.remote_addr or ""
    if ip.startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip or "unknown"


@dataclass
class BotCheck:
    is_likely_bot: bool
    reasons: list[str] = field(default_factory=list)


def detect_bot(
    *,
    user_agent: str | None,
    timestamp_ms: int | float | None = None,
    honeypot: str | None = None,
    now_ms: int | None = None,
) -> BotCheck:
    """Cheap heuristics for form spam: honeypot, submit speed, user agent."""
    reasons: list[str] = []
    if honeypot:
        reasons.append("Honeypot field filled")

    if timestamp_ms:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        if now_ms - timestamp_ms < MIN_SUBMIT_MS:
            reasons.append("Submitted too quickly")

    ua = (user_agent or "").lower()
    if any(p in ua for p in BOT_UA_PATTERNS):
        reasons.append("Bot user agent detected")
    if not ua or len(ua) < 10:
        reasons.append("Missing or suspicious user agent")

    return BotCheck(is_likely_bot=bool(reasons), reasons=reasons)


_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def strip_tags(value: str | None) -> str:
    """Remove script blocks and any remaining markup, then trim."""
    if not value:
        return ""
    value = _SCRIPT_RE.sub("", value)
    value = _TAG_RE.sub("", value)
    return value.strip()
