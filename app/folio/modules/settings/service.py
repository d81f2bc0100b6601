from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.folio.audit import record_event
from app.folio.modules.settings.models import SiteSetting
from app.folio.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.folio.models import User

logger = logging.getLogger(__name__)

PUBLIC_CACHE_TTL = 60  # seconds

# (key, default value, type, category, description)
DEFAULT_SETTINGS: list[tuple[str, str, str, str, str]] = [
    ("site_name", "Folio", "string", "general", "Site name displayed in header and titles"),
    ("site_description", "A personal website and blog", "string", "general", "Site description for SEO"),
    ("site_url", "http://localhost:5000", "string", "general", "Public URL of the site"),
    ("site_logo_url", "", "string", "general", "URL to site logo image"),
    ("site_favicon_url", "", "string", "general", "URL to favicon"),
    ("author_name", "Your Name", "string", "author", "Author name for attribution"),
    ("author_email", "you@example.com", "string", "author", "Contact email"),
    ("author_bio", "", "string", "author", "Short bio for sidebars"),
    ("author_tagline", "", "string", "author", "Professional tagline"),
    ("author_avatar_url", "", "string", "author", "Avatar image URL"),
    ("social_twitter", "", "string", "social", "Twitter/X profile URL"),
    ("social_github", "", "string", "social", "GitHub profile URL"),
    ("social_linkedin", "", "string", "social", "LinkedIn profile URL"),
    ("social_facebook", "", "string", "social", "Facebook profile URL"),
    ("social_instagram", "", "string", "social", "Instagram profile URL"),
    ("social_tiktok", "", "string", "social", "TikTok profile URL"),
    ("social_youtube", "", "string", "social", "YouTube channel URL"),
    ("social_discord", "", "string", "social", "Discord invite URL"),
    ("seo_title_template", "%s | Folio", "string", "seo", "Page title template"),
    ("seo_default_title", "Folio", "string", "seo", "Default page title"),
    ("seo_og_image", "", "string", "seo", "Default Open Graph image"),
    ("seo_twitter_card", "summary_large_image", "string", "seo", "Twitter card type"),
    ("contact_enabled", "true", "boolean", "contact", "Enable contact form"),
    ("contact_email", "you@example.com", "string", "contact", "Email to receive contact form submissions"),
    ("contact_success_message", "Your message has been sent successfully. Thank you!", "string", "contact", "Success message after form submission"),
    ("feature_blog_enabled", "true", "boolean", "features", "Enable blog section"),
    ("feature_projects_enabled", "true", "boolean", "features", "Enable projects section"),
    ("feature_comments_enabled", "false", "boolean", "features", "Enable blog comments"),
    ("feature_newsletter_enabled", "false", "boolean", "features", "Enable newsletter signup"),
    ("analytics_google_id", "", "string", "analytics", "Google Analytics ID"),
    ("analytics_plausible_domain", "", "string", "analytics", "Plausible Analytics domain"),
]

_SOCIAL_KEYS = ("twitter", "github", "linkedin", "facebook", "instagram", "tiktok", "youtube", "discord")


def parse_value(value: str | None, type_: str) -> Any:
    if value is None or value == "":
        return None
    if type_ == "number":
        try:
            num = float(value)
        except ValueError:
            return None
        return int(num) if num.is_integer() else num
    if type_ == "boolean":
        return value in ("true", "1")
    if type_ == "json":
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def stringify_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def serialize_setting(row: SiteSetting) -> dict:
    return {
        "key": row.key,
        "value": row.value,
        "type": row.type,
        "category": row.category,
        "description": row.description,
        "updatedAt": iso(row.updated_at),
    }


def all_settings(s: "Session") -> list[SiteSetting]:
    return list(s.scalars(select(SiteSetting).order_by(SiteSetting.category, SiteSetting.key)).all())


def settings_map(s: "Session") -> dict[str, Any]:
    return {row.key: parse_value(row.value, row.type) for row in all_settings(s)}


def settings_by_category(s: "Session") -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for row in all_settings(s):
        out.setdefault(row.category, {})[row.key] = parse_value(row.value, row.type)
    return out


def get_setting(s: "Session", key: str, default: Any = None) -> Any:
    row = s.get(SiteSetting, key)
    if row is None:
        return default
    value = parse_value(row.value, row.type)
    return default if value is None else value


def _default_map() -> dict[str, Any]:
    return {key: parse_value(value, type_) for key, value, type_, _c, _d in DEFAULT_SETTINGS}


def structure_public(values: dict[str, Any]) -> dict:
    """Shape flat settings into the public {site, author, social, seo} document."""
    def v(key: str):
        return values.get(key) or None

    return {
        "site": {
            "name": v("site_name") or "Folio",
            "description": v("site_description") or "",
            "url": v("site_url") or "",
            "logoUrl": v("site_logo_url"),
            "faviconUrl": v("site_favicon_url"),
        },
        "author": {
            "name": v("author_name") or "Admin",
            "email": v("author_email") or "",
            "bio": v("author_bio") or "",
            "tagline": v("author_tagline") or "",
            "avatarUrl": v("author_avatar_url"),
        },
        "social": {k: v(f"social_{k}") for k in _SOCIAL_KEYS},
        "seo": {
            "titleTemplate": v("seo_title_template") or "%s",
            "defaultTitle": v("seo_default_title") or v("site_name") or "Folio",
            "ogImage": v("seo_og_image"),
            "twitterCard": v("seo_twitter_card") or "summary",
        },
    }


def public_settings(s: "Session") -> dict:
    """
    Cached public settings. On a database error the last cached copy is served,
    or the built-in defaults if nothing was cached yet.
    """
    cache = current_app.extensions.setdefault("site_settings_cache", {})
    now = time.monotonic()
    if cache.get("data") is not None and now - cache.get("at", 0) < PUBLIC_CACHE_TTL:
        return cache["data"]
    try:
        data = structure_public(settings_map(s))
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Site settings read failed; serving fallback: %s", e)
        return cache.get("data") or structure_public(_default_map())
    cache["data"] = data
    cache["at"] = now
    return data


def invalidate_public_cache() -> None:
    current_app.extensions.get("site_settings_cache", {}).clear()


def validate_settings_payload(payload: Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(payload, dict) or not payload:
        return ["Settings must be a non-empty object of key/value pairs."]
    for key, value in payload.items():
        if not isinstance(key, str) or not key or len(key) > 100:
            errors.append(f"Invalid setting key: {key!r}")
        elif value is not None and not isinstance(value, (str, int, float, bool, dict, list)):
            errors.append(f"Invalid value for {key}")
    return errors


def update_settings(s: "Session", payload: dict[str, Any], user: "User | None") -> tuple[list[str], list[str]]:
    """Update existing keys only. Returns (updated, unknown)."""
    now = datetime.utcnow()
    rows = {r.key: r for r in s.scalars(select(SiteSetting).where(SiteSetting.key.in_(list(payload)))).all()}
    updated: list[str] = []
    unknown: list[str] = []
    for key, value in payload.items():
        row = rows.get(key)
        if row is None:
            unknown.append(key)
            continue
        new_value = stringify_value(value)
        if new_value != row.value:
            row.value = new_value
            row.updated_at = now
            updated.append(key)
    if updated:
        record_event(
            s,
            actor=user,
            action="settings.update",
            entity_type="SiteSetting",
            metadata={"keys": updated},
        )
    return updated, unknown


def ensure_default_settings(s: "Session") -> int:
    """Insert missing default settings; existing values are left alone."""
    existing = set(s.scalars(select(SiteSetting.key)).all())
    added = 0
    for key, value, type_, category, description in DEFAULT_SETTINGS:
        if key in existing:
            continue
        s.add(SiteSetting(key=key, value=value, type=type_, category=category, description=description))
        added += 1
    return added
