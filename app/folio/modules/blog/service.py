from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import and_, func, or_, select

from app.folio.audit import record_event
from app.folio.modules.blog.models import POST_STATUSES, Post, PostTag, Tag
from app.folio.modules.blog.rendering import auto_excerpt, reading_time_minutes, render_markdown
from app.folio.utils import SLUG_RE, iso, parse_datetime, slugify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.folio.models import User


class PostError(ValueError):
    """Client-facing post validation failure (maps to 400)."""


def visible_clause(now: datetime | None = None):
    """Posts a visitor may see: published with a date, or scheduled and due."""
    now = now or datetime.utcnow()
    return or_(
        and_(Post.status == "published", Post.published_at.isnot(None)),
        and_(Post.status == "scheduled", Post.published_at.isnot(None), Post.published_at <= now),
    )


def is_visible(post: Post, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    if post.published_at is None:
        return False
    if post.status == "published":
        return True
    return post.status == "scheduled" and post.published_at <= now


# ---------- Serialization ----------
def serialize_tag(tag: Tag) -> dict:
    return {"id": tag.id, "name": tag.name, "slug": tag.slug, "description": tag.description}


def serialize_post(post: Post, *, full: bool = True) -> dict:
    data = {
        "id": post.id,
        "slug": post.slug,
        "title": post.title,
        "excerpt": post.excerpt,
        "coverImage": post.featured_image_url,
        "coverImageAlt": post.featured_image_alt,
        "status": post.status,
        "publishedAt": iso(post.published_at),
        "createdAt": iso(post.created_at),
        "updatedAt": iso(post.updated_at),
        "readingTime": post.reading_time_minutes,
        "tags": [serialize_tag(t) for t in post.tags],
    }
    if full:
        data.update(
            {
                "contentMarkdown": post.content_markdown,
                "contentHtml": post.content_html,
                "metaTitle": post.seo_title,
                "metaDescription": post.seo_description,
                "canonicalUrl": post.canonical_url,
                "noindex": post.noindex,
                "author": _serialize_author(post),
            }
        )
    return data


def _serialize_author(post: Post) -> dict | None:
    a = post.author
    if a is None:
        return None
    return {"name": a.display_name or a.email.split("@")[0], "avatarUrl": a.avatar_url, "title": a.title}


# ---------- Public queries ----------
def list_published(s: "Session", *, page: int = 1, page_size: int = 10, tag: Tag | None = None) -> tuple[list[Post], int]:
    base = select(Post).where(visible_clause())
    if tag is not None:
        base = base.join(PostTag, PostTag.post_id == Post.id).where(PostTag.tag_id == tag.id)
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    posts = s.scalars(
        base.order_by(Post.published_at.desc(), Post.id.desc()).limit(page_size).offset((page - 1) * page_size)
    ).all()
    return list(posts), int(total)


def get_published_by_slug(s: "Session", slug: str) -> Post | None:
    return s.scalars(select(Post).where(Post.slug == slug, visible_clause())).first()


def related_posts(s: "Session", post: Post, limit: int = 3) -> list[Post]:
    """Other visible posts ranked by number of shared tags, newest first on ties."""
    tag_ids = [t.id for t in post.tags]
    if not tag_ids:
        return []
    shared = func.count(PostTag.tag_id)
    rows = s.execute(
        select(Post.id, shared.label("shared"))
        .join(PostTag, PostTag.post_id == Post.id)
        .where(PostTag.tag_id.in_(tag_ids), Post.id != post.id, visible_clause())
        .group_by(Post.id, Post.published_at)
        .order_by(shared.desc(), Post.published_at.desc())
        .limit(limit)
    ).all()
    ids = [r[0] for r in rows]
    if not ids:
        return []
    by_id = {p.id: p for p in s.scalars(select(Post).where(Post.id.in_(ids))).all()}
    return [by_id[i] for i in ids if i in by_id]


def tags_with_counts(s: "Session", *, only_used: bool = True) -> list[dict]:
    count = func.count(func.distinct(Post.id))
    q = (
        select(Tag, count.label("post_count"))
        .outerjoin(PostTag, PostTag.tag_id == Tag.id)
        .outerjoin(Post, and_(Post.id == PostTag.post_id, visible_clause()))
        .group_by(Tag.id)
        .order_by(Tag.name.asc())
    )
    out = []
    for tag, n in s.execute(q).all():
        if only_used and not n:
            continue
        out.append({**serialize_tag(tag), "postCount": int(n)})
    return out


def get_tag_by_slug(s: "Session", slug: str) -> Tag | None:
    return s.scalars(select(Tag).where(Tag.slug == slug)).first()


# ---------- Admin ----------
POST_TEXT_FIELDS = (
    "title",
    "content",
    "slug",
    "status",
    "excerpt",
    "coverImage",
    "coverImageAlt",
    "metaTitle",
    "metaDescription",
    "canonicalUrl",
)


def validate_post_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate post create/update payload. Returns list of errors."""
    errors: list[str] = []
    for key in POST_TEXT_FIELDS:
        v = payload.get(key)
        if v is not None and not isinstance(v, str):
            errors.append(f"{key} must be a string.")
    if errors:
        return errors

    title = (payload.get("title") or "").strip() if "title" in payload or not partial else None
    content = (payload.get("content") or "") if "content" in payload or not partial else None

    if title is not None:
        if not title:
            errors.append("Title is required.")
        elif len(title) > 300:
            errors.append("Title must be 300 characters or fewer.")
    if content is not None and not content.strip():
        errors.append("Content is required.")

    slug = payload.get("slug")
    if slug:
        slug = slug.strip()
        if len(slug) > 300 or not SLUG_RE.match(slug):
            errors.append("Slug may only contain lowercase letters, numbers, and hyphens.")

    status = payload.get("status")
    if status is not None and status not in POST_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(POST_STATUSES)}")

    published_at = payload.get("publishedAt")
    if published_at is not None:
        try:
            if not isinstance(published_at, str):
                raise ValueError(published_at)
            parse_datetime(published_at)
        except ValueError:
            errors.append("publishedAt must be an ISO-8601 datetime.")

    for key, limit in (("excerpt", 500), ("metaTitle", 70), ("metaDescription", 160), ("coverImage", 500), ("canonicalUrl", 500)):
        v = payload.get(key)
        if v and len(v) > limit:
            errors.append(f"{key} must be {limit} characters or fewer.")

    tags = payload.get("tags")
    if tags is not None and (not isinstance(tags, list) or not all(isinstance(t, str) for t in tags)):
        errors.append("tags must be a list of names.")
    return errors


def slug_taken(s: "Session", slug: str, exclude_id: int | None = None) -> bool:
    q = select(Post.id).where(Post.slug == slug)
    if exclude_id is not None:
        q = q.where(Post.id != exclude_id)
    return s.scalar(q) is not None


def resolve_tags(s: "Session", names: list[str]) -> list[Tag]:
    """Find-or-create tags by name (matched on slug)."""
    out: list[Tag] = []
    seen: set[str] = set()
    for raw in names:
        name = (raw or "").strip()
        slug = slugify(name)
        if not slug or slug in seen:
            continue
        seen.add(slug)
        tag = s.scalars(select(Tag).where(Tag.slug == slug)).first()
        if tag is None:
            tag = Tag(name=name[:100], slug=slug[:100])
            s.add(tag)
            s.flush()
        out.append(tag)
    return out


def _apply_status(post: Post, status: str, published_at: datetime | None, now: datetime) -> None:
    if status == "scheduled":
        when = published_at or post.published_at
        if when is None:
            raise PostError("Scheduled posts need a publishedAt date.")
        if post.status == "archived":
            raise PostError("Archived posts cannot be scheduled; move back to draft first.")
        if when <= now:
            raise PostError("Scheduled publish date must be in the future.")
        post.published_at = when
    elif status == "published":
        post.published_at = published_at or post.published_at or now
    elif published_at is not None:
        post.published_at = published_at
    post.status = status


def _render(post: Post) -> None:
    post.content_html = render_markdown(post.content_markdown, site_url=current_app.config.get("SITE_URL", ""))
    post.reading_time_minutes = reading_time_minutes(post.content_markdown)


def create_post(s: "Session", payload: dict, user: "User") -> Post:
    """Create a post. Raises PostError on slug conflict or invalid status transition."""
    now = datetime.utcnow()
    title = (payload.get("title") or "").strip()
    slug = (payload.get("slug") or "").strip() or slugify(title)
    if not slug:
        raise PostError("Could not derive a slug from the title.")
    if slug_taken(s, slug):
        raise PostError("A post with this slug already exists")

    content = str(payload.get("content") or "")
    post = Post(
        title=title,
        slug=slug,
        excerpt=(payload.get("excerpt") or "").strip() or auto_excerpt(content) or None,
        content_markdown=content,
        status="draft",
        featured_image_url=(payload.get("coverImage") or "").strip() or None,
        featured_image_alt=(payload.get("coverImageAlt") or "").strip() or None,
        seo_title=(payload.get("metaTitle") or "").strip() or None,
        seo_description=(payload.get("metaDescription") or "").strip() or None,
        canonical_url=(payload.get("canonicalUrl") or "").strip() or None,
        noindex=bool(payload.get("noindex")),
        author_id=user.id,
        created_at=now,
        updated_at=now,
    )
    _apply_status(post, payload.get("status") or "draft", parse_datetime(payload.get("publishedAt")), now)
    _render(post)
    post.tags = resolve_tags(s, payload.get("tags") or [])
    s.add(post)
    s.flush()

    record_event(
        s,
        actor=user,
        action="post.create",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"slug": post.slug, "status": post.status},
    )
    return post


def update_post(s: "Session", post: Post, payload: dict, user: "User") -> Post:
    """Partial update; only keys present in payload are touched."""
    now = datetime.utcnow()
    changes: dict[str, dict] = {}

    if "slug" in payload:
        new_slug = (payload.get("slug") or "").strip() or slugify(payload.get("title") or post.title)
        if not new_slug:
            raise PostError("Could not derive a slug from the title.")
        if new_slug != post.slug:
            if slug_taken(s, new_slug, exclude_id=post.id):
                raise PostError("A post with this slug already exists")
            changes["slug"] = {"old": post.slug, "new": new_slug}
            post.slug = new_slug

    if "title" in payload:
        new_title = (payload.get("title") or "").strip()
        if new_title != post.title:
            changes["title"] = {"old": post.title, "new": new_title}
            post.title = new_title

    if "content" in payload:
        post.content_markdown = str(payload.get("content") or "")
        changes["content"] = {"changed": True}
        _render(post)

    simple_fields = (
        ("excerpt", "excerpt"),
        ("coverImage", "featured_image_url"),
        ("coverImageAlt", "featured_image_alt"),
        ("metaTitle", "seo_title"),
        ("metaDescription", "seo_description"),
        ("canonicalUrl", "canonical_url"),
    )
    for key, attr in simple_fields:
        if key in payload:
            new_val = (payload.get(key) or "").strip() or None
            if new_val != getattr(post, attr):
                changes[key] = {"old": getattr(post, attr), "new": new_val}
                setattr(post, attr, new_val)
    if "noindex" in payload:
        post.noindex = bool(payload.get("noindex"))

    if "status" in payload or "publishedAt" in payload:
        old_status = post.status
        _apply_status(post, payload.get("status") or post.status, parse_datetime(payload.get("publishedAt")), now)
        if post.status != old_status:
            changes["status"] = {"old": old_status, "new": post.status}

    if "tags" in payload:
        post.tags = resolve_tags(s, payload.get("tags") or [])
        changes["tags"] = {"new": [t.name for t in post.tags]}

    post.updated_at = now
    record_event(
        s,
        actor=user,
        action="post.edit",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"slug": post.slug, "changes": changes},
    )
    return post


def delete_post(s: "Session", post: Post, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="post.delete",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"slug": post.slug, "title": post.title},
    )
    s.delete(post)


def publish_due_scheduled(s: "Session", *, now: datetime | None = None) -> list[Post]:
    """Flip scheduled posts whose date has passed to published."""
    now = now or datetime.utcnow()
    due = s.scalars(
        select(Post).where(Post.status == "scheduled", Post.published_at.isnot(None), Post.published_at <= now)
    ).all()
    for post in due:
        post.status = "published"
        post.updated_at = now
        record_event(
            s,
            actor=None,
            action="post.publish_scheduled",
            entity_type="Post",
            entity_id=str(post.id),
            metadata={"slug": post.slug},
        )
    return list(due)


def status_counts(s: "Session") -> dict[str, int]:
    counts = {k: 0 for k in POST_STATUSES}
    for status, n in s.execute(select(Post.status, func.count()).group_by(Post.status)).all():
        counts[status] = int(n)
    counts["total"] = sum(counts[k] for k in POST_STATUSES)
    return counts
