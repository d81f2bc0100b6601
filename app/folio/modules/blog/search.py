"""
Keyword search over visible posts.

Every term must appear in the title, excerpt or markdown body (case-insensitive).
Results are ranked on the first term: title hit 10, excerpt hit 5, body hit 1.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from app.folio.modules.blog.models import Post, PostTag, Tag
from app.folio.modules.blog.rendering import plain_text
from app.folio.modules.blog.service import visible_clause
from app.folio.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
SNIPPET_BEFORE = 50
SNIPPET_AFTER = 150
SNIPPET_MAX = 200

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def search_terms(query: str | None) -> list[str]:
    terms = []
    for raw in (query or "").strip().lower().split():
        if len(raw) < 2:
            continue
        term = _NON_ALNUM_RE.sub("", raw)
        if term:
            terms.append(term)
    return terms


def _term_matches(term: str):
    pattern = f"%{term}%"
    return or_(Post.title.ilike(pattern), Post.excerpt.ilike(pattern), Post.content_markdown.ilike(pattern))


def highlight_snippet(text: str | None, terms: list[str], max_length: int = SNIPPET_MAX) -> str:
    """Cut a window around the earliest term hit; fall back to the head of the text."""
    if not text:
        return ""
    lowered = text.lower()
    first, match_len = -1, 0
    for term in terms:
        idx = lowered.find(term.lower())
        if idx != -1 and (first == -1 or idx < first):
            first, match_len = idx, len(term)
    if first != -1:
        start = max(0, first - SNIPPET_BEFORE)
        end = min(len(text), first + match_len + SNIPPET_AFTER)
        return ("..." if start > 0 else "") + text[start:end] + ("..." if end < len(text) else "")
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


def search_posts(s: "Session", query: str, *, limit: int = 10, offset: int = 0) -> dict:
    empty = {"results": [], "query": query, "total": 0}
    if not query or len(query.strip()) < MIN_QUERY_LENGTH:
        return empty
    terms = search_terms(query)
    if not terms:
        return empty

    where = and_(visible_clause(), *[_term_matches(t) for t in terms])
    first = f"%{terms[0]}%"
    relevance = (
        case((Post.title.ilike(first), 10), else_=0)
        + case((Post.excerpt.ilike(first), 5), else_=0)
        + case((Post.content_markdown.ilike(first), 1), else_=0)
    ).label("relevance")

    try:
        total = s.scalar(select(func.count(Post.id)).where(where)) or 0
        rows = s.execute(
            select(Post, relevance)
            .where(where)
            .order_by(relevance.desc(), Post.published_at.desc())
            .limit(limit)
            .offset(offset)
        ).all()
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Search failed for %r: %s", query, e)
        return empty

    results = []
    for post, score in rows:
        source = post.excerpt if post.excerpt and any(t in post.excerpt.lower() for t in terms) else plain_text(post.content_markdown)
        results.append(
            {
                "id": post.id,
                "type": "post",
                "title": post.title,
                "slug": post.slug,
                "excerpt": highlight_snippet(source or post.excerpt, terms),
                "publishedAt": iso(post.published_at),
                "relevance": int(score or 0),
            }
        )
    return {"results": results, "query": query, "total": int(total)}


def search_suggestions(s: "Session", query: str, *, limit: int = 5) -> list[str]:
    q = (query or "").strip().lower()
    if len(q) < MIN_QUERY_LENGTH:
        return []
    try:
        titles = s.scalars(
            select(Post.title)
            .where(visible_clause(), func.lower(Post.title).contains(q, autoescape=True))
            .order_by(Post.published_at.desc())
            .limit(limit)
        ).all()
        tags = s.scalars(
            select(Tag.name).where(func.lower(Tag.name).contains(q, autoescape=True)).order_by(Tag.name).limit(limit)
        ).all()
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Search suggestions failed for %r: %s", query, e)
        return []
    return [*titles, *[f"Tag: {name}" for name in tags]][:limit]


def popular_searches(s: "Session", *, limit: int = 10) -> list[str]:
    """Most-used tag names stand in for popular queries."""
    try:
        rows = s.execute(
            select(Tag.name, func.count(PostTag.post_id).label("n"))
            .join(PostTag, PostTag.tag_id == Tag.id)
            .group_by(Tag.id, Tag.name)
            .order_by(func.count(PostTag.post_id).desc(), Tag.name.asc())
            .limit(limit)
        ).all()
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Popular searches failed: %s", e)
        return []
    return [r[0] for r in rows]
