from __future__ import annotations

from datetime import timezone
from email.utils import format_datetime

from flask import Blueprint, current_app, jsonify, request
from markupsafe import escape

from app.folio.db import db_session
from app.folio.modules.blog.search import popular_searches, search_posts, search_suggestions, search_terms
from app.folio.modules.blog.service import (
    get_published_by_slug,
    get_tag_by_slug,
    list_published,
    related_posts,
    serialize_post,
    serialize_tag,
    tags_with_counts,
)
from app.folio.ratelimit import rate_limit
from app.folio.utils import arg_int, json_error, page_meta

bp = Blueprint("blog", __name__)

FEED_SIZE = 20


@bp.get("/api/posts")
@rate_limit("PUBLIC_API")
def posts_list():
    s = db_session()
    if (request.args.get("featured") or "").lower() == "true":
        posts, _ = list_published(s, page=1, page_size=5)
        return jsonify({"posts": [serialize_post(p, full=False) for p in posts]})

    page = arg_int("page", 1, minimum=1)
    page_size = arg_int("pageSize", 10, minimum=1, maximum=50)
    posts, total = list_published(s, page=page, page_size=page_size)
    return jsonify({"posts": [serialize_post(p, full=False) for p in posts], **page_meta(total, page, page_size)})


@bp.get("/api/posts/tags")
@rate_limit("PUBLIC_API")
def tags_list():
    return jsonify({"tags": tags_with_counts(db_session())})


@bp.get("/api/posts/tag/<slug>")
@rate_limit("PUBLIC_API")
def posts_by_tag(slug: str):
    s = db_session()
    tag = get_tag_by_slug(s, slug)
    if not tag:
        return json_error("Tag not found", 404)
    page = arg_int("page", 1, minimum=1)
    page_size = arg_int("pageSize", 10, minimum=1, maximum=50)
    posts, total = list_published(s, page=page, page_size=page_size, tag=tag)
    return jsonify(
        {
            "tag": serialize_tag(tag),
            "posts": [serialize_post(p, full=False) for p in posts],
            **page_meta(total, page, page_size),
        }
    )


@bp.get("/api/posts/<slug>")
@rate_limit("PUBLIC_API")
def post_detail(slug: str):
    s = db_session()
    post = get_published_by_slug(s, slug)
    if not post:
        return json_error("Post not found", 404)
    return jsonify(
        {
            "post": serialize_post(post),
            "related": [serialize_post(p, full=False) for p in related_posts(s, post)],
        }
    )


@bp.get("/api/search")
@rate_limit("SEARCH")
def search():
    q = request.args.get("q") or ""
    if not q or len(q) > 200:
        return json_error("Invalid search parameters: q must be 1-200 characters", 400)
    try:
        limit = int(request.args.get("limit") or 10)
        offset = int(request.args.get("offset") or 0)
    except ValueError:
        return json_error("Invalid search parameters: limit and offset must be integers", 400)
    if limit < 1 or limit > 50 or offset < 0:
        return json_error("Invalid search parameters: limit must be 1-50 and offset >= 0", 400)
    suggestions = (request.args.get("suggestions") or "").lower()
    if suggestions not in ("", "true", "false"):
        return json_error("Invalid search parameters: suggestions must be true or false", 400)

    s = db_session()
    if suggestions == "true":
        return jsonify({"suggestions": search_suggestions(s, q, limit=limit)})

    result = search_posts(s, q, limit=limit, offset=offset)
    if not search_terms(q):
        result["popular"] = popular_searches(s)
    return jsonify(result)


def _rfc2822(dt) -> str:
    return format_datetime(dt.replace(tzinfo=timezone.utc))


@bp.get("/blog/rss.xml")
def rss_feed():
    cfg = current_app.config
    site_url = cfg.get("SITE_URL", "").rstrip("/")
    posts, _ = list_published(db_session(), page=1, page_size=FEED_SIZE)

    items = []
    for p in posts:
        link = f"{site_url}/blog/{p.slug}"
        cats = "".join(f"<category>{escape(t.name)}</category>" for t in p.tags)
        items.append(
            f"""
    <item>
      <title>{escape(p.title)}</title>
      <link>{link}</link>
      <guid isPermaLink="true">{link}</guid>
      <pubDate>{_rfc2822(p.published_at)}</pubDate>
      {cats}
      <description>{escape(p.excerpt or "")}</description>
      <content:encoded><![CDATA[{(p.content_html or "").replace("]]>", "]]]]><![CDATA[>")}]]></content:encoded>
    </item>"""
        )

    last_build = _rfc2822(posts[0].published_at) if posts else ""
    xml = f"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0"
     xmlns:atom="http://www.w3.org/2005/Atom"
     xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>{escape(cfg.get("SITE_NAME", ""))}</title>
    <link>{site_url}</link>
    <description>{escape(cfg.get("SITE_DESCRIPTION", ""))}</description>
    <language>en-us</language>
    <lastBuildDate>{last_build}</lastBuildDate>
    <atom:link href="{site_url}/blog/rss.xml" rel="self" type="application/rss+xml" />
{"".join(items)}
  </channel>
</rss>"""
    resp = current_app.response_class(xml, mimetype="application/rss+xml")
    resp.headers["Cache-Control"] = "public, max-age=3600"
    return resp
