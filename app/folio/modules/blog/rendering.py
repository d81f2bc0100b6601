"""
Markdown → HTML for post bodies.

Raw HTML in the source is not passed through: the html block preprocessor and
inline html pattern are removed, so anything that looks like a tag is escaped.
Links and images with non-http(s)/mailto/tel schemes are neutralised.
"""
from __future__ import annotations

import math
import re
from urllib.parse import urlparse

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

ALLOWED_SCHEMES = ("", "http", "https", "mailto", "tel")
WORDS_PER_MINUTE = 200

BASE_MD_EXTENSIONS = [
    "fenced_code",
    "tables",
    "sane_lists",
    "nl2br",
    "toc",
]
MD_EXTENSION_CONFIGS = {
    "toc": {"permalink": "#", "permalink_class": "heading-anchor"},
}

_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`]*`")
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK_RE = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_MD_PUNCT_RE = re.compile(r"[#>*_~|-]+")
_WS_RE = re.compile(r"\s+")


def _safe_url(url: str | None) -> bool:
    if not url:
        return True
    scheme = urlparse(url.strip()).scheme.lower()
    return scheme in ALLOWED_SCHEMES


class LinkPolicyTreeprocessor(Treeprocessor):
    """Drop unsafe URLs, open external links in a new tab, lazy-load images."""

    def __init__(self, md, site_host: str):
        super().__init__(md)
        self.site_host = site_host

    def run(self, root):
        for el in root.iter("a"):
            href = el.get("href")
            if not _safe_url(href):
                el.set("href", "#")
                continue
            host = urlparse(href or "").hostname
            if host and host != self.site_host:
                el.set("target", "_blank")
                el.set("rel", "noopener noreferrer")
        for el in root.iter("img"):
            if not _safe_url(el.get("src")):
                el.set("src", "")
            el.set("loading", "lazy")
        return None


class SafeHtmlExtension(Extension):
    def __init__(self, **kwargs):
        self.config = {"site_host": ["", "Hostname treated as internal for links"]}
        super().__init__(**kwargs)

    def extendMarkdown(self, md_inst):
        md_inst.preprocessors.deregister("html_block")
        md_inst.inlinePatterns.deregister("html")
        md_inst.treeprocessors.register(
            LinkPolicyTreeprocessor(md_inst, self.getConfig("site_host")), "link_policy", 1
        )


def _markdown_renderer(site_url: str = "") -> markdown.Markdown:
    return markdown.Markdown(
        extensions=[*BASE_MD_EXTENSIONS, SafeHtmlExtension(site_host=urlparse(site_url).hostname or "")],
        extension_configs=MD_EXTENSION_CONFIGS,
        output_format="html",
    )


def render_markdown(text: str | None, *, site_url: str = "") -> str:
    """Convert post markdown to sanitized HTML."""
    if not text:
        return ""
    return _markdown_renderer(site_url).convert(text)


def plain_text(text: str | None) -> str:
    """Rough markdown → text, used for excerpts and word counts."""
    if not text:
        return ""
    out = _FENCE_RE.sub(" ", text)
    out = _INLINE_CODE_RE.sub(" ", out)
    out = _IMAGE_RE.sub(r"\1", out)
    out = _LINK_RE.sub(r"\1", out)
    out = _MD_PUNCT_RE.sub(" ", out)
    return _WS_RE.sub(" ", out).strip()


def reading_time_minutes(text: str | None) -> int:
    words = len((text or "").split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def auto_excerpt(text: str | None, limit: int = 200) -> str:
    body = plain_text(text)
    if len(body) <= limit:
        return body
    cut = body[:limit].rsplit(" ", 1)[0]
    return cut.rstrip(",.;:") + "..."
