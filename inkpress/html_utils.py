"""HTML utility functions for inkpress.

Functions:
    escape_html: Escape special HTML characters in a string.
    join_root_url: Join a base URL with a path.
    join_base_path: Prefix a site-relative path with the configured base path.
    iter_reference_urls: Yield URL attribute values outside code regions.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

# URL attribute regex pattern for finding href, src, action, poster and data attributes
_URL_ATTR_RE = re.compile(
    r'\b(?:href|src|action|poster|data)=(?P<quote>["\'])(?P<url>[^"\']*)(?P=quote)',
    re.IGNORECASE,
)

# Code regions show markup as documentation; anything inside is not a live reference.
_CODE_REGION_RE = re.compile(
    r"<(pre|code)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)

# Script and style bodies are dropped; their tags (and src attributes) stay.
_SCRIPT_BODY_RE = re.compile(
    r"<(script|style)\b([^>]*)>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

# URL prefixes that never point into the generated site
_URL_SKIP_PREFIXES = (
    "http://",
    "https://",
    "//",
    "mailto:",
    "tel:",
    "#",
    "javascript:",
    "data:",
)


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Examples:
        >>> escape_html('<script>alert("XSS")</script>')
        '&lt;script&gt;alert(&quot;XSS&quot;)&lt;/script&gt;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def join_base_path(baseurl: str, path: str) -> str:
    """Prefix a site-relative path with the base path.

    External URLs and anchors are returned unchanged, and a path that
    already carries the base path is not prefixed twice.

    Examples:
        >>> join_base_path('/blog', 'assets/app.wasm')
        '/blog/assets/app.wasm'
        >>> join_base_path('', '/about/')
        '/about/'
    """
    if path.startswith(_URL_SKIP_PREFIXES):
        return path
    rooted = path if path.startswith("/") else f"/{path}"
    if not baseurl:
        return rooted
    if rooted == baseurl or rooted.startswith(f"{baseurl}/"):
        return rooted
    return f"{baseurl}{rooted}"


def strip_code_regions(html: str) -> str:
    """Remove comments, pre/code elements and script/style bodies from HTML."""
    html = _CODE_REGION_RE.sub("", html)
    html = _HTML_COMMENT_RE.sub("", html)
    return _SCRIPT_BODY_RE.sub(r"<\1\2>", html)


def iter_reference_urls(html: str) -> Iterator[str]:
    """Yield root-relative URL attribute values that point into the site.

    Values inside code regions, external URLs, anchors and relative URLs
    are skipped; query strings and fragments are dropped.
    """
    for match in _URL_ATTR_RE.finditer(strip_code_regions(html)):
        url = match.group("url").strip()
        if not url or url.startswith(_URL_SKIP_PREFIXES) or not url.startswith("/"):
            continue
        url = url.split("#", 1)[0].split("?", 1)[0]
        if url:
            yield url
