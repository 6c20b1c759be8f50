"""URL derivation and output paths for inkpress.

Posts get their URL from the configured permalink style (or a custom
pattern); pages get theirs from their location under site/. An explicit
``permalink`` in the metadata block overrides both and may use the same
placeholders.

Placeholders: :year :month :day :i_month :i_day :short_year :title :slug
:categories :basename.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path, PurePosixPath

PERMALINK_STYLES = {
    "pretty": "/:year/:month/:day/:title/",
    "date": "/:year/:month/:day/:title.html",
    "none": "/:title.html",
}

_PLACEHOLDER_RE = re.compile(
    r":(year|month|day|i_month|i_day|short_year|title|slug|categories|basename)(?![a-z_])"
)


def resolve_pattern(setting: str | None) -> str:
    """Return the permalink pattern for a style name or custom pattern."""
    if not setting:
        return PERMALINK_STYLES["pretty"]
    return PERMALINK_STYLES.get(setting, setting)


def expand_permalink(
    pattern: str,
    slug: str,
    date: datetime | None = None,
    categories: list[str] | None = None,
    basename: str | None = None,
) -> str:
    """Fill the placeholders of a permalink pattern.

    Date placeholders expand to nothing when no date is known, and runs of
    slashes left behind are collapsed.

    Examples:
        >>> expand_permalink("/:year/:title/", "hello", datetime(2020, 5, 1))
        '/2020/hello/'
    """
    values = {
        "title": slug,
        "slug": slug,
        "basename": basename or slug,
        "categories": "/".join(categories or []),
        "year": "",
        "month": "",
        "day": "",
        "i_month": "",
        "i_day": "",
        "short_year": "",
    }
    if date is not None:
        values.update(
            year=f"{date.year:04d}",
            month=f"{date.month:02d}",
            day=f"{date.day:02d}",
            i_month=str(date.month),
            i_day=str(date.day),
            short_year=f"{date.year % 100:02d}",
        )
    url = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], pattern)
    url = re.sub(r"/{2,}", "/", url)
    return url if url.startswith("/") else f"/{url}"


class UrlDeriver:
    """Derives URLs for content items.

    Attributes:
        post_pattern: Permalink pattern applied to posts and drafts.
    """

    def __init__(self, post_pattern: str | None = None):
        self.post_pattern = resolve_pattern(post_pattern)

    def derive_page(self, rel: Path, slug: str) -> str:
        """Derive the URL of a page from its path relative to site/.

        index files map to their folder; everything else to /folder/slug/.
        """
        segments = [p for p in rel.parent.parts if p]
        url_parts = segments if slug == "index" else segments + [slug]
        path = "/".join(url_parts)
        return f"/{path}/" if path else "/"

    def derive_post(
        self, slug: str, date: datetime | None, categories: list[str] | None = None
    ) -> str:
        """Derive the URL of a post from the configured pattern."""
        return expand_permalink(self.post_pattern, slug, date, categories)

    def derive(
        self,
        rel: Path,
        kind: str,
        slug: str,
        date: datetime | None = None,
        permalink: str | None = None,
        categories: list[str] | None = None,
    ) -> str:
        """Derive the final URL of an item, honoring a permalink override."""
        if permalink:
            return expand_permalink(permalink, slug, date, categories, rel.stem)
        if kind == "page":
            return self.derive_page(rel, slug)
        return self.derive_post(slug, date, categories)


def output_path_for(url: str) -> str:
    """Map a URL to the file it is written to, relative to the output dir.

    A URL ending in '/' (or whose last segment has no extension) becomes
    ``<url>/index.html``; a URL with an extension is written as-is.

    Raises:
        ValueError: If the URL escapes the output directory.

    Examples:
        >>> output_path_for("/2020/01/02/hello/")
        '2020/01/02/hello/index.html'
        >>> output_path_for("/feed.xml")
        'feed.xml'
    """
    parts = [part for part in url.split("/") if part]
    if any(part in (".", "..") for part in parts):
        raise ValueError(f"URL must not contain '.' or '..' segments: {url}")
    if not parts:
        return "index.html"
    if url.endswith("/") or not PurePosixPath(parts[-1]).suffix:
        return "/".join(parts + ["index.html"])
    return "/".join(parts)
