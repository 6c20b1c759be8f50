"""Feed generation for inkpress.

Generates sitemap.xml and an RSS 2.0 feed from the site's listings.
Hidden items never appear in either. Neither output depends on the wall
clock, so rebuilding unchanged content gives identical files.

Classes:
    FeedGenerator: Base class for feed generators.
    SitemapGenerator: Generates sitemap.xml.
    RSSGenerator: Generates feed.xml.
    FeedRegistry: Registry for managing feed generators.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .html_utils import escape_html

if TYPE_CHECKING:
    from .content import Page

RFC822 = "%a, %d %b %Y %H:%M:%S +0000"


def _site_root(config: dict[str, Any]) -> str:
    """Absolute URL of the site root (origin + base path), no trailing slash."""
    base_url = str(config.get("url", "") or "").rstrip("/")
    if not base_url:
        return ""
    return f"{base_url}{config.get('baseurl', '') or ''}"


class FeedGenerator(ABC):
    """Base class for feed generators.

    A generator is enabled when the site has an absolute ``url``.
    """

    @property
    @abstractmethod
    def filename(self) -> str:
        """Output filename, relative to the output directory."""
        ...

    @abstractmethod
    def generate(self, pages: Iterable[Page], config: dict[str, Any]) -> str | None:
        """Generate feed content, or None when the feed cannot be built."""
        ...

    def enabled(self, config: dict[str, Any]) -> bool:
        return bool(_site_root(config))

    def write(self, output_dir: Path, pages: Iterable[Page], config: dict[str, Any]) -> bool:
        """Generate and write the feed. Returns True if a file was written."""
        content = self.generate(pages, config)
        if content is None:
            return False
        (output_dir / self.filename).write_text(content, encoding="utf-8")
        return True


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml following the sitemaps.org protocol."""

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def generate(self, pages: Iterable[Page], config: dict[str, Any]) -> str | None:
        root = _site_root(config)
        if not root:
            return None
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for page in sorted(pages, key=lambda p: p.url):
            if page.hidden:
                continue
            loc = escape_html(f"{root}{page.url}")
            # Items dated only by file mtime get no lastmod
            lastmod = (
                f"<lastmod>{page.date.strftime('%Y-%m-%d')}</lastmod>" if page.dated else ""
            )
            lines.append(f"  <url><loc>{loc}</loc>{lastmod}</url>")
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed of the visible posts, newest first."""

    @property
    def filename(self) -> str:
        return "feed.xml"

    def generate(self, pages: Iterable[Page], config: dict[str, Any]) -> str | None:
        root = _site_root(config)
        if not root:
            return None
        posts = sorted(
            (p for p in pages if p.is_post and not p.hidden),
            key=lambda p: (p.date, p.slug),
            reverse=True,
        )
        title = escape_html(str(config.get("title") or "Feed"))
        description = escape_html(str(config.get("description") or ""))
        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{title}</title>",
            f"<link>{escape_html(root)}/</link>",
            f"<description>{description}</description>",
        ]
        dated = [p for p in posts if p.dated]
        if dated:
            rss.append(f"<lastBuildDate>{dated[0].date.strftime(RFC822)}</lastBuildDate>")
        for post in posts:
            link = escape_html(f"{root}{post.url}")
            summary = escape_html(post.description or post.title)
            pub_date = (
                f"<pubDate>{post.date.strftime(RFC822)}</pubDate>" if post.dated else ""
            )
            rss.append(
                f"<item><title>{escape_html(post.title)}</title><link>{link}</link>"
                f"<guid>{link}</guid><description>{summary}</description>"
                f"{pub_date}</item>"
            )
        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


class FeedRegistry:
    """Registry for managing feed generators."""

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def __iter__(self):
        return iter(self._generators)

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def generate_all(
        self, output_dir: Path, pages: Iterable[Page], config: dict[str, Any]
    ) -> list[str]:
        """Generate all registered feeds. Returns the filenames written."""
        pages_list = list(pages)
        generated = []
        for generator in self._generators:
            if generator.write(output_dir, pages_list, config):
                generated.append(generator.filename)
        return generated


def create_default_feed_registry() -> FeedRegistry:
    """Create a registry with sitemap and RSS generators."""
    registry = FeedRegistry()
    registry.register(SitemapGenerator())
    registry.register(RSSGenerator())
    return registry
