"""Content loading for inkpress.

This module discovers the files under site/, classifies them as posts,
drafts, pages or static files, and builds Page objects from their metadata
blocks. Rendering happens later, in the template engine, once every page
is known (bodies can link to each other).

Key classes:
- Page: Dataclass representing a content item.
- StaticFile: A file copied verbatim into the output.
- FileContentLoader: Discovers and classifies files in the site directory.
- DefaultPageBuilder: Builds a Page from one source file.
- ContentProcessor: Facade returning every Page and StaticFile of a site.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import BuildError, MetadataError
from .extractors import (
    CompositeMetadataExtractor,
    default_metadata_extractor,
    has_frontmatter,
)
from .permalinks import UrlDeriver, output_path_for
from .protocols import ContentLoader, PageBuilder
from .renderers import Heading, RendererRegistry, default_renderer_registry
from .utils import is_html, is_markdown, slugify, split_tags

__all__ = [
    "ContentProcessor",
    "DefaultPageBuilder",
    "FileContentLoader",
    "Heading",
    "Page",
    "SiteContent",
    "StaticFile",
]

POSTS_DIR = "_posts"
DRAFTS_DIR = "_drafts"

# Keys of the `defaults` config section, by item kind
_DEFAULTS_KEYS = {
    "post": ("posts",),
    "draft": ("drafts", "posts"),
    "page": ("pages",),
}


@dataclass
class Page:
    """A content item: one post, draft or page.

    Attributes:
        title: Human-readable title.
        body: Source body text following the metadata block.
        content: Rendered HTML body (filled in by the template engine).
        description: Short description, from metadata or first paragraph.
        excerpt: Full first paragraph (Markdown only).
        url: Site-relative URL, without the base path.
        slug: URL-friendly slug.
        date: Publication date.
        dated: Whether the date came from the metadata block or filename
            rather than the file modification time.
        tags: Tag labels.
        hidden: Published, but left out of every listing.
        layout: Layout name from the metadata block.
        kind: "post", "draft" or "page".
        path: Source file (the item's identity).
        rel_path: Source path relative to site/, POSIX style.
        output_path: File written for this item, relative to the output dir.
        source_type: "markdown" or "html".
        permalink: Explicit permalink from the metadata block, if any.
        order: Explicit listing position (pages).
        frontmatter: Every metadata key, including unrecognized ones.
        body_offset: Lines taken by the metadata block (for error line numbers).
        toc: Headings for a table of contents.
    """

    title: str
    body: str
    url: str
    slug: str
    date: datetime
    tags: list[str]
    hidden: bool
    layout: str
    kind: str
    path: Path
    rel_path: str
    output_path: str
    source_type: str
    content: str = ""
    description: str = ""
    excerpt: str = ""
    permalink: str | None = None
    order: int | None = None
    frontmatter: dict[str, Any] = field(default_factory=dict)
    body_offset: int = 0
    toc: list[Heading] = field(default_factory=list)
    dated: bool = True

    @property
    def id(self) -> str:
        """Identifier used by post_url(): the filename stem."""
        return self.path.stem

    @property
    def draft(self) -> bool:
        return self.kind == "draft"

    @property
    def is_post(self) -> bool:
        return self.kind in ("post", "draft")


@dataclass(frozen=True)
class StaticFile:
    """A file under site/ copied into the output unchanged."""

    path: Path
    rel_path: str

    @property
    def output_path(self) -> str:
        return self.rel_path

    @property
    def url(self) -> str:
        return f"/{self.rel_path}"


@dataclass
class SiteContent:
    """Everything discovered under site/."""

    pages: list[Page]
    static_files: list[StaticFile]


class FileContentLoader:
    """Discovers content and static files in a site directory.

    Rules:
    - dotfiles and paths matching an ``exclude`` pattern are ignored
    - files under _posts/ are posts; under _drafts/ drafts (on request)
    - any other path with a component starting with _ is internal
    - Markdown files are pages; HTML files are pages when they start with a
      metadata block and static files otherwise
    - everything else is a static file

    Attributes:
        site_dir: Directory containing site content.
        exclude: Glob patterns relative to site_dir.
    """

    def __init__(self, site_dir: Path, exclude: list[str] | None = None):
        self.site_dir = site_dir
        self.exclude = list(exclude or [])

    def _is_excluded(self, rel: str) -> bool:
        for pattern in self.exclude:
            if fnmatch.fnmatch(rel, pattern) or rel.startswith(pattern.rstrip("/") + "/"):
                return True
        return False

    def iter_files(self, include_drafts: bool = False) -> list[tuple[Path, str]]:
        """Return (path, kind) for every file that is not internal or excluded.

        kind is "post", "draft", "page" or "static". Paths are sorted so
        every build sees the same order.
        """
        files: list[tuple[Path, str]] = []
        for path in sorted(self.site_dir.rglob("*")):
            if path.is_dir():
                continue
            rel = path.relative_to(self.site_dir)
            parts = rel.parts
            if any(part.startswith(".") for part in parts):
                continue
            if self._is_excluded(rel.as_posix()):
                continue
            renderable = is_markdown(path) or is_html(path)
            if parts[0] in (POSTS_DIR, DRAFTS_DIR):
                if not renderable:
                    continue
                if parts[0] == POSTS_DIR:
                    files.append((path, "post"))
                elif include_drafts:
                    files.append((path, "draft"))
                continue
            if any(part.startswith("_") for part in parts):
                continue
            if is_markdown(path):
                files.append((path, "page"))
            elif is_html(path) and has_frontmatter(
                path.read_text(encoding="utf-8", errors="replace")
            ):
                files.append((path, "page"))
            else:
                files.append((path, "static"))
        return files


class DefaultPageBuilder:
    """Builds Page objects from source files.

    Attributes:
        site_dir: Directory containing site content.
        defaults: The ``defaults`` config section.
        renderer_registry: Registry deciding the source type.
        metadata_extractor: Composite metadata extractor.
        url_deriver: URL deriver instance.
    """

    def __init__(
        self,
        site_dir: Path,
        defaults: dict[str, Any] | None = None,
        permalink: str | None = None,
        renderer_registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.site_dir = site_dir
        self.defaults = defaults or {}
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.url_deriver = UrlDeriver(permalink)

    def _defaults_for(self, kind: str) -> dict[str, Any]:
        for key in _DEFAULTS_KEYS.get(kind, ()):
            value = self.defaults.get(key)
            if isinstance(value, dict):
                return value
        return {}

    def build(self, path: Path, kind: str = "page") -> Page:
        """Build a Page object from a source file.

        Args:
            path: Path to the source file.
            kind: "post", "draft" or "page".

        Returns:
            Page object with metadata filled in and content not yet rendered.

        Raises:
            MetadataError: If the metadata block or a derived value is invalid.
        """
        rel = path.relative_to(self.site_dir)
        try:
            raw = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise MetadataError(path, "File is not valid UTF-8 text", exc) from exc

        metadata = self.metadata_extractor.extract(raw, path, self._defaults_for(kind))
        frontmatter = metadata["frontmatter"]

        date = metadata.get("date")
        dated = date is not None
        if date is None:
            if kind == "post":
                raise MetadataError(
                    path,
                    "Post filenames must start with YYYY-MM-DD- "
                    "(or the metadata block must set 'date')",
                )
            date = datetime.fromtimestamp(path.stat().st_mtime).replace(microsecond=0)

        slug = slugify(metadata.get("slug") or path.stem)
        try:
            categories = split_tags(frontmatter.get("categories"))
        except TypeError as exc:
            raise MetadataError(path, f"Invalid 'categories': {exc}", exc) from exc

        url = self.url_deriver.derive(
            rel,
            kind,
            slug,
            date=date if kind != "page" or metadata.get("permalink") else None,
            permalink=metadata.get("permalink"),
            categories=categories,
        )
        try:
            output_path = output_path_for(url)
        except ValueError as exc:
            raise MetadataError(path, str(exc), exc) from exc

        renderer = self.renderer_registry.get_renderer(path)
        source_type = renderer.source_type if renderer else "html"

        return Page(
            title=metadata["title"],
            body=metadata["body"],
            url=url,
            slug=slug,
            date=date,
            tags=metadata.get("tags", []),
            hidden=metadata.get("hidden", False),
            layout=metadata["layout"],
            kind=kind,
            path=path,
            rel_path=rel.as_posix(),
            output_path=output_path,
            source_type=source_type,
            description=metadata.get("description", ""),
            excerpt=metadata.get("excerpt", ""),
            permalink=metadata.get("permalink"),
            order=metadata.get("order"),
            frontmatter=frontmatter,
            body_offset=metadata.get("body_offset", 0),
            dated=dated,
        )


class ContentProcessor:
    """Facade for discovering a site and building its Page objects.

    Attributes:
        site_dir: Directory containing site content.
    """

    def __init__(
        self,
        site_dir: Path,
        config: dict[str, Any] | None = None,
        content_loader: ContentLoader | None = None,
        page_builder: PageBuilder | None = None,
    ):
        config = config or {}
        self.site_dir = site_dir
        self._content_loader = content_loader or FileContentLoader(
            site_dir, config.get("exclude")
        )
        self._page_builder = page_builder or DefaultPageBuilder(
            site_dir,
            defaults=config.get("defaults"),
            permalink=config.get("permalink"),
        )

    def load(
        self,
        include_drafts: bool = False,
        on_error: Callable[[BuildError], None] | None = None,
    ) -> SiteContent:
        """Load all content files.

        Args:
            include_drafts: Whether to include files under _drafts/.
            on_error: Called with each BuildError instead of raising it;
                the offending file is skipped.

        Returns:
            SiteContent with pages and static files.
        """
        pages: list[Page] = []
        static_files: list[StaticFile] = []
        for path, kind in self._content_loader.iter_files(include_drafts):
            if kind == "static":
                rel = path.relative_to(self.site_dir).as_posix()
                static_files.append(StaticFile(path=path, rel_path=rel))
                continue
            try:
                pages.append(self._page_builder.build(path, kind))
            except BuildError as exc:
                if on_error is None:
                    raise
                on_error(exc)
        return SiteContent(pages=pages, static_files=static_files)
