"""Template rendering engine for inkpress.

This module uses Jinja2 to substitute variables in content bodies and to
wrap rendered content in layouts.

Rendering a page happens in two steps so listings can show other pages'
content:
1. render_content: shield code regions, substitute the body, restore the
   code regions, then run the Markdown/HTML renderer.
2. render_page: wrap the rendered content in its layout, following the
   layout chain (a layout's own metadata block may name a parent layout).

Key classes:
- TemplateEngine: Jinja2 environment, template globals, and rendering.
- LayoutLoader: File loader that strips metadata blocks from templates.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateNotFound,
    TemplateSyntaxError,
    pass_context,
    select_autoescape,
)
from markupsafe import Markup
from pygments.formatters import HtmlFormatter

from .collections import PageCollection, TagCollection
from .content import Page, StaticFile
from .errors import (
    BrokenReferenceError,
    BuildError,
    LayoutNotFoundError,
    TemplateRenderError,
)
from .extractors import FRONTMATTER_RE
from .html_utils import escape_html, join_base_path, join_root_url
from .renderers import Heading, MarkdownRenderer, RendererRegistry, default_renderer_registry
from .utils import build_tags_index, slugify
from .verbatim import VerbatimShield

__all__ = ["LayoutLoader", "TemplateEngine", "render_toc"]

logger = logging.getLogger(__name__)

LAYOUTS_DIR = "_layouts"
INCLUDES_DIR = "_includes"

# Layout names that mean "no layout, body only"
NO_LAYOUT = ("none", "null")

LAYOUT_SUFFIXES = (".html", ".html.jinja", ".jinja", "")


def render_toc(page: Page) -> Markup:
    """Render a table of contents as nested HTML from page headings.

    Generates properly nested `<ul><li><a href="#id">text</a></li></ul>` structure
    based on heading levels.
    """
    if not page.toc:
        return Markup("")
    return _render_toc_from_headings(page.toc)


def _render_toc_from_headings(headings: list[Heading]) -> Markup:
    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        # Close nested lists if going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        elif not level_stack or level > level_stack[-1]:  # pragma: no branch
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(
            f'<li><a href="#{escape_html(heading.id)}">{escape_html(heading.text)}</a>'
        )

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


class LayoutLoader(FileSystemLoader):
    """Template loader that strips a leading metadata block.

    The block is replaced by a Jinja comment spanning the same number of
    lines, so line numbers still match the file and nothing is output.
    Parsed metadata is kept in ``metadata`` keyed by template name.
    """

    def __init__(self, searchpath):
        super().__init__(searchpath)
        self.metadata: dict[str, dict[str, Any]] = {}

    def get_source(self, environment, template):
        source, filename, uptodate = super().get_source(environment, template)
        match = FRONTMATTER_RE.match(source)
        if not match:
            self.metadata[template] = {}
            return source, filename, uptodate
        try:
            data = yaml.safe_load(match.group("yaml")) or {}
        except yaml.YAMLError as exc:
            raise TemplateRenderError(
                Path(filename), f"Invalid metadata block: {exc}", exc
            ) from exc
        if not isinstance(data, dict):
            raise TemplateRenderError(
                Path(filename), "Metadata block must be a set of key: value pairs"
            )
        self.metadata[template] = data
        padding = "{#" + "\n" * match.group(0).count("\n") + "#}"
        return padding + source[match.end() :], filename, uptodate


def _format_error_message(exc: Exception) -> str:
    """Format a template exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        site_dir: Directory containing _layouts/, _includes/ and content.
        config: Site configuration.
        data: Site data from data/*.yaml.
        baseurl: Site base path ("" or "/something").
        env: Jinja2 environment.
        site: The ``site`` variable exposed to templates.
    """

    def __init__(
        self,
        site_dir: Path,
        config: dict[str, Any],
        data: dict[str, Any] | None = None,
        renderer_registry: RendererRegistry | None = None,
    ):
        self.site_dir = site_dir
        self.config = config
        self.data = data or {}
        self.baseurl = config.get("baseurl", "") or ""
        self.url = config.get("url", "") or ""
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.loader = LayoutLoader([site_dir / INCLUDES_DIR, site_dir])
        self.env = Environment(
            loader=self.loader,
            autoescape=select_autoescape(["html", "xml"], default_for_string=False),
            keep_trailing_newline=True,
        )
        self.pages = PageCollection([])
        self.static_files: list[StaticFile] = []
        self.site: dict[str, Any] = {}
        self._install_filters()
        self.update_collections([], [])

    def _install_filters(self) -> None:
        self.env.filters["relative_url"] = self._relative_url
        self.env.filters["absolute_url"] = self._absolute_url
        self.env.filters["date"] = self._format_date
        self.env.filters["slugify"] = slugify
        self.env.filters["markdownify"] = self._markdownify
        self.env.filters["xml_escape"] = escape_html
        self.env.globals["post_url"] = self._post_url
        self.env.globals["link"] = self._link
        self.env.globals["render_toc"] = render_toc
        self.env.globals["pygments_css"] = self._pygments_css

    def update_collections(
        self, pages: list[Page], static_files: list[StaticFile]
    ) -> None:
        """Rebuild the ``site`` variable from the full set of items.

        Listings (posts, pages, tags) only carry items that are not hidden;
        all_posts/all_pages carry everything.
        """
        self.pages = PageCollection(pages)
        self.static_files = list(static_files)
        posts = self.pages.posts().sorted()
        plain_pages = self.pages.pages().by_position()
        visible_posts = posts.visible()
        visible = PageCollection(list(visible_posts) + list(plain_pages.visible()))
        latest = visible_posts[0].date if len(visible_posts) else None

        site = dict(self.config)
        site.update(
            {
                "data": self.data,
                "posts": visible_posts,
                "pages": plain_pages.visible(),
                "all_posts": posts,
                "all_pages": plain_pages,
                "tags": TagCollection(build_tags_index(visible)),
                "static_files": self.static_files,
                "time": latest,
            }
        )
        self.site = site
        self.env.globals["site"] = site

    # Filters and globals

    def _relative_url(self, path: Any) -> str:
        return join_base_path(self.baseurl, str(path))

    def _absolute_url(self, path: Any) -> str:
        relative = self._relative_url(path)
        if relative.startswith(("http://", "https://", "//")) or not self.url:
            return relative
        return join_root_url(self.url, relative)

    @staticmethod
    def _format_date(value: Any, fmt: str = "%B %d, %Y") -> str:
        if isinstance(value, datetime):
            return value.strftime(fmt)
        return str(value)

    @staticmethod
    def _markdownify(text: Any) -> Markup:
        html, _ = MarkdownRenderer().render(str(text or ""))
        return Markup(html)

    @staticmethod
    def _pygments_css(style: str = "default") -> Markup:
        """Return Pygments CSS rules for the .highlight class."""
        return Markup(HtmlFormatter(style=style).get_style_defs(".highlight"))

    @pass_context
    def _post_url(self, context, ref: str) -> str:
        """URL (with base path) of a post by filename stem or slug."""
        target = self.pages.posts().find(str(ref))
        if target is None:
            raise BrokenReferenceError(
                self._context_path(context), str(ref), f"post_url: no post matches '{ref}'"
            )
        return join_base_path(self.baseurl, target.url)

    @pass_context
    def _link(self, context, rel_path: str) -> str:
        """URL (with base path) of a page or static file by its path under site/."""
        wanted = str(rel_path).lstrip("/")
        for page in self.pages:
            if page.rel_path == wanted:
                return join_base_path(self.baseurl, page.url)
        for static in self.static_files:
            if static.rel_path == wanted:
                return join_base_path(self.baseurl, static.url)
        raise BrokenReferenceError(
            self._context_path(context), wanted, f"link: no file at site/{wanted}"
        )

    def _context_path(self, context) -> Path:
        page = context.get("page")
        return page.path if isinstance(page, Page) else self.site_dir

    # Layouts

    def resolve_layout(self, layout: str, source_path: Path) -> str | None:
        """Return the template name for a layout, or None for no layout.

        Raises:
            LayoutNotFoundError: If no file in _layouts/ matches.
        """
        if layout.lower() in NO_LAYOUT:
            return None
        searched = []
        for suffix in LAYOUT_SUFFIXES:
            name = f"{LAYOUTS_DIR}/{layout}{suffix}"
            searched.append(name)
            if (self.site_dir / name).is_file():
                return name
        raise LayoutNotFoundError(source_path, layout, searched)

    def _layout_chain(self, page: Page) -> list[str]:
        chain: list[str] = []
        layout: Any = page.layout
        source = page.path
        while layout:
            if not isinstance(layout, str):
                raise TemplateRenderError(source, f"Layout name must be a string: {layout!r}")
            name = self.resolve_layout(layout, source)
            if name is None:
                break
            if name in chain:
                cycle = " -> ".join(chain + [name])
                raise TemplateRenderError(page.path, f"Layout cycle: {cycle}")
            template = self._get_template(name, page)
            chain.append(name)
            source = Path(template.filename) if template.filename else source
            layout = self.loader.metadata.get(name, {}).get("layout")
        return chain

    def validate_layouts(self, page: Page) -> None:
        """Check that the page's layout chain resolves, raising otherwise."""
        self._layout_chain(page)

    def _get_template(self, name: str, page: Page):
        try:
            return self.env.get_template(name)
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(
                Path(exc.filename) if exc.filename else page.path,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc

    # Rendering

    def _context(self, page: Page) -> dict[str, Any]:
        return {
            "site": self.site,
            "page": page,
            "frontmatter": page.frontmatter,
        }

    def render_body(self, page: Page) -> str:
        """Substitute template syntax in the body, leaving code regions alone."""
        shield = VerbatimShield()
        source = shield.shield(page.body, markdown=page.source_type == "markdown")
        try:
            template = self.env.from_string(source)
            rendered = template.render(**self._context(page))
        except BuildError:
            raise
        except TemplateSyntaxError as exc:
            line = (exc.lineno or 0) + page.body_offset
            raise TemplateRenderError(
                page.path, f"Template syntax error on line {line}: {exc.message}", exc
            ) from exc
        except TemplateNotFound as exc:
            raise TemplateRenderError(
                page.path, f"Include not found: {exc.name}", exc
            ) from exc
        except Exception as exc:
            raise TemplateRenderError(page.path, _format_error_message(exc), exc) from exc
        return shield.restore(rendered)

    def render_content(self, page: Page) -> str:
        """Render the page body to HTML and store it on the page."""
        body = self.render_body(page)
        renderer = self.renderer_registry.get_renderer(page.path)
        if renderer is None:
            page.content, page.toc = body, []
        else:
            page.content, page.toc = renderer.render(body)
        return page.content

    def render_page(self, page: Page) -> str:
        """Wrap the page's rendered content in its layout chain."""
        html = page.content
        context = self._context(page)
        for name in self._layout_chain(page):
            template = self.env.get_template(name)
            layout_meta = self.loader.metadata.get(name, {})
            try:
                html = template.render(content=Markup(html), layout=layout_meta, **context)
            except BuildError:
                raise
            except TemplateNotFound as exc:
                raise TemplateRenderError(
                    page.path, f"{name}: include not found: {exc.name}", exc
                ) from exc
            except Exception as exc:
                raise TemplateRenderError(
                    page.path, f"{name}: {_format_error_message(exc)}", exc
                ) from exc
        return html

    def render_string(self, template: str, context: dict[str, Any]) -> str:
        """Render a template string with the site variables available."""
        return self.env.from_string(template).render(**context)
