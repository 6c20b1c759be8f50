"""Protocol definitions for inkpress.

This module defines the interfaces (protocols) the build pipeline depends
on. Concrete classes in renderers, extractors, content, asset_processors,
feeds and templates satisfy them structurally, so alternatives can be
swapped in (or mocked in tests) without subclassing.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import Heading, Page


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for turning a page body into HTML.

    Implementations handle one source type (Markdown, HTML).
    """

    @abstractmethod
    def can_render(self, path: Path) -> bool:
        """Check if this renderer can handle the given file."""
        ...

    @abstractmethod
    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render content to HTML.

        Args:
            content: Body text, after template substitution.

        Returns:
            Tuple of (rendered HTML, list of headings for TOC).
        """
        ...

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the source type identifier ('markdown' or 'html')."""
        ...


@runtime_checkable
class MetadataExtractor(Protocol):
    """Protocol for deriving one group of fields from a metadata block."""

    @abstractmethod
    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        """Extract metadata.

        Args:
            body: Content after the metadata block.
            path: Path to the source file.
            frontmatter: Parsed metadata block, defaults merged in.

        Returns:
            Dictionary of extracted fields.

        Raises:
            MetadataError: If a field has an invalid value.
        """
        ...


@runtime_checkable
class AssetProcessor(Protocol):
    """Protocol for publishing one kind of asset."""

    @abstractmethod
    def can_process(self, path: Path) -> bool:
        """Check if this processor can handle the given asset."""
        ...

    @abstractmethod
    def process(self, source: Path, dest: Path) -> bool:
        """Process an asset file. Returns True if processing was successful."""
        ...

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return processor priority (higher = checked first)."""
        ...


@runtime_checkable
class FeedGenerator(Protocol):
    """Protocol for site-wide generated files (sitemap, RSS)."""

    @property
    @abstractmethod
    def filename(self) -> str:
        """Output filename, relative to the output directory."""
        ...

    @abstractmethod
    def generate(self, pages: Iterable[Page], config: dict[str, Any]) -> str | None:
        """Generate the file content, or None when it cannot be built."""
        ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Protocol for rendering pages through their layouts."""

    @abstractmethod
    def render_page(self, page: Page) -> str:
        """Render a page with its layout chain.

        Raises:
            BuildError: For missing layouts, template errors or bad references.
        """
        ...

    @abstractmethod
    def render_string(self, template: str, context: dict[str, Any]) -> str:
        """Render a template string with the given variables."""
        ...


@runtime_checkable
class ContentLoader(Protocol):
    """Protocol for discovering source files."""

    @abstractmethod
    def iter_files(self, include_drafts: bool = False) -> list[tuple[Path, str]]:
        """Return (path, kind) pairs, kind being post, draft, page or static."""
        ...


@runtime_checkable
class PageBuilder(Protocol):
    """Protocol for building Page objects from source files."""

    @abstractmethod
    def build(self, path: Path, kind: str = "page") -> Page:
        """Build a Page object from a source file.

        Raises:
            MetadataError: If the metadata block is missing or invalid.
        """
        ...
