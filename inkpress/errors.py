"""Build errors for inkpress.

Every failure an author can cause is a BuildError carrying the path of the
offending source file, so the CLI can point straight at it.

Taxonomy:
- MetadataError: missing or invalid metadata block fields.
- LayoutNotFoundError: a layout name that no template in _layouts/ matches.
- BrokenReferenceError: a cross-post link or site-relative reference that
  resolves to nothing in the output.
- DuplicatePermalinkError: two sources that would write the same output file.
- TemplateRenderError: Jinja syntax or runtime errors inside a body or layout.
"""

from __future__ import annotations

from pathlib import Path


class ConfigError(Exception):
    """Invalid inkpress.yaml or data file."""

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class MetadataError(BuildError):
    """The metadata block is missing, malformed, or has an invalid field."""


class LayoutNotFoundError(BuildError):
    """A content item or layout names a layout that cannot be resolved.

    Attributes:
        layout: The layout name that was requested.
        searched: Template names that were tried.
    """

    def __init__(self, source_path: Path, layout: str, searched: list[str]):
        self.layout = layout
        self.searched = searched
        super().__init__(
            source_path,
            f"Layout '{layout}' not found (tried {', '.join(searched)})",
        )


class BrokenReferenceError(BuildError):
    """A link helper or site-relative URL points at nothing.

    Attributes:
        reference: The unresolved reference as written.
    """

    def __init__(self, source_path: Path, reference: str, message: str | None = None):
        self.reference = reference
        super().__init__(
            source_path, message or f"Broken reference: {reference}"
        )


class DuplicatePermalinkError(BuildError):
    """Two sources resolve to the same output file.

    Attributes:
        output_path: The contested output path (relative to the output dir).
        other_path: The source that claimed the output path first.
    """

    def __init__(self, source_path: Path, output_path: str, other_path: Path):
        self.output_path = output_path
        self.other_path = other_path
        super().__init__(
            source_path,
            f"Output path '{output_path}' is already produced by {other_path}",
        )


class TemplateRenderError(BuildError):
    """A Jinja template failed to parse or render."""
