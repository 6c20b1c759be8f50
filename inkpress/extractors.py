"""Metadata extraction for inkpress content items.

This module parses the metadata block at the top of every content file and
turns its fields into validated Page attributes. Each extractor handles one
field, and the composite runs them in order and merges their results.

Key classes:
- LayoutExtractor: Requires a non-empty layout name.
- TitleExtractor: Title from metadata, first heading, or filename.
- PermalinkExtractor: Validates an explicit output URL.
- TagExtractor: Space-separated or list tags.
- VisibilityExtractor: The hidden flag.
- DateExtractor: Date from metadata or the filename prefix.
- OrderExtractor: Explicit listing position for pages.
- SlugExtractor: Slug override.
- DescriptionExtractor: Description and excerpt from the body.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from .errors import MetadataError
from .utils import (
    extract_date_from_name,
    first_paragraph,
    is_markdown,
    parse_bool,
    split_tags,
    titleize,
)

FRONTMATTER_RE = re.compile(
    r"\A\ufeff?---[ \t]*\r?\n(?P<yaml>.*?)^---[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)


def has_frontmatter(text: str) -> bool:
    """Return True when the text starts with a metadata block."""
    return FRONTMATTER_RE.match(text) is not None


def extract_frontmatter(
    text: str, path: Path
) -> tuple[dict[str, Any] | None, str, int]:
    """Split a metadata block from the body.

    Args:
        text: Raw file content.
        path: Source file, used in error messages.

    Returns:
        Tuple of (metadata dict or None when there is no block, body text,
        number of lines the block occupied).

    Raises:
        MetadataError: If the block is not valid YAML or not a mapping.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return None, text, 0
    try:
        data = yaml.safe_load(match.group("yaml"))
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" on line {mark.line + 2}" if mark is not None else ""
        problem = getattr(exc, "problem", None) or str(exc)
        raise MetadataError(path, f"Invalid metadata block{where}: {problem}", exc) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MetadataError(path, "Metadata block must be a set of key: value pairs")
    line_count = match.group(0).count("\n")
    return data, text[match.end() :], line_count


class LayoutExtractor:
    """Requires a non-empty layout name."""

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        layout = frontmatter.get("layout")
        if layout is None or (isinstance(layout, str) and not layout.strip()):
            raise MetadataError(path, "Missing required metadata field 'layout'")
        if not isinstance(layout, str):
            raise MetadataError(path, f"'layout' must be a string, got {layout!r}")
        return {"layout": layout.strip()}


class TitleExtractor:
    """Extracts the title from metadata, content, or filename.

    Prefers the title field, then a level-1 heading (# Title) in the
    body, falling back to titleizing the filename.
    """

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        title = frontmatter.get("title")
        if title is not None and not isinstance(title, (dict, list)):
            return {"title": str(title)}
        if title is not None:
            raise MetadataError(path, "'title' must be a single value")
        if is_markdown(path):
            for line in body.splitlines():
                stripped = line.strip()
                if stripped.startswith("# "):
                    return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class PermalinkExtractor:
    """Validates the permalink override."""

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        permalink = frontmatter.get("permalink")
        if permalink is None:
            return {"permalink": None}
        if not isinstance(permalink, str) or not permalink.startswith("/"):
            raise MetadataError(
                path, f"'permalink' must be a path starting with '/', got {permalink!r}"
            )
        if any(ch.isspace() for ch in permalink):
            raise MetadataError(path, f"'permalink' must not contain whitespace: {permalink!r}")
        return {"permalink": permalink}


class TagExtractor:
    """Extracts tags from a space-separated string or a list."""

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        try:
            return {"tags": split_tags(frontmatter.get("tags"))}
        except TypeError as exc:
            raise MetadataError(path, f"Invalid 'tags': {exc}", exc) from exc


class VisibilityExtractor:
    """Reads the hidden flag (published but left out of listings)."""

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        try:
            return {"hidden": parse_bool(frontmatter.get("hidden", False))}
        except ValueError as exc:
            raise MetadataError(path, f"Invalid 'hidden': {exc}", exc) from exc


class DateExtractor:
    """Extracts the date from metadata or a YYYY-MM-DD filename prefix.

    A metadata date wins over the filename. Timezone-aware values keep
    their wall-clock time so every date in the site compares cleanly.
    Returns None when neither source has a date.
    """

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        value = frontmatter.get("date")
        if value is None:
            return {"date": extract_date_from_name(path.stem)}
        if isinstance(value, datetime):
            return {"date": value.replace(tzinfo=None)}
        if isinstance(value, date):
            return {"date": datetime(value.year, value.month, value.day)}
        if isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.strip())
            except ValueError as exc:
                raise MetadataError(path, f"Invalid 'date': {value!r}", exc) from exc
            return {"date": parsed.replace(tzinfo=None)}
        raise MetadataError(path, f"Invalid 'date': {value!r}")


class OrderExtractor:
    """Reads the explicit listing position."""

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        order = frontmatter.get("order")
        if order is None:
            return {"order": None}
        if isinstance(order, bool) or not isinstance(order, int):
            raise MetadataError(path, f"'order' must be an integer, got {order!r}")
        return {"order": order}


class SlugExtractor:
    """Reads a slug override."""

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        slug = frontmatter.get("slug")
        if slug is None:
            return {}
        if not isinstance(slug, (str, int)) or not str(slug).strip():
            raise MetadataError(path, f"'slug' must be a non-empty string, got {slug!r}")
        return {"slug": str(slug).strip()}


class DescriptionExtractor:
    """Extracts description and excerpt.

    The description comes from metadata or the first paragraph (truncated
    to 160 chars); the excerpt is the full first paragraph of Markdown
    bodies.
    """

    def extract(self, body: str, path: Path, frontmatter: dict[str, Any]) -> dict[str, Any]:
        description = frontmatter.get("description")
        if description is None:
            description = first_paragraph(body)
        excerpt = self._extract_excerpt(body) if is_markdown(path) else ""
        return {"description": str(description), "excerpt": excerpt}

    def _extract_excerpt(self, text: str) -> str:
        """Extract the first prose paragraph from markdown text."""
        paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
        for para in paragraphs:
            if para.startswith(("#", "![", "```", "~~~", "---", "<", "{%")):
                continue
            return " ".join(para.split())
        return ""


class CompositeMetadataExtractor:
    """Parses the metadata block and runs every field extractor.

    Later extractors can override earlier ones.
    """

    def __init__(self, extractors: list | None = None):
        """Initialize with a list of extractors.

        Args:
            extractors: Field extractors. If None, uses the default set.
        """
        if extractors is None:
            self._extractors = [
                LayoutExtractor(),
                TitleExtractor(),
                PermalinkExtractor(),
                TagExtractor(),
                VisibilityExtractor(),
                DateExtractor(),
                OrderExtractor(),
                SlugExtractor(),
                DescriptionExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor) -> None:
        """Add an extractor to the composite."""
        self._extractors.append(extractor)

    def extract(
        self,
        content: str,
        path: Path,
        defaults: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Extract all metadata from a content file.

        Args:
            content: Raw file content.
            path: Path to the source file.
            defaults: Metadata applied underneath the file's own block.

        Returns:
            Dictionary with 'frontmatter', 'body', 'body_offset' and every
            extracted field.

        Raises:
            MetadataError: If the block is missing or any field is invalid.
        """
        frontmatter, body, offset = extract_frontmatter(content, path)
        if frontmatter is None:
            raise MetadataError(
                path, "Missing metadata block (the file must start with a '---' line)"
            )
        merged = {**(defaults or {}), **frontmatter}
        result: dict[str, Any] = {
            "frontmatter": merged,
            "body": body,
            "body_offset": offset,
        }
        for extractor in self._extractors:
            result.update(extractor.extract(body, path, merged))
        return result


# Default composite extractor instance
default_metadata_extractor = CompositeMetadataExtractor()
