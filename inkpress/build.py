"""Site building for inkpress.

This module contains the core logic for building a static site from a
project directory. Everything that can fail (metadata, layouts, templates,
output path collisions, broken references) is checked before the output
directory is touched, so a failed build never leaves a half-written site.

Key functions:
- build_site: Build the site, raising the first BuildError.
- check_site: Run every check without writing, returning all problems.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .assets import AssetPipeline
from .config import CONFIG_FILENAME, load_config, load_data, normalize_baseurl
from .content import ContentProcessor, Page, StaticFile
from .errors import BuildError, ConfigError
from .feeds import create_default_feed_registry
from .references import OutputManifest, ReferenceChecker
from .templates import TemplateEngine
from .utils import ensure_clean_dir

logger = logging.getLogger(__name__)

SITE_DIR = "site"

ErrorHandler = Callable[[BuildError], None]


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: Every rendered content item, hidden ones included.
        static_files: Files copied unchanged from site/.
        output_dir: Directory where the site was built.
        config: Effective site configuration.
        feeds: Feed filenames that were written.
    """

    pages: list[Page]
    static_files: list[StaticFile]
    output_dir: Path
    config: dict[str, Any]
    feeds: list[str] = field(default_factory=list)


@dataclass
class _RenderedSite:
    config: dict[str, Any]
    pages: list[Page]
    static_files: list[StaticFile]
    outputs: list[tuple[Page, str]]
    manifest: OutputManifest


def _raise(exc: BuildError) -> None:
    raise exc


def load_build_config(
    project_root: Path, base_url: str | None = None, site_url: str | None = None
) -> dict[str, Any]:
    """Load inkpress.yaml and apply base path and origin overrides."""
    config = load_config(project_root)
    if site_url is not None:
        config["url"] = site_url.rstrip("/")
    if base_url is not None:
        try:
            config["baseurl"] = normalize_baseurl(base_url)
        except ValueError as exc:
            raise ConfigError(project_root / CONFIG_FILENAME, str(exc)) from exc
    return config


def _render_site(
    project_root: Path,
    config: dict[str, Any],
    include_drafts: bool,
    on_error: ErrorHandler,
) -> _RenderedSite:
    """Load, validate and render every item without writing anything.

    Items that fail a phase are reported through on_error and left out of
    later phases.
    """
    site_dir = project_root / SITE_DIR
    if not site_dir.exists():
        raise FileNotFoundError(f"Expected site directory at {site_dir}")

    data = load_data(project_root)
    content = ContentProcessor(site_dir, config).load(
        include_drafts=include_drafts, on_error=on_error
    )
    engine = TemplateEngine(site_dir, config, data)
    engine.update_collections(content.pages, content.static_files)

    manifest = OutputManifest()
    pages: list[Page] = []
    for page in content.pages:
        try:
            manifest.claim(page.output_path, page.path)
            engine.validate_layouts(page)
        except BuildError as exc:
            on_error(exc)
            continue
        pages.append(page)
    for static in content.static_files:
        try:
            manifest.claim(static.output_path, static.path)
        except BuildError as exc:
            on_error(exc)
    for source, rel in AssetPipeline(project_root, project_root).iter_assets():
        try:
            manifest.claim(rel, source)
        except BuildError as exc:
            on_error(exc)
    config_path = project_root / CONFIG_FILENAME
    for generator in create_default_feed_registry():
        if generator.enabled(config):
            try:
                manifest.claim(generator.filename, config_path)
            except BuildError as exc:
                on_error(exc)

    rendered: list[Page] = []
    for page in pages:
        try:
            engine.render_content(page)
        except BuildError as exc:
            on_error(exc)
            continue
        rendered.append(page)

    outputs: list[tuple[Page, str]] = []
    for page in rendered:
        try:
            outputs.append((page, engine.render_page(page)))
        except BuildError as exc:
            on_error(exc)

    if config.get("check_references", True):
        checker = ReferenceChecker(config.get("baseurl", ""), manifest)
        for page, html in outputs:
            for error in checker.check(page.path, html):
                on_error(error)

    return _RenderedSite(
        config=config,
        pages=[page for page, _ in outputs],
        static_files=content.static_files,
        outputs=outputs,
        manifest=manifest,
    )


def resolve_output_dir(
    project_root: Path, config: dict[str, Any], override: Path | None = None
) -> Path:
    """Return the output directory, refusing one that overlaps project sources.

    Raises:
        ConfigError: If the directory is the project root or lies inside
            site/, assets/ or data/.
    """
    output_dir = override or (project_root / str(config.get("output_dir") or "output"))
    resolved = output_dir.resolve()
    sources = [(project_root / folder).resolve() for folder in (SITE_DIR, "assets", "data")]
    if resolved == project_root.resolve() or any(
        resolved == p or p in resolved.parents for p in sources
    ):
        raise ConfigError(
            project_root / CONFIG_FILENAME,
            f"output_dir {output_dir} would overwrite project sources",
        )
    return output_dir


def build_site(
    project_root: Path,
    include_drafts: bool = False,
    base_url: str | None = None,
    clean_output: bool = True,
    output_dir_override: Path | None = None,
    site_url: str | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        include_drafts: Whether to build posts under site/_drafts/.
        base_url: Optional base path overriding ``baseurl`` from the config.
        clean_output: Whether to wipe the output directory before writing.
        output_dir_override: Write here instead of the configured output_dir.
        site_url: Optional origin overriding ``url`` from the config.

    Returns:
        BuildResult describing what was written.

    Raises:
        BuildError: The first problem found; nothing is written.
        ConfigError: If inkpress.yaml or a data file is invalid.
    """
    config = load_build_config(project_root, base_url, site_url)
    output_dir = resolve_output_dir(project_root, config, output_dir_override)
    site = _render_site(project_root, config, include_drafts, on_error=_raise)

    if clean_output:
        ensure_clean_dir(output_dir)
    else:
        output_dir.mkdir(parents=True, exist_ok=True)

    for page, html in site.outputs:
        _write_page(output_dir, page.output_path, html)

    pipeline = AssetPipeline(
        project_root, output_dir, minify_js=bool(config.get("minify_js", True))
    )
    pipeline.copy_static(site.static_files)
    pipeline.run()
    feeds = create_default_feed_registry().generate_all(output_dir, site.pages, config)

    logger.info(
        "Built %d pages, %d static files into %s",
        len(site.outputs),
        len(site.static_files),
        output_dir,
    )
    return BuildResult(
        pages=site.pages,
        static_files=site.static_files,
        output_dir=output_dir,
        config=config,
        feeds=feeds,
    )


def check_site(
    project_root: Path, include_drafts: bool = False, base_url: str | None = None
) -> list[BuildError]:
    """Run every build check without writing, collecting all problems.

    Returns:
        Every BuildError found, in discovery order (empty when the site is clean).
    """
    config = load_build_config(project_root, base_url)
    problems: list[BuildError] = []
    _render_site(project_root, config, include_drafts, on_error=problems.append)
    return problems


def _write_page(output_dir: Path, output_path: str, rendered: str) -> None:
    target = output_dir / output_path
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8", newline="") as f:
        f.write(rendered)
