"""Command-line interface for inkpress.

This module defines the CLI commands using Click framework.
It provides commands for creating new projects, building and checking sites,
writing posts, and running the development server.

Commands:
- new: Scaffold a new inkpress project.
- build: Build the site into the output directory.
- check: Report every build problem without writing output.
- serve: Run development server with live reload.
- post: Create a new dated post interactively.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .config import CONFIG_FILENAME
from .errors import BuildError, ConfigError
from .utils import slugify, split_tags, strip_date_prefix

# Path to the project skeleton copied by `inkpress new`
_SCAFFOLD_DIR = Path(__file__).parent / "scaffold"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _project_root() -> Path:
    root = Path.cwd()
    if not (root / CONFIG_FILENAME).exists():
        raise click.ClickException(
            f"No {CONFIG_FILENAME} found. Run this command from an inkpress project root."
        )
    return root


def _display_path(path: Path, project_root: Path) -> str:
    try:
        return str(path.relative_to(project_root))
    except ValueError:
        return str(path)


def _report_error(exc: BuildError, project_root: Path) -> None:
    click.echo(
        click.style(f"  File: {_display_path(exc.source_path, project_root)}", fg="yellow"),
        err=True,
    )
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)


@click.group()
@click.version_option(version=__version__, prog_name="inkpress")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """inkpress static blog generator."""
    _configure_logging(verbose)


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new inkpress project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New inkpress site created at {target}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include posts from site/_drafts")
@click.option("--base-url", default=None, help="Base path override, e.g. /blog")
def build(drafts: bool, base_url: str | None):
    """Build the site into the output directory."""
    project_root = _project_root()
    from .build import build_site

    try:
        result = build_site(project_root, include_drafts=drafts, base_url=base_url)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        _report_error(exc, project_root)
        raise SystemExit(1) from None
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include posts from site/_drafts")
@click.option("--base-url", default=None, help="Base path override, e.g. /blog")
def check(drafts: bool, base_url: str | None):
    """Report every build problem without writing output."""
    project_root = _project_root()
    from .build import check_site

    try:
        problems = check_site(project_root, include_drafts=drafts, base_url=base_url)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    if not problems:
        click.echo(click.style("No problems found.", fg="green"))
        return
    click.echo(
        click.style(f"Found {len(problems)} problem(s):", fg="red", bold=True), err=True
    )
    for exc in problems:
        _report_error(exc, project_root)
    raise SystemExit(1)


@cli.command()
@click.option("--drafts", is_flag=True, help="Include posts from site/_drafts")
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides inkpress.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides inkpress.yaml ws_port)",
)
@click.option("--base-url", default=None, help="Base path override, e.g. /blog")
def serve(drafts: bool, port: int | None, ws_port: int | None, base_url: str | None):
    """Run dev server with live reload."""
    project_root = _project_root()
    from .server import DevServer

    try:
        server = DevServer(project_root, http_port=port, ws_port=ws_port, base_url=base_url)
        server.start(include_drafts=drafts)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        _report_error(exc, project_root)
        raise SystemExit(1) from None
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None


@cli.command()
@click.argument("title", required=False)
@click.option("--draft", is_flag=True, help="Write into site/_drafts instead of site/_posts")
def post(title: str | None, draft: bool):
    """Create a new dated post."""
    project_root = _project_root()
    site_dir = project_root / "site"
    target_dir = site_dir / ("_drafts" if draft else "_posts")

    tags: list[str] = []
    if not title:
        title = questionary.text(
            "Post title:",
            validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
            style=_questionary_style(),
        ).ask()
        if title is None:
            raise click.Abort()
        answer = questionary.text(
            "Tags (space separated, optional):",
            style=_questionary_style(),
        ).ask()
        if answer is None:
            raise click.Abort()
        tags = split_tags(answer)
    title = title.strip()

    slug = slugify(title)
    if not slug:
        raise click.ClickException(f"Cannot derive a file name from title: {title!r}")

    # Drafts carry no date prefix; the date is filled in when published.
    if draft:
        filename = f"{slug}.md"
    else:
        filename = f"{datetime.now().strftime('%Y-%m-%d')}-{slug}.md"
    target_path = target_dir / filename

    if target_path.exists():
        raise click.ClickException(
            f"File already exists: {target_path.relative_to(project_root)}"
        )

    # Same slug on another date would collide on date-less permalinks
    conflicting = _find_slug_collision(target_dir, slug)
    if conflicting is not None:
        raise click.ClickException(
            f"A post with slug '{slug}' already exists: {conflicting.name}"
        )

    target_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(_post_template(title, tags), encoding="utf-8")
    click.echo(f"Created {target_path.relative_to(project_root)}")


def _find_slug_collision(folder: Path, slug: str) -> Path | None:
    if not folder.exists():
        return None
    for path in sorted(folder.iterdir()):
        if path.is_file() and path.suffix in {".md", ".markdown"}:
            if strip_date_prefix(path.stem).lower() == slug:
                return path
    return None


def _post_template(title: str, tags: list[str]) -> str:
    metadata = yaml.safe_dump(
        {"layout": "post", "title": title, "tags": tags},
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=None,
    )
    return f"---\n{metadata}---\n\n"


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new inkpress project.

    Args:
        root: Root directory for the new project.
    """
    for src_path in _SCAFFOLD_DIR.rglob("*"):
        if src_path.is_dir() or src_path.name == "__pycache__":
            continue
        rel_path = src_path.relative_to(_SCAFFOLD_DIR)
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)

    # The sample post is dated the day the project is created.
    posts_dir = root / "site" / "_posts"
    for sample in posts_dir.glob("*-welcome.md"):
        sample.rename(posts_dir / f"{datetime.now().strftime('%Y-%m-%d')}-welcome.md")

    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("INKPRESS_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run(
            [git_bin, "init"],
            cwd=root,
            check=True,
            capture_output=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        logging.getLogger(__name__).warning("git init failed: %s", exc)
