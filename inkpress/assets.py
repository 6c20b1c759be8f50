"""Asset pipeline for inkpress.

Copies the asset store (assets/) into output/assets/ through the processor
registry, and copies static files found under site/ unchanged.

Key components:
- AssetPipeline: Lists and publishes assets and static files.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from .asset_processors import AssetProcessorRegistry, create_default_registry
from .content import StaticFile

logger = logging.getLogger(__name__)

ASSETS_DIR = "assets"


class AssetPipeline:
    """Publishes assets and static files into the output directory.

    Attributes:
        project_root: Root directory of the project.
        assets_dir: Directory containing source assets.
        output_dir: Directory where processed assets are written.
        processor_registry: Registry of asset processors.
    """

    def __init__(
        self,
        project_root: Path,
        output_dir: Path,
        processor_registry: AssetProcessorRegistry | None = None,
        minify_js: bool = True,
    ):
        self.project_root = project_root
        self.assets_dir = project_root / ASSETS_DIR
        self.output_dir = output_dir
        self.processor_registry = processor_registry or create_default_registry(
            minify_js=minify_js
        )

    def iter_assets(self) -> list[tuple[Path, str]]:
        """Return (source, output path) for every file in the asset store.

        Output paths are relative to the output directory, POSIX style.
        Dotfiles are skipped.
        """
        if not self.assets_dir.exists():
            return []
        items: list[tuple[Path, str]] = []
        for item in sorted(self.assets_dir.rglob("*")):
            if item.is_dir():
                continue
            rel = item.relative_to(self.assets_dir)
            if any(part.startswith(".") for part in rel.parts):
                continue
            items.append((item, f"{ASSETS_DIR}/{rel.as_posix()}"))
        return items

    def run(self) -> int:
        """Process every asset. Returns the number of files written."""
        count = 0
        for source, rel in self.iter_assets():
            if self.processor_registry.process(source, self.output_dir / rel):
                count += 1
        logger.debug("Processed %d assets", count)
        return count

    def copy_static(self, static_files: Iterable[StaticFile]) -> int:
        """Copy static files from site/ unchanged. Returns the count copied."""
        count = 0
        for static in static_files:
            dest = self.output_dir / static.output_path
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(static.path, dest)
            count += 1
        return count
