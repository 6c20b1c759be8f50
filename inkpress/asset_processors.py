"""Asset processors for inkpress.

This module contains the processors that turn files from the asset store
(assets/) into output files. The registry picks the highest-priority
processor that accepts a file.

Key classes:
- ImageProcessor: Re-saves raster images optimized with Pillow.
- JSProcessor: Minifies JavaScript with rjsmin.
- StaticAssetProcessor: Copies anything else (CSS, fonts, WebAssembly) byte-for-byte.
- AssetProcessorRegistry: Priority-ordered processor lookup.
"""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from rjsmin import jsmin

logger = logging.getLogger(__name__)


class BaseAssetProcessor(ABC):
    """Base class for asset processors."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return processor priority (higher = checked first)."""
        ...

    @abstractmethod
    def can_process(self, path: Path) -> bool:
        """Check if this processor can handle the given asset."""
        ...

    @abstractmethod
    def process(self, source: Path, dest: Path) -> bool:
        """Process source into dest. Returns True on success."""
        ...

    def ensure_dest_dir(self, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)


class ImageProcessor(BaseAssetProcessor):
    """Optimizes PNG, JPEG and WebP images using Pillow.

    Files Pillow cannot read are copied unchanged.
    """

    SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}

    @property
    def priority(self) -> int:
        return 100

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        try:
            with Image.open(source) as img:
                img.save(dest, optimize=True)
            return True
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("Could not optimize %s (%s); copying as-is", source, exc)
        shutil.copyfile(source, dest)
        return True


class JSProcessor(BaseAssetProcessor):
    """Minifies JavaScript files with rjsmin.

    Files that are already minified (*.min.js) are copied unchanged.
    """

    @property
    def priority(self) -> int:
        return 80

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() == ".js" and not path.name.endswith(".min.js")

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        try:
            text = source.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.warning("%s is not UTF-8; copying without minification", source)
            shutil.copyfile(source, dest)
            return True
        dest.write_text(jsmin(text), encoding="utf-8")
        return True


class StaticAssetProcessor(BaseAssetProcessor):
    """Copies assets without modification.

    The fallback for stylesheets, fonts, SVGs, WebAssembly binaries and
    anything else that must be published byte-for-byte.
    """

    @property
    def priority(self) -> int:
        return 0

    def can_process(self, path: Path) -> bool:
        return True

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        shutil.copyfile(source, dest)
        return True


class AssetProcessorRegistry:
    """Registry for managing asset processors, ordered by priority."""

    def __init__(self):
        self._processors: list[BaseAssetProcessor] = []

    def register(self, processor: BaseAssetProcessor) -> None:
        """Register a new processor (kept sorted by priority, highest first)."""
        self._processors.append(processor)
        self._processors.sort(key=lambda p: p.priority, reverse=True)

    def get_processor(self, path: Path) -> BaseAssetProcessor | None:
        for processor in self._processors:
            if processor.can_process(path):
                return processor
        return None

    def process(self, source: Path, dest: Path) -> bool:
        """Process an asset using the appropriate processor.

        Returns:
            True if processing was successful, False if no processor found.
        """
        processor = self.get_processor(source)
        if processor:
            return processor.process(source, dest)
        return False


def create_default_registry(minify_js: bool = True) -> AssetProcessorRegistry:
    """Create a registry with the default processors."""
    registry = AssetProcessorRegistry()
    registry.register(ImageProcessor())
    if minify_js:
        registry.register(JSProcessor())
    registry.register(StaticAssetProcessor())
    return registry
