"""Output manifest and reference checking for inkpress.

Every source that produces an output file claims its path in an
OutputManifest before anything is written. Two claims on one path are a
DuplicatePermalinkError. Once every page is rendered, ReferenceChecker
scans each page's HTML for site-base-relative URLs and reports the ones
that resolve to nothing in the manifest.

Key classes:
- OutputManifest: Output path -> source path, with collision detection.
- ReferenceChecker: Finds broken site-relative links and asset references.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from urllib.parse import unquote

from .errors import BrokenReferenceError, DuplicatePermalinkError
from .html_utils import iter_reference_urls


class OutputManifest:
    """Tracks which source produces each output file.

    Attributes:
        owners: Mapping of output path (relative, POSIX) to source path.
    """

    def __init__(self) -> None:
        self.owners: dict[str, Path] = {}

    def __contains__(self, output_path: str) -> bool:
        return output_path in self.owners

    def __len__(self) -> int:
        return len(self.owners)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.owners))

    def claim(self, output_path: str, source: Path) -> None:
        """Record that source writes output_path.

        Raises:
            DuplicatePermalinkError: If another source already claimed it.
        """
        owner = self.owners.get(output_path)
        if owner is not None and owner != source:
            raise DuplicatePermalinkError(source, output_path, owner)
        self.owners[output_path] = source

    def resolves(self, url_path: str) -> bool:
        """Check whether a site-relative URL path maps to an output file.

        "/a/b/" matches "a/b/index.html"; "/a/b" matches "a/b" or
        "a/b/index.html".
        """
        rel = unquote(url_path).lstrip("/")
        if not rel or rel.endswith("/"):
            return f"{rel}index.html" in self.owners
        return rel in self.owners or f"{rel}/index.html" in self.owners


class ReferenceChecker:
    """Verifies site-base-relative URLs in rendered pages.

    Only root-relative URLs under the base path are checked; with an empty
    base path that is every root-relative URL. Code regions are ignored.

    Attributes:
        baseurl: Site base path ("" or "/something").
        manifest: Every output file the build will write.
    """

    def __init__(self, baseurl: str, manifest: OutputManifest):
        self.baseurl = baseurl
        self.manifest = manifest

    def _site_path(self, url: str) -> str | None:
        if not self.baseurl:
            return url
        if url == self.baseurl:
            return "/"
        if url.startswith(f"{self.baseurl}/"):
            return url[len(self.baseurl) :]
        return None

    def check(self, source: Path, html: str) -> list[BrokenReferenceError]:
        """Return one error per distinct broken reference in html."""
        errors: list[BrokenReferenceError] = []
        seen: set[str] = set()
        for url in iter_reference_urls(html):
            if url in seen:
                continue
            seen.add(url)
            site_path = self._site_path(url)
            if site_path is None or self.manifest.resolves(site_path):
                continue
            errors.append(
                BrokenReferenceError(
                    source, url, f"Broken link or asset reference: {url}"
                )
            )
        return errors
