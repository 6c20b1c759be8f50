from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence

from .content import Page


class PageCollection(Sequence[Page]):
    """Lightweight helper for working with lists of Pages in templates and code."""

    def __init__(self, pages: Iterable[Page]):
        self._pages = list(pages)

    def __iter__(self) -> Iterator[Page]:
        return iter(self._pages)

    def __len__(self) -> int:
        return len(self._pages)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return PageCollection(self._pages[item])
        return self._pages[item]

    def posts(self) -> PageCollection:
        """Posts and drafts."""
        return PageCollection(p for p in self._pages if p.is_post)

    def pages(self) -> PageCollection:
        return PageCollection(p for p in self._pages if not p.is_post)

    def visible(self) -> PageCollection:
        """Items that belong in listings (not hidden)."""
        return PageCollection(p for p in self._pages if not p.hidden)

    def hidden(self) -> PageCollection:
        return PageCollection(p for p in self._pages if p.hidden)

    def drafts(self) -> PageCollection:
        return PageCollection(p for p in self._pages if p.draft)

    def with_tag(self, tag: str) -> PageCollection:
        return PageCollection(p for p in self._pages if tag in p.tags)

    def sorted(self, reverse: bool = True) -> PageCollection:
        """Sort by date, then slug.

        Args:
            reverse: If True (default), newest first.
        """
        return PageCollection(
            sorted(self._pages, key=lambda p: (p.date, p.slug), reverse=reverse)
        )

    def by_position(self) -> PageCollection:
        """Sort by explicit ``order``, unordered items last, then by URL."""
        return PageCollection(
            sorted(
                self._pages,
                key=lambda p: (p.order is None, p.order or 0, p.url),
            )
        )

    def latest(self, count: int = 5) -> PageCollection:
        return self.sorted()[:count]

    def find(self, ref: str) -> Page | None:
        """Find a post by filename stem ("2019-03-01-slug") or slug."""
        for page in self._pages:
            if page.id == ref:
                return page
        matches = [p for p in self._pages if p.slug == ref]
        return matches[0] if len(matches) == 1 else None

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PageCollection({len(self._pages)} pages)"


class TagCollection(Mapping[str, PageCollection]):
    """Mapping of tag name to PageCollection with convenience helpers."""

    def __init__(self, mapping: dict[str, Iterable[Page]]):
        self._mapping = {k: PageCollection(v) for k, v in mapping.items()}

    def __getitem__(self, key: str) -> PageCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TagCollection({len(self._mapping)} tags)"
