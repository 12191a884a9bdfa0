"""Data models for the link ledger document.

All values are frozen dataclasses holding tuples, so a Document is never
changed in place: every operation returns a new instance.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from linkledger.errors import MalformedRequest

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

DEFAULT_TITLE = "Useful Links"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Entry:
    """One link record: ``[label](reference)`` plus an optional description line.

    ``raw_line`` keeps a hand-edited link line (``- [Foo](url) - a tool``)
    verbatim; it is empty when the line is just the bare link. ``notes`` are
    unclassified lines that followed the entry inside its category.
    """

    label: str
    reference: str
    description: str = ""
    raw_line: str = ""
    notes: tuple[str, ...] = ()

    @property
    def link_line(self) -> str:
        return self.raw_line or f"[{self.label}]({self.reference})"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"label": self.label, "reference": self.reference}
        if self.description:
            d["description"] = self.description
        return d


@dataclass(frozen=True)
class Category:
    """A ``## name`` section and its entries, in file order."""

    name: str
    entries: tuple[Entry, ...] = ()
    heading_gap: bool = True       # blank line between heading and first entry
    notes: tuple[str, ...] = ()    # unclassified lines between heading and first entry

    @property
    def slug(self) -> str:
        """Anchor id a renderer derives from the heading text."""
        return _SLUG_RE.sub("-", self.name.lower()).strip("-")

    def with_entries(self, entries: Iterable[Entry]) -> Category:
        return replace(self, entries=tuple(entries))


@dataclass(frozen=True)
class Document:
    """The whole ledger.

    ``entries`` holds uncategorized links (those before the first heading);
    they serialize right after the preamble.
    """

    preamble: tuple[str, ...] = ()
    entries: tuple[Entry, ...] = ()
    categories: tuple[Category, ...] = ()

    @property
    def title(self) -> str | None:
        for line in self.preamble:
            if line.startswith("# "):
                return line[2:].strip()
        return None

    def with_entries(self, entries: Iterable[Entry]) -> Document:
        return replace(self, entries=tuple(entries))

    def with_categories(self, categories: Iterable[Category]) -> Document:
        return replace(self, categories=tuple(categories))

    def find_category(self, name: str) -> Category | None:
        """First category whose trimmed name equals ``name`` exactly."""
        wanted = name.strip()
        for category in self.categories:
            if category.name == wanted:
                return category
        return None

    def iter_entries(self) -> Iterator[tuple[str | None, Entry]]:
        """Yield (category name or None, entry) in document order."""
        for entry in self.entries:
            yield None, entry
        for category in self.categories:
            for entry in category.entries:
                yield category.name, entry

    def entry_count(self) -> int:
        return len(self.entries) + sum(len(c.entries) for c in self.categories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "entries": [e.to_dict() for e in self.entries],
            "categories": [
                {"name": c.name, "slug": c.slug, "entries": [e.to_dict() for e in c.entries]}
                for c in self.categories
            ],
        }


def default_document(title: str = DEFAULT_TITLE) -> Document:
    """The ledger used when the store does not have one yet."""
    return Document(preamble=(f"# {title}",))


@dataclass(frozen=True)
class EntryMatch:
    """A delete request: matches an entry by reference OR by label."""

    reference: str | None = None
    label: str | None = None

    def __post_init__(self) -> None:
        if not self.reference and not self.label:
            msg = "A delete request needs a reference or a label"
            raise MalformedRequest(msg)

    def matches(self, entry: Entry) -> bool:
        return bool(
            (self.reference and entry.reference == self.reference)
            or (self.label and entry.label == self.label)
        )

    def describe(self) -> str:
        return self.label or self.reference or ""
