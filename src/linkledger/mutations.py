"""Pure edits on a Document: insert, delete, batch delete, prune.

None of these touch the store and none deduplicate; the sync controller runs
repair around them. Each returns a new Document (or a result holding one).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from linkledger.codec import is_structural
from linkledger.errors import MalformedRequest, NotFound
from linkledger.models import Category, Document, Entry, EntryMatch

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence


@dataclass(frozen=True)
class Deletion:
    """Outcome of a delete: the new document plus what was taken out."""

    document: Document
    removed: tuple[Entry, ...]
    categories: tuple[str, ...]      # categories that lost at least one entry
    positions: tuple[int, ...] = ()  # their indices in document.categories

    @property
    def count(self) -> int:
        return len(self.removed)


@dataclass(frozen=True)
class Pruning:
    document: Document
    removed: tuple[str, ...]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def normalize_entry(entry: Entry) -> Entry:
    """Return entry with trimmed fields, or raise MalformedRequest.

    A link line cannot carry a label with "]" or a reference with ")" or
    whitespace, and the description must fit on one line and read back as
    plain text (not a heading, not a link).
    """
    label = entry.label.strip()
    reference = entry.reference.strip()
    if not label or not reference:
        msg = "An entry needs both a label and a reference"
        raise MalformedRequest(msg)
    if "]" in label or "\n" in label or "\r" in label:
        msg = f"Label cannot contain ']' or line breaks: {label!r}"
        raise MalformedRequest(msg)
    if ")" in reference or any(ch.isspace() for ch in reference):
        msg = f"Reference cannot contain ')' or whitespace: {reference!r}"
        raise MalformedRequest(msg)
    description = " ".join(entry.description.split())
    if description and is_structural(description):
        msg = f"Description cannot be a heading or contain a link: {description!r}"
        raise MalformedRequest(msg)
    return Entry(label=label, reference=reference, description=description)


def _category_name(name: str | None) -> str | None:
    if name is None or not name.strip():
        return None
    name = name.strip()
    if "\n" in name or "\r" in name:
        msg = f"Category name cannot contain line breaks: {name!r}"
        raise MalformedRequest(msg)
    return name


# ---------------------------------------------------------------------------
# Insert
# ---------------------------------------------------------------------------


def insert_entry(doc: Document, entry: Entry, category_name: str | None = None) -> Document:
    """Append entry to the named category, creating it at the end if missing.

    Without a category the entry goes after the existing uncategorized entries,
    which serialize right after the preamble and ahead of every category, not
    at the end of the document. Text after the last category belongs to that
    category when read back, so an entry placed there would not be found
    again as uncategorized.
    """
    entry = normalize_entry(entry)
    name = _category_name(category_name)

    if name is None:
        return doc.with_entries((*doc.entries, entry))

    target = doc.find_category(name)
    if target is None:
        return doc.with_categories((*doc.categories, Category(name=name, entries=(entry,))))

    categories = list(doc.categories)
    idx = categories.index(target)
    categories[idx] = target.with_entries((*target.entries, entry))
    return doc.with_categories(categories)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def _remove(doc: Document, should_remove: Callable[[Entry], bool], *, first_only: bool) -> Deletion:
    removed: list[Entry] = []
    touched: list[int] = []

    def take(entries: tuple[Entry, ...], position: int | None) -> tuple[Entry, ...]:
        kept = []
        for entry in entries:
            if (not first_only or not removed) and should_remove(entry):
                removed.append(entry)
                if position is not None and position not in touched:
                    touched.append(position)
                continue
            kept.append(entry)
        return tuple(kept)

    loose = take(doc.entries, None)
    categories = [c.with_entries(take(c.entries, i)) for i, c in enumerate(doc.categories)]
    return Deletion(
        document=doc.with_entries(loose).with_categories(categories),
        removed=tuple(removed),
        categories=tuple(dict.fromkeys(categories[i].name for i in touched)),
        positions=tuple(touched),
    )


def delete_entry(doc: Document, reference: str | None = None, label: str | None = None) -> Deletion:
    """Remove the first entry matching reference or label. Its category stays."""
    match = EntryMatch(reference=reference, label=label)
    result = _remove(doc, match.matches, first_only=True)
    if not result.removed:
        msg = f"Link not found: {match.describe()}"
        raise NotFound(msg)
    return result


def delete_entries(doc: Document, matches: Sequence[EntryMatch]) -> Deletion:
    """Remove every entry matching any request.

    Requests that match nothing are skipped; NotFound only when nothing at
    all matched. Callers should check ``Deletion.count``.
    """
    if not matches:
        msg = "At least one link to delete is required"
        raise MalformedRequest(msg)
    result = _remove(doc, lambda e: any(m.matches(e) for m in matches), first_only=False)
    if not result.removed:
        msg = "No matching links found"
        raise NotFound(msg)
    return result


def prune_empty_categories(
    doc: Document,
    candidate_names: Iterable[str],
    positions: Iterable[int] | None = None,
) -> Pruning:
    """Drop candidate categories that have no entries left.

    Empty categories outside candidate_names are kept: they may be
    placeholders the user created on purpose. With ``positions`` (see
    ``Deletion.positions``) only the categories at those indices are
    candidates, so an untouched empty heading that shares a name with an
    emptied one survives.
    """
    candidates = {name.strip() for name in candidate_names}
    allowed = None if positions is None else set(positions)
    kept: list[Category] = []
    removed: list[str] = []
    for i, category in enumerate(doc.categories):
        if category.name in candidates and not category.entries and (allowed is None or i in allowed):
            removed.append(category.name)
        else:
            kept.append(category)
    if not removed:
        return Pruning(document=doc, removed=())
    return Pruning(document=doc.with_categories(kept), removed=tuple(removed))
