"""Duplicate-entry detection and repair.

Two writers appending the same link without a version check can leave the
same reference in the ledger twice. Repair keeps the first occurrence (in
document order) and drops the rest; it does not prune categories.
"""

from __future__ import annotations

from collections import Counter

from linkledger.models import Document, Entry


def detect(doc: Document) -> frozenset[str]:
    """References that appear on more than one entry, anywhere in doc."""
    counts = Counter(entry.reference for _, entry in doc.iter_entries())
    return frozenset(ref for ref, n in counts.items() if n > 1)


def duplicate_count(doc: Document) -> int:
    """Number of entries repair() would drop."""
    return doc.entry_count() - len({entry.reference for _, entry in doc.iter_entries()})


def repair(doc: Document) -> Document:
    """Drop every entry whose reference was already seen earlier in doc."""
    if not detect(doc):
        return doc

    seen: set[str] = set()

    def keep(entries: tuple[Entry, ...]) -> list[Entry]:
        kept = []
        for entry in entries:
            if entry.reference in seen:
                continue
            seen.add(entry.reference)
            kept.append(entry)
        return kept

    # uncategorized entries come first in document order
    loose = keep(doc.entries)
    categories = [c.with_entries(keep(c.entries)) for c in doc.categories]
    return doc.with_entries(loose).with_categories(categories)
