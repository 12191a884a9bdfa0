"""Parse ledger text into a Document and serialize it back canonically.

Text format:

    # Useful Links              <- title, part of the preamble

    [Loose](https://a.example)  <- uncategorized entry (before any heading)

    ## Tools                    <- category heading
    [Foo](https://foo.com)      <- entry link line
    A tool.                     <- description (line right after the link)

    - [Bar](https://bar.com)    <- any line holding a link is a link line

The parser never fails and never loses text: lines it cannot classify are
inert. Inside the preamble they stay in the preamble; inside a category they
are kept as notes on the category or on the entry they follow.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field, replace

from linkledger.models import Category, Document, Entry

log = logging.getLogger("linkledger.codec")

LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_ANY_HEADING_RE = re.compile(r"^#{1,6}(\s|$)")
_HEADING_PREFIX = "## "


class _State(enum.Enum):
    IN_PREAMBLE = "preamble"
    IN_CATEGORY = "category"
    AFTER_LINK = "after_link"


def match_link(line: str) -> tuple[str, str] | None:
    """Return (label, reference) of the first link on the line, if any."""
    m = LINK_RE.search(line)
    if m is None:
        return None
    return m.group(1), m.group(2)


def _heading_like(line: str) -> bool:
    return _ANY_HEADING_RE.match(line.lstrip()) is not None


def is_structural(line: str) -> bool:
    """True if line would parse as a heading or a link line, not plain text."""
    return _heading_like(line) or match_link(line) is not None


def _heading_name(line: str) -> str | None:
    if not line.startswith(_HEADING_PREFIX):
        return None
    name = line[len(_HEADING_PREFIX):].strip()
    return name or None


@dataclass
class _OpenCategory:
    name: str
    entries: list[Entry] = field(default_factory=list)
    gap: bool = True
    notes: list[str] = field(default_factory=list)


class _Builder:
    """Mutable scratch state for one parse; frozen into a Document at the end."""

    def __init__(self) -> None:
        self.preamble: list[str] = []
        self.loose: list[Entry] = []
        self.categories: list[_OpenCategory] = []
        self.pending: Entry | None = None     # link awaiting a description
        self.heading_open = False             # heading seen, nothing after it yet
        self.noted = 0

    def _target(self) -> list[Entry]:
        return self.categories[-1].entries if self.categories else self.loose

    def open_category(self, name: str) -> None:
        self.flush()
        self.categories.append(_OpenCategory(name))
        self.heading_open = True

    def open_link(self, label: str, reference: str, line: str) -> None:
        self.flush()
        if self.heading_open:
            self.categories[-1].gap = False
        self.heading_open = False
        raw = line.strip()
        if raw == f"[{label}]({reference})":
            raw = ""
        self.pending = Entry(label=label, reference=reference, raw_line=raw)

    def flush(self, description: str = "") -> None:
        if self.pending is not None:
            self._target().append(replace(self.pending, description=description))
            self.pending = None

    def note(self, line: str) -> None:
        """Keep an unclassified line inside the open category."""
        self.flush()
        self.heading_open = False
        self.noted += 1
        category = self.categories[-1]
        if category.entries:
            last = category.entries[-1]
            category.entries[-1] = replace(last, notes=(*last.notes, line.strip()))
        else:
            category.notes.append(line.strip())

    def build(self) -> Document:
        self.flush()
        return Document(
            preamble=_tidy_preamble(self.preamble),
            entries=tuple(self.loose),
            categories=tuple(
                Category(name=c.name, entries=tuple(c.entries), heading_gap=c.gap, notes=tuple(c.notes))
                for c in self.categories
            ),
        )


def _tidy_preamble(lines: list[str]) -> tuple[str, ...]:
    """Strip outer blank lines and collapse blank runs to one."""
    out: list[str] = []
    for line in lines:
        if not line.strip():
            if out and out[-1] != "":
                out.append("")
            continue
        out.append(line.rstrip())
    while out and out[-1] == "":
        out.pop()
    return tuple(out)


def parse(text: str) -> Document:
    """Parse ledger text. Never raises; unclassifiable lines are inert."""
    b = _Builder()
    state = _State.IN_PREAMBLE

    for raw in text.splitlines():
        line = raw.rstrip()
        blank = not line.strip()
        name = _heading_name(line)
        heading_like = name is not None or _heading_like(line)
        link = None if blank or heading_like else match_link(line)

        if name is not None:
            b.open_category(name)
            state = _State.IN_CATEGORY
        elif link is not None:
            b.open_link(*link, line)
            state = _State.AFTER_LINK
        elif blank:
            if state is _State.AFTER_LINK:
                b.flush()
                state = _State.IN_CATEGORY if b.categories else _State.IN_PREAMBLE
            elif state is _State.IN_CATEGORY:
                b.heading_open = False
            else:
                b.preamble.append("")
        elif state is _State.AFTER_LINK and not heading_like:
            b.flush(description=line.strip())
            state = _State.IN_CATEGORY if b.categories else _State.IN_PREAMBLE
        elif b.categories:
            # "# x", "### x" or prose the grammar has no place for
            b.note(line)
            state = _State.IN_CATEGORY
        else:
            b.flush()
            state = _State.IN_PREAMBLE
            b.preamble.append(line)

    if b.noted:
        log.debug("kept %d unclassified line(s) inside categories as notes", b.noted)
    return b.build()


def _entry_block(entry: Entry) -> list[str]:
    lines = [entry.link_line]
    if entry.description:
        lines.append(entry.description)
    if entry.notes:
        if not entry.description:
            # without the blank the first note would read back as the description
            lines.append("")
        lines.extend(entry.notes)
    return lines


def serialize(doc: Document) -> str:
    """Canonical text for doc: blocks separated by exactly one blank line."""
    blocks: list[list[str]] = []
    if doc.preamble:
        blocks.append(list(doc.preamble))
    blocks.extend(_entry_block(e) for e in doc.entries)

    for category in doc.categories:
        heading = [f"{_HEADING_PREFIX}{category.name}", *category.notes]
        entries = [_entry_block(e) for e in category.entries]
        if entries and not category.heading_gap and not category.notes:
            heading.extend(entries.pop(0))
        blocks.append(heading)
        blocks.extend(entries)

    if not blocks:
        return ""
    return "\n\n".join("\n".join(block) for block in blocks) + "\n"


def format_text(text: str) -> str:
    """Canonicalize ledger text."""
    return serialize(parse(text))
