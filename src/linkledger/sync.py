"""Read-modify-write cycles against a versioned store.

One cycle:

    fetch (text, version)  ->  parse  ->  repair + commit if duplicated
        ->  mutate  ->  serialize  ->  commit with version

Any Conflict restarts the whole cycle from the fetch; nothing from a failed
attempt is reused. There is no lock: the store's version check is the only
synchronization.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, TypeVar

from linkledger import codec
from linkledger.errors import Cancelled, Conflict, MalformedRequest, NotFound, RetriesExhausted
from linkledger.models import DEFAULT_TITLE, Document, Entry, EntryMatch, default_document
from linkledger.mutations import (
    delete_entries,
    delete_entry,
    insert_entry,
    normalize_entry,
    prune_empty_categories,
)
from linkledger.repair import detect, repair

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence

    from linkledger.store import VersionedStore

log = logging.getLogger("linkledger.sync")

REPAIR_MESSAGE = "Fix: Remove duplicate links"

T = TypeVar("T")


@dataclass(frozen=True)
class Change:
    """What a mutation produced, plus what the controller did to commit it."""

    document: Document
    message: str
    inserted: Entry | None = None
    deleted: tuple[Entry, ...] = ()
    removed_categories: tuple[str, ...] = ()
    repaired: tuple[str, ...] = ()        # references deduplicated this cycle
    version: str | None = None
    attempts: int = 0

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


@dataclass(frozen=True)
class Snapshot:
    """The ledger as fetched at the start of a cycle."""

    document: Document
    version: str | None                   # None: ledger does not exist yet
    repaired: tuple[str, ...] = ()

    @property
    def exists(self) -> bool:
        return self.version is not None


def _backoff_delay(attempt: int, base: float, max_delay: float) -> float:
    """Exponential backoff with ±20% jitter."""
    delay = min(base * 2.0 ** attempt, max_delay)
    jitter = random.uniform(-delay * 0.2, delay * 0.2)
    return max(0.0, delay + jitter)


class SyncController:
    """Applies document mutations to one ledger file in a versioned store."""

    def __init__(
        self,
        store: VersionedStore,
        path: str = "links.md",
        *,
        title: str = DEFAULT_TITLE,
        max_attempts: int = 5,
        backoff: float = 0.25,
        max_backoff: float = 4.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.path = path
        self.title = title
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Cycle steps
    # ------------------------------------------------------------------

    def fetch(self) -> Snapshot:
        """Read and parse the ledger; a missing ledger is the default document."""
        try:
            content, version = self.store.get(self.path)
        except NotFound:
            log.info("%s not found in store, starting from an empty ledger", self.path)
            return Snapshot(document=default_document(self.title), version=None)
        log.debug("fetched %s (version=%s, %d bytes)", self.path, version, len(content))
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as exc:
            log.warning(
                "%s is not valid UTF-8 (version=%s, byte %d): undecodable bytes become U+FFFD",
                self.path, version, exc.start,
            )
            text = content.decode("utf-8", errors="replace")
        return Snapshot(document=codec.parse(text), version=version)

    def _commit(self, doc: Document, version: str | None, message: str, cancel: threading.Event | None) -> str:
        if cancel is not None and cancel.is_set():
            msg = f"Cancelled before writing {self.path}"
            raise Cancelled(msg)
        text = codec.serialize(doc)
        new_version = self.store.put(self.path, text.encode("utf-8"), version, message=message)
        log.info("committed %s: %s (version %s -> %s)", self.path, message, version, new_version)
        return new_version

    def _repair_snapshot(self, snap: Snapshot, cancel: threading.Event | None) -> Snapshot:
        duplicates = detect(snap.document)
        if not duplicates:
            return snap
        log.info("%s has %d duplicated reference(s), repairing", self.path, len(duplicates))
        fixed = repair(snap.document)
        version = self._commit(fixed, snap.version, REPAIR_MESSAGE, cancel)
        return Snapshot(document=fixed, version=version, repaired=tuple(sorted(duplicates)))

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    def _with_retries(self, cycle: Callable[[Snapshot], T]) -> tuple[T, int]:
        """Run cycle on a fresh snapshot until it stops raising Conflict."""
        version: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            snap = self.fetch()
            version = snap.version
            try:
                return cycle(snap), attempt
            except Conflict as exc:
                if attempt == self.max_attempts:
                    break
                delay = _backoff_delay(attempt - 1, self.backoff, self.max_backoff)
                log.warning(
                    "conflict on %s (attempt %d/%d, version=%s): %s, retrying in %.2fs",
                    self.path, attempt, self.max_attempts, exc.version, exc, delay,
                )
                self._sleep(delay)

        log.error("giving up on %s after %d conflicting attempts (last version=%s)", self.path, self.max_attempts, version)
        msg = f"{self.path} kept changing upstream; gave up after {self.max_attempts} attempts"
        raise RetriesExhausted(msg, path=self.path, version=version, attempts=self.max_attempts)

    def apply(self, mutation: Callable[[Snapshot], Change], *, cancel: threading.Event | None = None) -> Change:
        """Run fetch → repair → mutate → commit until it lands or attempts run out.

        Errors from the mutation (NotFound, MalformedRequest) abort without a
        commit. Conflicts restart the cycle; other store errors propagate.
        """

        def cycle(snap: Snapshot) -> Change:
            snap = self._repair_snapshot(snap, cancel)
            change = mutation(snap)
            new_version = self._commit(change.document, snap.version, change.message, cancel)
            return replace(change, repaired=snap.repaired, version=new_version)

        change, attempts = self._with_retries(cycle)
        return replace(change, attempts=attempts)

    def repair(self, *, cancel: threading.Event | None = None) -> tuple[str, ...]:
        """Commit a deduplicated ledger if needed. Returns the repaired references."""
        repaired, _ = self._with_retries(lambda snap: self._repair_snapshot(snap, cancel).repaired)
        return repaired

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add_link(
        self,
        reference: str,
        label: str,
        description: str = "",
        category: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> Change:
        entry = normalize_entry(Entry(label=label, reference=reference, description=description))

        def mutate(snap: Snapshot) -> Change:
            doc = insert_entry(snap.document, entry, category)
            if snap.exists:
                message = f"Add link: {entry.label}"
            else:
                message = f"Create {self.path} and add link: {entry.label}"
            return Change(document=doc, message=message, inserted=entry)

        return self.apply(mutate, cancel=cancel)

    def delete_link(
        self,
        reference: str | None = None,
        label: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> Change:
        match = EntryMatch(reference=reference, label=label)

        def mutate(snap: Snapshot) -> Change:
            result = delete_entry(snap.document, match.reference, match.label)
            return Change(
                document=result.document,
                message=f"Delete link: {match.describe()}",
                deleted=result.removed,
            )

        return self.apply(mutate, cancel=cancel)

    def delete_links(self, matches: Sequence[EntryMatch], *, cancel: threading.Event | None = None) -> Change:
        """Delete every matching link, then prune categories the delete emptied."""
        matches = list(matches)
        if not matches:
            msg = "At least one link to delete is required"
            raise MalformedRequest(msg)

        def mutate(snap: Snapshot) -> Change:
            result = delete_entries(snap.document, matches)
            pruned = prune_empty_categories(result.document, result.categories, result.positions)
            message = f"Delete {result.count} link(s)"
            if pruned.removed:
                n = len(pruned.removed)
                message += f" (removed {n} empty {'category' if n == 1 else 'categories'})"
            return Change(
                document=pruned.document,
                message=message,
                deleted=result.removed,
                removed_categories=pruned.removed,
            )

        return self.apply(mutate, cancel=cancel)
