"""Tests for linkledger.sync — read-modify-write cycles over a versioned store."""
from __future__ import annotations

import threading

import pytest

from conftest import SAMPLE, MemoryStore
from linkledger.codec import parse
from linkledger.errors import (
    Cancelled,
    MalformedRequest,
    NotFound,
    PermissionDenied,
    RemoteUnavailable,
    RetriesExhausted,
)
from linkledger.models import Entry, EntryMatch
from linkledger.sync import REPAIR_MESSAGE, Change, SyncController, _backoff_delay

CORRUPTED = """\
# Useful Links

## A
[x](https://x)

## B
[x](https://x)
[y](https://y)
"""


def _interfere(text: str):
    """before_put hook: another client writes text first."""
    def hook(store: MemoryStore, path: str) -> None:
        store.write(path, text)
    return hook


class _DenyingStore(MemoryStore):
    def put(self, path, content, expected_version, *, message):
        raise PermissionDenied(path=path, version=expected_version)


class _DownStore(MemoryStore):
    def get(self, path):
        raise RemoteUnavailable("connection refused", path=path)


# ───── Fetch ─────


class TestFetch:
    def test_existing_ledger(self, controller: SyncController) -> None:
        snap = controller.fetch()
        assert snap.exists
        assert snap.version == "v1"
        assert snap.document.find_category("Tools").entries[0].label == "Foo"

    def test_missing_ledger_is_default_document(self) -> None:
        ctl = SyncController(MemoryStore(), "links.md", title="Bookmarks")
        snap = ctl.fetch()
        assert not snap.exists
        assert snap.document.preamble == ("# Bookmarks",)
        assert snap.document.entry_count() == 0

    def test_store_failure_propagates(self) -> None:
        ctl = SyncController(_DownStore(), "links.md")
        with pytest.raises(RemoteUnavailable):
            ctl.fetch()


# ───── Add ─────


class TestAddLink:
    def test_commits_with_version(self, store: MemoryStore, controller: SyncController) -> None:
        change = controller.add_link("https://bar.com", "Bar", "Another tool.", "Tools")
        assert change.message == "Add link: Bar"
        assert change.inserted == Entry("Bar", "https://bar.com", "Another tool.")
        assert change.attempts == 1
        assert change.version == store.versions["links.md"]
        assert store.text("links.md") == SAMPLE + "\n[Bar](https://bar.com)\nAnother tool.\n"

    def test_creates_missing_ledger(self) -> None:
        store = MemoryStore()
        ctl = SyncController(store, "links.md")
        change = ctl.add_link("https://foo.com", "Foo", category="Tools")
        assert change.message == "Create links.md and add link: Foo"
        assert store.text("links.md") == "# Useful Links\n\n## Tools\n\n[Foo](https://foo.com)\n"

    def test_invalid_entry_never_touches_store(self, store: MemoryStore, controller: SyncController) -> None:
        with pytest.raises(MalformedRequest):
            controller.add_link("https://x y", "Bad")
        assert store.gets == 0
        assert store.commits == []


# ───── Conflicts ─────


class TestConflictRetry:
    def test_retry_applies_to_fresh_content(
        self, store: MemoryStore, controller: SyncController, sleeps: list[float]
    ) -> None:
        concurrent = SAMPLE + "\n[Baz](https://baz.com)\n"
        store.before_put.append(_interfere(concurrent))

        change = controller.add_link("https://bar.com", "Bar", category="Tools")

        assert change.attempts == 2
        assert len(sleeps) == 1
        labels = [e.label for e in parse(store.text("links.md")).find_category("Tools").entries]
        assert labels == ["Foo", "Baz", "Bar"]
        assert [m for _, m, _ in store.commits] == ["Add link: Bar"]

    def test_retries_exhausted(self, store: MemoryStore, controller: SyncController, sleeps: list[float]) -> None:
        store.before_put.extend(_interfere(SAMPLE + f"\n[n{i}](https://n{i})\n") for i in range(3))

        with pytest.raises(RetriesExhausted) as excinfo:
            controller.add_link("https://bar.com", "Bar", category="Tools")

        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value, RemoteUnavailable)
        assert len(sleeps) == 2
        assert store.commits == []

    def test_backoff_grows(self, store: MemoryStore, sleeps: list[float]) -> None:
        ctl = SyncController(store, "links.md", max_attempts=4, backoff=1.0, max_backoff=100.0, sleep=sleeps.append)
        store.before_put.extend(_interfere(SAMPLE + f"\n[n{i}](https://n{i})\n") for i in range(3))

        ctl.add_link("https://bar.com", "Bar", category="Tools")

        assert len(sleeps) == 3
        assert 0.8 <= sleeps[0] <= 1.2
        assert 1.6 <= sleeps[1] <= 2.4
        assert 3.2 <= sleeps[2] <= 4.8

    def test_permission_denied_not_retried(self, sleeps: list[float]) -> None:
        store = _DenyingStore({"links.md": SAMPLE})
        ctl = SyncController(store, "links.md", sleep=sleeps.append)
        with pytest.raises(PermissionDenied, match="Contents: Read and write"):
            ctl.add_link("https://bar.com", "Bar")
        assert store.gets == 1
        assert sleeps == []


class TestBackoffDelay:
    def test_capped(self) -> None:
        for _ in range(20):
            assert _backoff_delay(10, 0.25, 4.0) <= 4.8

    def test_never_negative(self) -> None:
        assert _backoff_delay(0, 0.0, 4.0) == 0.0


# ───── Repair inside a cycle ─────


class TestRepairFirst:
    def test_repair_committed_before_mutation(self) -> None:
        store = MemoryStore({"links.md": CORRUPTED})
        ctl = SyncController(store, "links.md")

        change = ctl.add_link("https://z", "z", category="A")

        assert [m for _, m, _ in store.commits] == [REPAIR_MESSAGE, "Add link: z"]
        assert change.repaired == ("https://x",)
        repaired_text = store.commits[0][2]
        assert repaired_text.count("https://x") == 1
        final = parse(store.text("links.md"))
        assert [e.reference for e in final.find_category("A").entries] == ["https://x", "https://z"]

    def test_repair_operation(self) -> None:
        store = MemoryStore({"links.md": CORRUPTED})
        ctl = SyncController(store, "links.md")
        assert ctl.repair() == ("https://x",)
        assert ctl.repair() == ()
        assert [m for _, m, _ in store.commits] == [REPAIR_MESSAGE]

    def test_failed_mutation_keeps_repair(self) -> None:
        store = MemoryStore({"links.md": CORRUPTED})
        ctl = SyncController(store, "links.md")
        with pytest.raises(NotFound):
            ctl.delete_link(reference="https://missing")
        assert [m for _, m, _ in store.commits] == [REPAIR_MESSAGE]


# ───── Delete ─────


class TestDelete:
    def test_delete_link(self, store: MemoryStore, controller: SyncController) -> None:
        change = controller.delete_link(label="Foo")
        assert change.message == "Delete link: Foo"
        assert change.deleted_count == 1
        doc = parse(store.text("links.md"))
        assert doc.find_category("Tools").entries == ()

    def test_delete_link_not_found(self, store: MemoryStore, controller: SyncController) -> None:
        with pytest.raises(NotFound):
            controller.delete_link(reference="https://nope")
        assert store.commits == []

    def test_delete_links_prunes_emptied(self) -> None:
        text = "# Useful Links\n\n## X\n[a](https://a)\n\n## Y\n\n## Z\n[b](https://b)\n[c](https://c)\n"
        store = MemoryStore({"links.md": text})
        ctl = SyncController(store, "links.md")

        change = ctl.delete_links([EntryMatch(reference="https://a"), EntryMatch(label="b")])

        assert change.message == "Delete 2 link(s) (removed 1 empty category)"
        assert change.removed_categories == ("X",)
        doc = parse(store.text("links.md"))
        assert [c.name for c in doc.categories] == ["Y", "Z"]

    def test_delete_links_plural_message(self) -> None:
        text = "## X\n[a](https://a)\n\n## Z\n[b](https://b)\n"
        store = MemoryStore({"links.md": text})
        change = SyncController(store, "links.md").delete_links([EntryMatch(label="a"), EntryMatch(label="b")])
        assert change.message == "Delete 2 link(s) (removed 2 empty categories)"

    def test_delete_links_requires_requests(self, store: MemoryStore, controller: SyncController) -> None:
        with pytest.raises(MalformedRequest):
            controller.delete_links([])
        assert store.gets == 0


# ───── Cancellation / custom mutations ─────


class TestApply:
    def test_cancelled_before_write(self, store: MemoryStore, controller: SyncController) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(Cancelled):
            controller.add_link("https://bar.com", "Bar", cancel=cancel)
        assert store.commits == []

    def test_custom_mutation_sees_version(self, store: MemoryStore, controller: SyncController) -> None:
        seen = []

        def mutate(snap):
            seen.append(snap.version)
            return Change(document=snap.document.with_categories(()), message="Clear categories")

        change = controller.apply(mutate)
        assert seen == ["v1"]
        assert change.message == "Clear categories"
        assert store.text("links.md") == "# Useful Links\n"


# ───── Conflicts during repair / undecodable ledgers ─────


class TestRepairConflict:
    def test_conflict_on_repair_commit_restarts_cycle(self, sleeps: list[float]) -> None:
        store = MemoryStore({"links.md": CORRUPTED})
        concurrent = CORRUPTED + "\n## C\n[w](https://w)\n"
        store.before_put.append(_interfere(concurrent))
        ctl = SyncController(store, "links.md", sleep=sleeps.append)

        change = ctl.add_link("https://z", "z", category="A")

        assert change.attempts == 2
        assert change.repaired == ("https://x",)
        assert [m for _, m, _ in store.commits] == [REPAIR_MESSAGE, "Add link: z"]
        assert "[w](https://w)" in store.commits[0][2]
        final = parse(store.text("links.md"))
        assert [c.name for c in final.categories] == ["A", "B", "C"]
        assert [e.reference for _, e in final.iter_entries()] == ["https://x", "https://z", "https://y", "https://w"]


class TestUndecodableLedger:
    def test_invalid_utf8_is_replaced(self) -> None:
        store = MemoryStore({"links.md": "placeholder"})
        store.files["links.md"] = b"# Useful Links\n\n## Tools\n[Caf\xe9](https://cafe.example)\n"
        ctl = SyncController(store, "links.md")

        change = ctl.add_link("https://bar.com", "Bar", category="Tools")

        assert change.message == "Add link: Bar"
        labels = [e.label for e in parse(store.text("links.md")).find_category("Tools").entries]
        assert labels == ["Caf\ufffd", "Bar"]

    def test_warning_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        store = MemoryStore({"links.md": "placeholder"})
        store.files["links.md"] = b"## A\n[\xff](https://x)\n"
        with caplog.at_level("WARNING", logger="linkledger.sync"):
            snap = SyncController(store, "links.md").fetch()
        assert snap.document.entry_count() == 1
        assert "not valid UTF-8" in caplog.text


class TestDeleteLinksSameNamedCategories:
    def test_untouched_placeholder_survives(self) -> None:
        store = MemoryStore({"links.md": "## X\n[a](https://a)\n\n## Y\n[b](https://b)\n\n## X\n"})
        change = SyncController(store, "links.md").delete_links([EntryMatch(reference="https://a")])
        assert change.removed_categories == ("X",)
        assert store.text("links.md") == "## Y\n[b](https://b)\n\n## X\n"
