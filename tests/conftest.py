"""Shared fixtures: an in-memory versioned store with scriptable interference."""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from linkledger.errors import Conflict, NotFound
from linkledger.sync import SyncController

SAMPLE = """\
# Useful Links

## Tools
[Foo](https://foo.com)
A tool.
"""


class MemoryStore:
    """Dict-backed store; versions are "v1", "v2", ... per write.

    ``before_put`` hooks run (once each, in order) at the start of a put and
    may change the stored content to simulate another writer getting in first.
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, bytes] = {}
        self.versions: dict[str, str] = {}
        self.commits: list[tuple[str, str, str]] = []   # (path, message, text)
        self.gets = 0
        self.before_put: list[Callable[[MemoryStore, str], None]] = []
        self._counter = 0
        for path, text in (files or {}).items():
            self.write(path, text)

    def write(self, path: str, text: str) -> str:
        """Out-of-band write (another client)."""
        self._counter += 1
        self.files[path] = text.encode("utf-8")
        self.versions[path] = f"v{self._counter}"
        return self.versions[path]

    def text(self, path: str) -> str:
        return self.files[path].decode("utf-8")

    def get(self, path: str) -> tuple[bytes, str]:
        self.gets += 1
        if path not in self.files:
            raise NotFound(f"{path} missing", path=path)
        return self.files[path], self.versions[path]

    def put(self, path: str, content: bytes, expected_version: str | None, *, message: str) -> str:
        if self.before_put:
            self.before_put.pop(0)(self, path)
        if self.versions.get(path) != expected_version:
            raise Conflict("stale", path=path, version=expected_version)
        new_version = self.write(path, content.decode("utf-8"))
        self.commits.append((path, message, content.decode("utf-8")))
        return new_version

    def probe(self, path: str) -> dict[str, Any]:
        return {"backend": "memory", "repository": "memory", "path": path, "reachable": True, "exists": path in self.files}


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore({"links.md": SAMPLE})


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def controller(store: MemoryStore, sleeps: list[float]) -> SyncController:
    return SyncController(store, "links.md", max_attempts=3, backoff=0.1, sleep=sleeps.append)
