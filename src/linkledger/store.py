"""Versioned single-file stores.

A store hands out the ledger bytes together with an opaque version token and
only accepts a write whose expected version still matches:

    content, version = store.get("links.md")
    new_version = store.put("links.md", new_content, version, message="Add link: Foo")

GitHubStore uses the GitHub contents API (blob SHA as version).
FileStore uses a local file (SHA-256 of the content as version) and checks
the version under an exclusive flock before an atomic rename.
"""

from __future__ import annotations

import base64
import contextlib
import fcntl
import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import requests

from linkledger.errors import Conflict, NotFound, PermissionDenied, RemoteUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger("linkledger.store")

DEFAULT_API_URL = "https://api.github.com"
_FALLBACK_BRANCH = "main"


class VersionedStore(Protocol):
    """What the sync controller needs from a store."""

    def get(self, path: str) -> tuple[bytes, str]: ...

    def put(self, path: str, content: bytes, expected_version: str | None, *, message: str) -> str: ...

    def probe(self, path: str) -> dict[str, Any]:
        """Reachability report for the status command. Never raises store errors."""
        ...


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubStore:
    """GitHub repository file as a versioned store."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        *,
        branch: str = "",
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._branch = branch or None
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        })

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    @property
    def repo_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}"

    def _contents_url(self, path: str) -> str:
        return f"{self.repo_url}/contents/{path.lstrip('/')}"

    def _request(self, method: str, url: str, *, path: str, version: str | None = None, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            log.warning("%s %s timed out (path=%s version=%s)", method, url, path, version)
            msg = f"GitHub request timed out after {self.timeout}s"
            raise RemoteUnavailable(msg, path=path, version=version) from exc
        except requests.RequestException as exc:
            log.warning("%s %s failed: %s (path=%s version=%s)", method, url, exc, path, version)
            msg = f"GitHub request failed: {exc}"
            raise RemoteUnavailable(msg, path=path, version=version) from exc

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            return str(resp.json().get("message", "")) or resp.reason
        except ValueError:
            return resp.reason or f"HTTP {resp.status_code}"

    def _raise_for_status(self, resp: requests.Response, *, path: str, version: str | None) -> None:
        if resp.status_code < 400:
            return
        detail = self._error_message(resp)
        if resp.status_code in (401, 403):
            raise PermissionDenied(path=path, version=version)
        msg = f"GitHub API error {resp.status_code}: {detail}"
        raise RemoteUnavailable(msg, path=path, version=version)

    # ------------------------------------------------------------------
    # Branch
    # ------------------------------------------------------------------

    @property
    def branch(self) -> str:
        """Configured branch, else the repository default branch, else "main"."""
        if self._branch is None:
            self._branch = _FALLBACK_BRANCH
            with contextlib.suppress(RemoteUnavailable):
                resp = self._request("GET", self.repo_url, path="")
                if resp.status_code == 200:
                    self._branch = resp.json().get("default_branch") or _FALLBACK_BRANCH
        return self._branch

    # ------------------------------------------------------------------
    # Store protocol
    # ------------------------------------------------------------------

    def get(self, path: str) -> tuple[bytes, str]:
        resp = self._request("GET", self._contents_url(path), path=path, params={"ref": self.branch})
        if resp.status_code == 404:
            msg = f"{path} not found in {self.owner}/{self.repo}"
            raise NotFound(msg, path=path)
        self._raise_for_status(resp, path=path, version=None)

        data = resp.json()
        if not isinstance(data, dict) or "content" not in data:
            msg = f"{path} is not a file in {self.owner}/{self.repo}"
            raise RemoteUnavailable(msg, path=path)
        return base64.b64decode(data["content"]), data["sha"]

    def put(self, path: str, content: bytes, expected_version: str | None, *, message: str) -> str:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if expected_version is not None:
            payload["sha"] = expected_version

        resp = self._request("PUT", self._contents_url(path), path=path, version=expected_version, json=payload)
        if resp.status_code in (409, 422):
            # 409: sha does not match HEAD; 422: sha missing for an existing file
            msg = f"{path} changed upstream: {self._error_message(resp)}"
            raise Conflict(msg, path=path, version=expected_version)
        if resp.status_code == 404:
            msg = (
                f'Repository not found. Please verify that the repository "{self.owner}/{self.repo}" '
                "exists and your token has access to it."
            )
            raise NotFound(msg, path=path, version=expected_version)
        self._raise_for_status(resp, path=path, version=expected_version)
        return str(resp.json()["content"]["sha"])

    def probe(self, path: str) -> dict[str, Any]:
        """Connectivity report for ``linkledger status``. Never raises store errors."""
        report: dict[str, Any] = {"backend": "github", "repository": f"{self.owner}/{self.repo}", "path": path}
        try:
            content, sha = self.get(path)
        except NotFound:
            report.update(reachable=True, exists=False)
        except (RemoteUnavailable, PermissionDenied) as exc:
            report.update(reachable=False, error=str(exc))
        else:
            report.update(reachable=True, exists=True, version=sha, size=len(content), branch=self.branch)
        return report


# ---------------------------------------------------------------------------
# Local file
# ---------------------------------------------------------------------------


def content_version(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class FileStore:
    """Files under a root directory as a versioned store."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, path: str) -> Path:
        return self.root / path

    @contextlib.contextmanager
    def _locked(self, path: str, mode: int) -> Iterator[None]:
        lock_path = self._path(path).with_name(self._path(path).name + ".lock")
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with lock_path.open("a") as f:
            fcntl.flock(f, mode)
            yield

    def get(self, path: str) -> tuple[bytes, str]:
        target = self._path(path)
        with self._locked(path, fcntl.LOCK_SH):
            try:
                content = target.read_bytes()
            except FileNotFoundError as exc:
                msg = f"{target} does not exist"
                raise NotFound(msg, path=path) from exc
            except OSError as exc:
                msg = f"Cannot read {target}: {exc}"
                raise RemoteUnavailable(msg, path=path) from exc
        return content, content_version(content)

    def put(self, path: str, content: bytes, expected_version: str | None, *, message: str) -> str:
        target = self._path(path)
        with self._locked(path, fcntl.LOCK_EX):
            current = target.read_bytes() if target.exists() else None
            current_version = None if current is None else content_version(current)
            if current_version != expected_version:
                msg = f"{target} changed (expected {expected_version}, found {current_version})"
                raise Conflict(msg, path=path, version=expected_version)
            # Write to tmp then rename for atomicity
            tmp = target.with_name(target.name + ".tmp")
            try:
                tmp.write_bytes(content)
                tmp.replace(target)
            except PermissionError as exc:
                raise PermissionDenied(f"Cannot write {target}: {exc}", path=path, version=expected_version) from exc
            except OSError as exc:
                msg = f"Cannot write {target}: {exc}"
                raise RemoteUnavailable(msg, path=path, version=expected_version) from exc
        log.debug("wrote %s (%s)", target, message)
        return content_version(content)

    def probe(self, path: str) -> dict[str, Any]:
        report: dict[str, Any] = {"backend": "file", "repository": str(self.root), "path": path}
        try:
            content, version = self.get(path)
        except NotFound:
            report.update(reachable=True, exists=False)
        except RemoteUnavailable as exc:
            report.update(reachable=False, error=str(exc))
        else:
            report.update(reachable=True, exists=True, version=version[:12], size=len(content))
        return report
