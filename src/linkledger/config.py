"""LedgerConfig: project-local config for a link ledger.

Default layout (all relative to the project root):

    linkledger.toml       # project config (git-tracked)
    .env                  # optional: GITHUB_TOKEN, GITHUB_REPO_OWNER, ... (gitignore this)

linkledger.toml example:

    [ledger]
    path = "links.md"
    title = "Useful Links"

    [store]
    backend = "github"        # github | file
    owner = "octocat"
    repo = "links"
    branch = ""               # empty = repository default branch
    api_url = "https://api.github.com"
    timeout = 10
    # root = "."              # file backend: directory holding the ledger

    [sync]
    max_attempts = 5
    backoff = 0.25
    max_backoff = 4.0

Secrets and repository coordinates may also come from the environment (the
process environment wins over .env, which wins over linkledger.toml).
Nothing is written back into os.environ.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from linkledger.errors import ConfigError
from linkledger.models import DEFAULT_TITLE
from linkledger.store import DEFAULT_API_URL, FileStore, GitHubStore

if TYPE_CHECKING:
    from collections.abc import Mapping

    from linkledger.store import VersionedStore
    from linkledger.sync import SyncController

_CONFIG_FILENAME = "linkledger.toml"
_DEFAULT_PATH = "links.md"
_BACKENDS = ("github", "file")

# First variable that is set wins.
_OWNER_VARS = ("GITHUB_REPO_OWNER", "VERCEL_GIT_REPO_OWNER", "GITHUB_OWNER")
_REPO_VARS = ("GITHUB_REPO_NAME", "VERCEL_GIT_REPO_SLUG", "GITHUB_REPO")


@dataclass
class LedgerSection:
    path: str = _DEFAULT_PATH        # ledger path inside the store
    title: str = DEFAULT_TITLE       # title for a freshly created ledger


@dataclass
class StoreConfig:
    backend: str = "github"
    owner: str = ""
    repo: str = ""
    branch: str = ""                 # empty = repository default branch
    api_url: str = DEFAULT_API_URL
    timeout: float = 10.0
    token: str = field(default="", repr=False)
    root: Path = field(default_factory=Path)   # file backend


@dataclass
class SyncConfig:
    max_attempts: int = 5
    backoff: float = 0.25
    max_backoff: float = 4.0


@dataclass
class LedgerConfig:
    """Resolved configuration for a ledger project."""

    root: Path                       # directory that contains linkledger.toml
    ledger: LedgerSection = field(default_factory=LedgerSection)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @property
    def config_path(self) -> Path:
        return self.root / _CONFIG_FILENAME


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def _first(env: Mapping[str, str], names: tuple[str, ...]) -> str:
    for name in names:
        if env.get(name):
            return env[name]
    return ""


def _repo_name(value: str) -> str:
    # VERCEL_GIT_REPO_SLUG may be "owner/name"
    return value.split("/", 1)[1] if "/" in value else value


def load_config(root: Path | str | None = None, environ: Mapping[str, str] | None = None) -> LedgerConfig:
    """Load linkledger.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid {config_path}: {exc}"
            raise ConfigError(msg) from exc

    env = {**_load_env(root_path), **(os.environ if environ is None else environ)}

    ledger_section = raw.get("ledger", {})
    store_section = raw.get("store", {})
    sync_section = raw.get("sync", {})

    backend = str(store_section.get("backend", "github"))
    if backend not in _BACKENDS:
        msg = f"Unknown store backend {backend!r} (expected one of: {', '.join(_BACKENDS)})"
        raise ConfigError(msg)

    try:
        return LedgerConfig(
            root=root_path,
            ledger=LedgerSection(
                path=str(ledger_section.get("path", _DEFAULT_PATH)),
                title=str(ledger_section.get("title", DEFAULT_TITLE)),
            ),
            store=StoreConfig(
                backend=backend,
                owner=_first(env, _OWNER_VARS) or str(store_section.get("owner", "")),
                repo=_repo_name(_first(env, _REPO_VARS)) or str(store_section.get("repo", "")),
                branch=str(store_section.get("branch", "")),
                api_url=str(store_section.get("api_url", DEFAULT_API_URL)),
                timeout=float(store_section.get("timeout", 10.0)),
                token=env.get("GITHUB_TOKEN", ""),
                root=root_path / str(store_section.get("root", ".")),
            ),
            sync=SyncConfig(
                max_attempts=int(sync_section.get("max_attempts", 5)),
                backoff=float(sync_section.get("backoff", 0.25)),
                max_backoff=float(sync_section.get("max_backoff", 4.0)),
            ),
        )
    except (TypeError, ValueError) as exc:
        msg = f"Invalid value in {config_path}: {exc}"
        raise ConfigError(msg) from exc


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for linkledger.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def build_store(cfg: LedgerConfig) -> VersionedStore:
    """Construct the configured store. Raises ConfigError if it is incomplete."""
    sc = cfg.store
    if sc.backend == "file":
        return FileStore(sc.root)

    missing = [
        name for name, value in (
            ("GITHUB_TOKEN", sc.token),
            ("GITHUB_REPO_OWNER (or [store] owner)", sc.owner),
            ("GITHUB_REPO_NAME (or [store] repo)", sc.repo),
        )
        if not value
    ]
    if missing:
        msg = f"GitHub store not configured. Please set {', '.join(missing)}."
        raise ConfigError(msg)
    return GitHubStore(
        sc.owner,
        sc.repo,
        sc.token,
        branch=sc.branch,
        api_url=sc.api_url,
        timeout=sc.timeout,
    )


def build_controller(cfg: LedgerConfig, store: VersionedStore | None = None) -> SyncController:
    from linkledger.sync import SyncController

    return SyncController(
        store if store is not None else build_store(cfg),
        cfg.ledger.path,
        title=cfg.ledger.title,
        max_attempts=cfg.sync.max_attempts,
        backoff=cfg.sync.backoff,
        max_backoff=cfg.sync.max_backoff,
    )


def init_config(root: Path, backend: str = "github") -> Path:
    """Write a default linkledger.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"linkledger.toml already exists at {config_path}"
        raise FileExistsError(msg)
    if backend not in _BACKENDS:
        msg = f"Unknown store backend {backend!r}"
        raise ConfigError(msg)

    content = f"""\
[ledger]
path = "{_DEFAULT_PATH}"
title = "{DEFAULT_TITLE}"

[store]
backend = "{backend}"     # github | file
# owner = ""            # or GITHUB_REPO_OWNER in .env
# repo = ""             # or GITHUB_REPO_NAME in .env
# branch = ""           # empty = repository default branch
# api_url = "{DEFAULT_API_URL}"
# timeout = 10
# root = "."            # file backend: directory holding the ledger

# GITHUB_TOKEN must be set in the environment or .env (never in this file)

# [sync]
# max_attempts = 5      # full read-modify-write cycles before giving up
# backoff = 0.25        # seconds; doubles per conflict, with jitter
# max_backoff = 4.0
"""
    config_path.write_text(content)
    return config_path
