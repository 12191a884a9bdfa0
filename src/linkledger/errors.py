"""Error taxonomy shared by the store, the mutation engine and the CLI."""

from __future__ import annotations

PERMISSION_HINT = (
    'Your GitHub token needs "Contents: Read and write" permission for this repository. '
    "For fine-grained PATs, make sure the repository is included in the token's repository access."
)


class LedgerError(Exception):
    """Base class for every error raised by linkledger."""


class StoreError(LedgerError):
    """An error talking to the versioned store. Carries path/version for diagnostics."""

    def __init__(self, message: str, *, path: str = "", version: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.version = version


class RemoteUnavailable(StoreError):
    """Transport, timeout or server failure. Surfaced to the caller as-is."""


class RetriesExhausted(RemoteUnavailable):
    """Every cycle restart hit a version conflict."""

    def __init__(self, message: str, *, path: str = "", version: str | None = None, attempts: int = 0) -> None:
        super().__init__(message, path=path, version=version)
        self.attempts = attempts


class NotFound(StoreError):
    """The ledger (on read) or the requested entry (on delete) does not exist."""


class Conflict(StoreError):
    """The expected version no longer matches the store's current version."""


class PermissionDenied(StoreError):
    """The store rejected the call for lack of rights. Never retried."""

    def __init__(self, message: str = "", *, path: str = "", version: str | None = None) -> None:
        super().__init__(f"Permission denied. {message or PERMISSION_HINT}", path=path, version=version)


class MalformedRequest(LedgerError):
    """A mutation request that cannot be applied regardless of ledger state."""


class Cancelled(LedgerError):
    """The caller cancelled the cycle before a write began."""


class ConfigError(LedgerError):
    """linkledger.toml / environment does not describe a usable store."""
