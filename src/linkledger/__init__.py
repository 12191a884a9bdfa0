"""Categorized link list kept in one markdown file in a versioned store.

Layout of the ledger (default path: links.md):

    # Useful Links

    ## Tools
    [Foo](https://foo.com)
    A tool.

    [Bar](https://bar.com)
    Another tool.

Every change is a full read-modify-write cycle against the store:
fetch text + version, parse, repair duplicated links (committed first),
apply the mutation, serialize, and write back with the version. A version
conflict restarts the cycle from the fetch; there is no in-process state.
"""

from linkledger.codec import parse, serialize
from linkledger.config import LedgerConfig, build_controller, init_config, load_config
from linkledger.models import Category, Document, Entry, EntryMatch
from linkledger.repair import detect, repair
from linkledger.store import FileStore, GitHubStore
from linkledger.sync import Change, SyncController

__all__ = [
    "Category",
    "Change",
    "Document",
    "Entry",
    "EntryMatch",
    "FileStore",
    "GitHubStore",
    "LedgerConfig",
    "SyncController",
    "build_controller",
    "detect",
    "init_config",
    "load_config",
    "parse",
    "repair",
    "serialize",
]
