"""
uapftransfer.repository

Versioned-tree collaborators used by package export/import.

- `TreeReader` / `CommitWriter`: the contracts.
- `InMemoryRepository`: dict-backed store (tests, staging hosts).
- `GitRepository`: local git repository through dulwich.
- `GiteaRepository`: remote Gitea server through its REST API (httpx).
"""

from .base import Actor, CommitWriter, EntryKind, FileOperation, TreeEntry, TreeReader
from .git import GitRepository
from .gitea import GiteaApiError, GiteaRepository
from .in_memory import CommitRecord, InMemoryRepository

__all__ = [
    "Actor",
    "CommitWriter",
    "EntryKind",
    "FileOperation",
    "TreeEntry",
    "TreeReader",
    "InMemoryRepository",
    "CommitRecord",
    "GitRepository",
    "GiteaRepository",
    "GiteaApiError",
]
