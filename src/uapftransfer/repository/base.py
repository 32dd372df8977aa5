"""uapftransfer.repository.base

Collaborator interfaces consumed by the exporter and importer.

- `TreeReader`: read-only access to a versioned tree (ref resolution, entry lookup,
  recursive listing, blob content).
- `CommitWriter`: writes one multi-file commit; must refuse to commit when the branch
  moved since the caller looked at it (compare-and-swap on `parent_commit_id`).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Protocol, runtime_checkable


class EntryKind(str, Enum):
    BLOB = "blob"
    TREE = "tree"
    SUBMODULE = "submodule"


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a tree snapshot (paths are repository-relative, POSIX style)."""

    path: str
    kind: EntryKind
    executable: bool = False
    size: Optional[int] = None

    @property
    def is_dir(self) -> bool:
        return self.kind == EntryKind.TREE

    @property
    def is_submodule(self) -> bool:
        return self.kind == EntryKind.SUBMODULE

    @property
    def is_regular_file(self) -> bool:
        return self.kind == EntryKind.BLOB


@dataclass(frozen=True)
class Actor:
    """Commit attribution (used as both author and committer)."""

    name: str
    email: str

    @property
    def identity(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class FileOperation:
    """A single file change submitted to a CommitWriter.

    `content_source` is a file on disk; writers open it lazily so that the
    importer never holds package content in memory.
    """

    target_path: str
    content_source: Path
    operation: str = "create"
    executable: bool = False

    def open(self) -> BinaryIO:
        return self.content_source.open("rb")


@runtime_checkable
class TreeReader(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def default_branch(self) -> str: ...

    def resolve_ref(self, ref: str) -> str:
        """Resolve a branch, tag or commit id to a commit id (raises RefNotFoundError)."""

    def branch_head(self, branch: str) -> Optional[str]:
        """Return the head commit id of `branch`, or None when it has no commits."""

    def get_entry(self, commit_id: str, path: str) -> Optional[TreeEntry]:
        """Return the entry at `path` in the commit's tree, or None."""

    def list_entries(self, commit_id: str) -> Iterator[TreeEntry]:
        """Yield every entry of the commit's tree recursively (trees included)."""

    def open_blob(self, commit_id: str, path: str) -> BinaryIO:
        """Open the blob at `path` for reading."""


@runtime_checkable
class CommitWriter(Protocol):
    def commit_files(
        self,
        *,
        branch: str,
        parent_commit_id: Optional[str],
        actor: Actor,
        message: str,
        operations: List[FileOperation],
    ) -> str:
        """Write one commit containing `operations` and return its id (raises CommitError)."""
