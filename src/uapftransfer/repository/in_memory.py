"""uapftransfer.repository.in_memory

In-memory versioned repository (TreeReader + CommitWriter).

Commits are immutable snapshots of `{path -> blob}`; directories are implied by
paths. Suitable for tests and for hosts that stage packages without git.
"""

from __future__ import annotations

import hashlib
import io
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Iterable, Iterator, List, Mapping, Optional

from ..core.errors import CommitError, RefNotFoundError
from ..package.paths import canonicalize_path
from .base import Actor, EntryKind, FileOperation, TreeEntry

_MIN_ABBREV = 7


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class _Blob:
    data: bytes
    executable: bool = False


@dataclass(frozen=True)
class CommitRecord:
    commit_id: str
    parent_id: Optional[str]
    message: str
    author: str
    created_at: str
    files: Dict[str, _Blob] = field(default_factory=dict)
    submodules: Dict[str, str] = field(default_factory=dict)

    def paths(self) -> List[str]:
        return sorted(self.files.keys())


def _ancestors(path: str) -> Iterator[str]:
    parts = path.split("/")
    for i in range(1, len(parts)):
        yield "/".join(parts[:i])


class InMemoryRepository:
    def __init__(self, name: str = "repo", *, default_branch: str = "main") -> None:
        self._name = str(name or "repo")
        self._default_branch = str(default_branch or "main")
        self._lock = threading.Lock()
        self._commits: Dict[str, CommitRecord] = {}
        self._branches: Dict[str, str] = {}
        self._tags: Dict[str, str] = {}
        self._seq = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_branch(self) -> str:
        return self._default_branch

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return not self._commits

    # ------------------------------------------------------------------
    # Seeding helpers (host/test side)
    # ------------------------------------------------------------------

    def write_files(
        self,
        files: Mapping[str, bytes],
        *,
        branch: Optional[str] = None,
        message: str = "update",
        author: str = "seed <seed@localhost>",
        executable: Iterable[str] = (),
        submodules: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Commit `files` on top of `branch` (adds or replaces paths)."""
        br = branch or self._default_branch
        exec_set = {canonicalize_path(p) for p in executable}
        with self._lock:
            parent_id = self._branches.get(br)
            parent = self._commits.get(parent_id) if parent_id else None
            tree = dict(parent.files) if parent else {}
            subs = dict(parent.submodules) if parent else {}
            for raw_path, data in files.items():
                p = canonicalize_path(raw_path)
                tree[p] = _Blob(data=bytes(data), executable=p in exec_set)
            for raw_path, sha in dict(submodules or {}).items():
                subs[canonicalize_path(raw_path)] = str(sha)
            return self._store_commit(branch=br, parent_id=parent_id, message=message, author=author, files=tree, submodules=subs)

    def create_tag(self, tag: str, commit_id: str) -> None:
        with self._lock:
            if commit_id not in self._commits:
                raise RefNotFoundError(commit_id)
            self._tags[str(tag)] = commit_id

    def log(self, branch: Optional[str] = None) -> List[CommitRecord]:
        """Return the branch history, newest first."""
        br = branch or self._default_branch
        out: list[CommitRecord] = []
        with self._lock:
            cur = self._branches.get(br)
            while cur:
                rec = self._commits[cur]
                out.append(rec)
                cur = rec.parent_id
        return out

    def read_file(self, commit_id: str, path: str) -> bytes:
        with self._lock:
            rec = self._commit(commit_id)
            blob = rec.files.get(str(path))
        if blob is None:
            raise FileNotFoundError(path)
        return blob.data

    # ------------------------------------------------------------------
    # TreeReader
    # ------------------------------------------------------------------

    def resolve_ref(self, ref: str) -> str:
        r = str(ref or "").strip() or self._default_branch
        with self._lock:
            if r in self._branches:
                return self._branches[r]
            if r in self._tags:
                return self._tags[r]
            if r in self._commits:
                return r
            if len(r) >= _MIN_ABBREV:
                matches = [cid for cid in self._commits if cid.startswith(r)]
                if len(matches) == 1:
                    return matches[0]
        raise RefNotFoundError(r)

    def branch_head(self, branch: str) -> Optional[str]:
        with self._lock:
            return self._branches.get(str(branch or self._default_branch))

    def get_entry(self, commit_id: str, path: str) -> Optional[TreeEntry]:
        p = str(path)
        with self._lock:
            rec = self._commit(commit_id)
            blob = rec.files.get(p)
            if blob is not None:
                return TreeEntry(path=p, kind=EntryKind.BLOB, executable=blob.executable, size=len(blob.data))
            if p in rec.submodules:
                return TreeEntry(path=p, kind=EntryKind.SUBMODULE)
            prefix = p + "/"
            if any(k.startswith(prefix) for k in list(rec.files) + list(rec.submodules)):
                return TreeEntry(path=p, kind=EntryKind.TREE)
        return None

    def list_entries(self, commit_id: str) -> Iterator[TreeEntry]:
        with self._lock:
            rec = self._commit(commit_id)
            files = dict(rec.files)
            subs = dict(rec.submodules)

        entries: Dict[str, TreeEntry] = {}
        for p, blob in files.items():
            entries[p] = TreeEntry(path=p, kind=EntryKind.BLOB, executable=blob.executable, size=len(blob.data))
        for p in subs:
            entries[p] = TreeEntry(path=p, kind=EntryKind.SUBMODULE)
        for p in list(entries):
            for parent in _ancestors(p):
                entries.setdefault(parent, TreeEntry(path=parent, kind=EntryKind.TREE))

        # Tree order: a directory precedes its children; siblings sorted by name.
        for p in sorted(entries, key=lambda x: x.split("/")):
            yield entries[p]

    def open_blob(self, commit_id: str, path: str) -> BinaryIO:
        return io.BytesIO(self.read_file(commit_id, path))

    # ------------------------------------------------------------------
    # CommitWriter
    # ------------------------------------------------------------------

    def commit_files(
        self,
        *,
        branch: str,
        parent_commit_id: Optional[str],
        actor: Actor,
        message: str,
        operations: List[FileOperation],
    ) -> str:
        br = str(branch or self._default_branch)
        staged: Dict[str, _Blob] = {}
        for op in operations:
            if op.operation != "create":
                raise CommitError(f"unsupported file operation '{op.operation}' for {op.target_path}")
            with op.open() as f:
                staged[canonicalize_path(op.target_path)] = _Blob(data=f.read(), executable=bool(op.executable))

        with self._lock:
            head = self._branches.get(br)
            if head != parent_commit_id:
                raise CommitError(f"branch '{br}' moved: expected {parent_commit_id or '<empty>'}, found {head or '<empty>'}")
            parent = self._commits.get(head) if head else None
            tree = dict(parent.files) if parent else {}
            subs = dict(parent.submodules) if parent else {}
            for p in staged:
                if p in tree or p in subs:
                    raise CommitError(f"file already exists: {p}")
                for anc in _ancestors(p):
                    if anc in tree or anc in subs:
                        raise CommitError(f"a file exists where a directory is required: {anc}")
            tree.update(staged)
            return self._store_commit(branch=br, parent_id=head, message=message, author=actor.identity, files=tree, submodules=subs)

    # ------------------------------------------------------------------

    def _commit(self, commit_id: str) -> CommitRecord:
        rec = self._commits.get(commit_id)
        if rec is None:
            raise RefNotFoundError(commit_id)
        return rec

    def _store_commit(
        self,
        *,
        branch: str,
        parent_id: Optional[str],
        message: str,
        author: str,
        files: Dict[str, _Blob],
        submodules: Dict[str, str],
    ) -> str:
        self._seq += 1
        h = hashlib.sha1()
        h.update(f"{self._seq}\0{parent_id or ''}\0{message}\0{author}\0".encode("utf-8"))
        for p in sorted(files):
            h.update(p.encode("utf-8") + b"\0" + hashlib.sha1(files[p].data).digest())
        commit_id = h.hexdigest()
        self._commits[commit_id] = CommitRecord(
            commit_id=commit_id,
            parent_id=parent_id,
            message=message,
            author=author,
            created_at=_utc_now_iso(),
            files=files,
            submodules=submodules,
        )
        self._branches[branch] = commit_id
        return commit_id
