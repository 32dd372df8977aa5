"""uapftransfer.repository.git

Local git repository adapter (TreeReader + CommitWriter) built on dulwich.

Uses the pure-Python dulwich API for everything; the git binary is not required.
Commits are written as new tree/commit objects and published with a
compare-and-swap on the branch ref, so a branch that moved since conflict-check
fails with CommitError instead of being overwritten.

Only the object store and refs are updated; a checked-out working tree is not
touched by `commit_files`.
"""

from __future__ import annotations

import io
import stat
import time
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple

from dulwich.objects import S_ISGITLINK, Blob, Commit, Tag, Tree
from dulwich.objectspec import parse_commit
from dulwich.repo import Repo

from ..core.errors import CommitError, RefNotFoundError
from ..core.logging import get_logger
from ..package.paths import canonicalize_path
from .base import Actor, EntryKind, FileOperation, TreeEntry

logger = get_logger(__name__)

_MODE_FILE = 0o100644
_MODE_EXEC = 0o100755
_HEADS = b"refs/heads/"


def _entry_kind(mode: int) -> EntryKind:
    if S_ISGITLINK(mode):
        return EntryKind.SUBMODULE
    if stat.S_ISDIR(mode):
        return EntryKind.TREE
    return EntryKind.BLOB


def _is_executable(mode: int) -> bool:
    return stat.S_ISREG(mode) and bool(mode & 0o111)


class GitRepository:
    """A dulwich-backed repository (bare or with a working tree)."""

    def __init__(self, path: str | Path, *, name: Optional[str] = None, default_branch: Optional[str] = None) -> None:
        self.path = Path(path).expanduser().resolve()
        self._repo = Repo(str(self.path))
        self._name = str(name or self.path.name.removesuffix(".git") or "repo")
        self._default_branch = str(default_branch or self._head_branch() or "main")

    @classmethod
    def init(cls, path: str | Path, *, bare: bool = False, name: Optional[str] = None, default_branch: str = "main") -> "GitRepository":
        """Create an empty repository whose HEAD points at `default_branch`."""
        p = Path(path).expanduser().resolve()
        p.mkdir(parents=True, exist_ok=True)
        repo = Repo.init_bare(str(p)) if bare else Repo.init(str(p))
        repo.refs.set_symbolic_ref(b"HEAD", _HEADS + default_branch.encode("utf-8"))
        repo.close()
        return cls(p, name=name, default_branch=default_branch)

    def close(self) -> None:
        self._repo.close()

    def __enter__(self) -> "GitRepository":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_branch(self) -> str:
        return self._default_branch

    def _head_branch(self) -> Optional[str]:
        try:
            target = self._repo.refs.read_ref(b"HEAD")
        except KeyError:
            return None
        if isinstance(target, bytes) and target.startswith(b"ref: " + _HEADS):
            return target[len(b"ref: " + _HEADS):].decode("utf-8").strip()
        return None

    # ------------------------------------------------------------------
    # TreeReader
    # ------------------------------------------------------------------

    def resolve_ref(self, ref: str) -> str:
        r = str(ref or "").strip() or self._default_branch
        try:
            commit = parse_commit(self._repo, r.encode("utf-8"))
        except (KeyError, ValueError) as e:
            raise RefNotFoundError(r) from e
        return commit.id.decode("ascii")

    def branch_head(self, branch: str) -> Optional[str]:
        name = _HEADS + str(branch or self._default_branch).encode("utf-8")
        try:
            sha = self._repo.refs[name]
        except KeyError:
            return None
        return sha.decode("ascii")

    def _commit(self, commit_id: str) -> Commit:
        try:
            obj = self._repo[commit_id.encode("ascii")]
        except KeyError as e:
            raise RefNotFoundError(commit_id) from e
        while isinstance(obj, Tag):
            obj = self._repo[obj.object[1]]
        if not isinstance(obj, Commit):
            raise RefNotFoundError(commit_id, f"not a commit: {commit_id}")
        return obj

    def _lookup(self, tree_id: bytes, path: str) -> Optional[Tuple[int, bytes]]:
        mode, sha = stat.S_IFDIR, tree_id
        for part in path.split("/"):
            if not stat.S_ISDIR(mode) or S_ISGITLINK(mode):
                return None
            tree = self._repo[sha]
            if not isinstance(tree, Tree):
                return None
            try:
                mode, sha = tree[part.encode("utf-8")]
            except KeyError:
                return None
        return mode, sha

    def get_entry(self, commit_id: str, path: str) -> Optional[TreeEntry]:
        p = str(path)
        found = self._lookup(self._commit(commit_id).tree, p)
        if found is None:
            return None
        mode, _sha = found
        return TreeEntry(path=p, kind=_entry_kind(mode), executable=_is_executable(mode))

    def list_entries(self, commit_id: str) -> Iterator[TreeEntry]:
        root = self._commit(commit_id).tree
        yield from self._walk(root, "")

    def _walk(self, tree_id: bytes, prefix: str) -> Iterator[TreeEntry]:
        tree = self._repo[tree_id]
        for item in tree.items():
            name = item.path.decode("utf-8")
            path = f"{prefix}/{name}" if prefix else name
            kind = _entry_kind(item.mode)
            yield TreeEntry(path=path, kind=kind, executable=_is_executable(item.mode))
            if kind == EntryKind.TREE:
                yield from self._walk(item.sha, path)

    def open_blob(self, commit_id: str, path: str) -> BinaryIO:
        p = str(path)
        found = self._lookup(self._commit(commit_id).tree, p)
        if found is None or _entry_kind(found[0]) != EntryKind.BLOB:
            raise FileNotFoundError(p)
        blob = self._repo[found[1]]
        return io.BytesIO(blob.data)

    # ------------------------------------------------------------------
    # CommitWriter
    # ------------------------------------------------------------------

    def _flatten(self, tree_id: bytes, prefix: str, out: Dict[str, Tuple[int, bytes]]) -> None:
        for item in self._repo[tree_id].items():
            name = item.path.decode("utf-8")
            path = f"{prefix}/{name}" if prefix else name
            if stat.S_ISDIR(item.mode) and not S_ISGITLINK(item.mode):
                self._flatten(item.sha, path, out)
            else:
                out[path] = (item.mode, item.sha)

    def _build_tree(self, flat: Dict[str, Tuple[int, bytes]]) -> bytes:
        """Write nested tree objects for a flat {path -> (mode, sha)} map; return the root id."""
        children: Dict[str, Dict[str, Tuple[int, bytes]]] = {"": {}}
        for path in flat:
            parts = path.split("/")
            for i in range(1, len(parts)):
                children.setdefault("/".join(parts[:i]), {})

        for path, (mode, sha) in flat.items():
            parent, _, name = path.rpartition("/")
            children[parent][name] = (mode, sha)

        # Deepest directories first so child tree ids exist before their parents.
        for dir_path in sorted((d for d in children if d), key=lambda d: d.count("/"), reverse=True):
            tree = Tree()
            for name, (mode, sha) in children[dir_path].items():
                tree.add(name.encode("utf-8"), mode, sha)
            self._repo.object_store.add_object(tree)
            parent, _, name = dir_path.rpartition("/")
            children[parent][name] = (stat.S_IFDIR, tree.id)

        root = Tree()
        for name, (mode, sha) in children[""].items():
            root.add(name.encode("utf-8"), mode, sha)
        self._repo.object_store.add_object(root)
        return root.id

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
        ref_name = _HEADS + br.encode("utf-8")
        head = self.branch_head(br)
        if head != parent_commit_id:
            raise CommitError(f"branch '{br}' moved: expected {parent_commit_id or '<empty>'}, found {head or '<empty>'}")

        flat: Dict[str, Tuple[int, bytes]] = {}
        parents: list[bytes] = []
        if parent_commit_id:
            parent = self._commit(parent_commit_id)
            parents.append(parent.id)
            self._flatten(parent.tree, "", flat)

        for op in operations:
            if op.operation != "create":
                raise CommitError(f"unsupported file operation '{op.operation}' for {op.target_path}")
            p = canonicalize_path(op.target_path)
            if p in flat:
                raise CommitError(f"file already exists: {p}")
            blocked = [a for a in _ancestors(p) if a in flat]
            if blocked:
                raise CommitError(f"a file exists where a directory is required: {blocked[0]}")
            with op.open() as f:
                blob = Blob.from_string(f.read())
            self._repo.object_store.add_object(blob)
            flat[p] = (_MODE_EXEC if op.executable else _MODE_FILE, blob.id)

        commit = Commit()
        commit.tree = self._build_tree(flat)
        commit.parents = parents
        identity = actor.identity.encode("utf-8")
        commit.author = commit.committer = identity
        now = int(time.time())
        commit.author_time = commit.commit_time = now
        commit.author_timezone = commit.commit_timezone = 0
        commit.encoding = b"UTF-8"
        commit.message = message.encode("utf-8")
        self._repo.object_store.add_object(commit)

        if parent_commit_id:
            ok = self._repo.refs.set_if_equals(ref_name, parent_commit_id.encode("ascii"), commit.id)
        else:
            ok = self._repo.refs.add_if_new(ref_name, commit.id)
        if not ok:
            raise CommitError(f"branch '{br}' moved while committing")

        commit_id = commit.id.decode("ascii")
        logger.info("Committed files", repository=self._name, branch=br, commit_id=commit_id, files=len(operations))
        return commit_id


def _ancestors(path: str) -> List[str]:
    parts = path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]
