"""Archive path codec.

One rule set decides what a "safe" relative path is, for manifest references,
archive entry names and import target prefixes alike.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import Path
from typing import Iterable

from ..core.config import MANIFEST_FILENAME
from ..core.errors import ManifestMissingError, PathError

_DRIVE_MARKER = re.compile(r"^[A-Za-z]:")


def canonicalize_path(raw: str) -> str:
    """Return the canonical relative POSIX form of `raw` or raise PathError.

    Rules:
    - backslashes are separators
    - absolute paths (including UNC `//server/share`) and drive letters are rejected
    - surrounding whitespace is part of the name and is kept
    - `.` / `..` segments are normalized; a result that escapes the root is rejected
    - empty results are rejected
    """
    if not isinstance(raw, str):
        raise PathError(repr(raw), "path must be a string")
    if "\x00" in raw:
        raise PathError(raw, "path contains a NUL character")

    s = raw.replace("\\", "/")
    if not s:
        raise PathError(raw, "path is empty")
    if s.startswith("/"):
        raise PathError(raw, "absolute paths are not allowed")
    if _DRIVE_MARKER.match(s):
        # "C:foo" and "C:/foo"; a colon elsewhere is an ordinary character.
        raise PathError(raw, "drive or volume markers are not allowed")

    clean = posixpath.normpath(s)
    if clean == ".." or clean.startswith("../"):
        raise PathError(raw, "path escapes its root")
    if clean in {"", "."}:
        raise PathError(raw, "path is empty")
    return clean


def is_safe_path(raw: str) -> bool:
    try:
        canonicalize_path(raw)
    except PathError:
        return False
    return True


def normalize_target_prefix(raw: str | None) -> str:
    """Normalize an import target prefix; empty means the repository root."""
    s = str(raw or "").strip()
    if not s:
        return ""
    return canonicalize_path(s)


def join_target_path(prefix: str, relpath: str) -> str:
    rel = canonicalize_path(relpath)
    if not prefix:
        return rel
    return canonicalize_path(f"{canonicalize_path(prefix)}/{rel}")


def is_descendant(root: Path, candidate: Path) -> bool:
    """True when `candidate` resolves to `root` itself or a path inside it."""
    root_abs = root.resolve()
    cand_abs = candidate.resolve()
    try:
        cand_abs.relative_to(root_abs)
    except ValueError:
        return False
    return True


def resolve_inside(root: Path, relpath: str) -> Path:
    """Map a relative path onto `root`, refusing anything that lands outside it."""
    rel = canonicalize_path(relpath)
    target = (root / Path(*rel.split("/"))).resolve()
    if not is_descendant(root, target) or target == root.resolve():
        raise PathError(relpath, "resolved destination escapes its root")
    return target


def detect_root_prefix(files: Iterable[str], dirs: Iterable[str] = ()) -> str:
    """Return the package root inside an archive: `"<top>/"` or `""`.

    `files` and `dirs` are canonical archive paths. A single top-level directory
    (counting directory-only entries) is the root when it directly holds the
    manifest; otherwise the manifest must sit at the archive root.
    """
    file_set = set(files)
    tops = {p.split("/", 1)[0] for p in file_set}
    tops.update(p.split("/", 1)[0] for p in dirs)
    if len(tops) == 1:
        top = next(iter(tops))
        if top not in file_set and f"{top}/{MANIFEST_FILENAME}" in file_set:
            return f"{top}/"
    if MANIFEST_FILENAME in file_set:
        return ""
    raise ManifestMissingError(f"{MANIFEST_FILENAME} is required in the UAPF package")
