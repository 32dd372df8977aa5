"""uapftransfer.core.errors

Error taxonomy for package transfer.

Every failure aborts the whole export or import; there is no partial-success mode.
Aggregating errors carry the full list of offending paths (sorted), not just the first.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple


class UapfError(Exception):
    """Base class for all package transfer errors."""


class SchemaError(UapfError, ValueError):
    """manifest.json is not valid JSON or does not have the expected structure."""


class InvalidReferenceError(UapfError, ValueError):
    """One or more manifest reference paths are malformed or escape the package root."""

    def __init__(self, message: str, *, paths: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.paths: Tuple[str, ...] = tuple(paths)


class ManifestMissingError(UapfError, FileNotFoundError):
    """manifest.json was not found at the package root."""


class RefNotFoundError(UapfError, LookupError):
    """A branch, tag or commit reference could not be resolved."""

    def __init__(self, ref: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"ref not found: {ref}")
        self.ref = ref


class ReferencedPathMissingError(UapfError):
    """Referenced files are missing (or are not regular files)."""

    def __init__(self, paths: Iterable[str], *, where: str = "") -> None:
        self.paths: Tuple[str, ...] = tuple(sorted(set(paths)))
        location = f" {where}" if where else ""
        super().__init__(f"referenced path missing{location}: {', '.join(self.paths)}")


class SubmoduleUnsupportedError(UapfError):
    def __init__(self, path: str) -> None:
        super().__init__(f"exporting submodules is not supported: {path}")
        self.path = path


class ArchiveFormatError(UapfError, ValueError):
    """The uploaded bytes are not a readable zip container."""


class SizeLimitExceededError(UapfError):
    def __init__(self, size: int, limit: int, *, what: str = "package") -> None:
        super().__init__(f"{what} exceeds maximum size: {size} bytes > {limit} bytes")
        self.size = size
        self.limit = limit


class PathError(UapfError, ValueError):
    """A path is absolute, carries a drive marker, is empty, or escapes its root."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"invalid path '{path}': {reason}")
        self.path = path
        self.reason = reason


class ConflictError(UapfError):
    """Import would overwrite files that already exist in the destination branch."""

    def __init__(self, paths: Iterable[str]) -> None:
        self.paths: Tuple[str, ...] = tuple(sorted(set(paths)))
        super().__init__(f"import would overwrite existing files: {', '.join(self.paths)}")


class CommitError(UapfError):
    """The commit writer failed (including a branch that moved since conflict-check)."""


class ExportCancelledError(UapfError):
    """The consumer closed the archive stream before the producer finished."""
