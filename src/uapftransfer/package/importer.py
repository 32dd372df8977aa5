"""UAPF package import (untrusted `.uapf` bytes -> one atomic multi-file commit).

Flow (one `PackageImport` per call):

  parsing -> extracting -> root_detection -> validating -> conflict_check -> committing -> done
                                  (any state) -> failed

- The archive is size-checked while it is spooled (limit + 1 bytes read at most).
- Every entry name goes through the archive path codec and a resolved-path
  containment check before anything is written to the staging directory.
- The manifest is re-validated exactly as export validates it.
- Conflicts are collected for every file before deciding; any conflict aborts with
  zero mutations.
- The staging directory is removed on every exit path.
"""

from __future__ import annotations

import io
import os
import shutil
import stat
import tempfile
import zipfile
import zlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from ..core.config import MANIFEST_FILENAME, TransferConfig
from ..core.errors import (
    ArchiveFormatError,
    CommitError,
    ConflictError,
    PathError,
    ReferencedPathMissingError,
    SizeLimitExceededError,
    UapfError,
)
from ..core.logging import get_logger
from ..repository.base import Actor, CommitWriter, FileOperation, TreeReader
from .models import Manifest, load_manifest
from .paths import canonicalize_path, detect_root_prefix, join_target_path, normalize_target_prefix, resolve_inside

logger = get_logger(__name__)

_SPOOL_MEMORY_BYTES = 8 * 1024 * 1024

ArchiveSource = Union[bytes, bytearray, memoryview, BinaryIO]


class ImportState(str, Enum):
    PARSING = "parsing"
    EXTRACTING = "extracting"
    ROOT_DETECTION = "root_detection"
    VALIDATING = "validating"
    CONFLICT_CHECK = "conflict_check"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportResult:
    commit_id: str
    message: str
    manifest: Manifest
    target_path: str = ""
    paths: List[str] = field(default_factory=list)


def default_commit_message(manifest: Manifest) -> str:
    name = manifest.display_name or "UAPF package"
    version = manifest.display_version
    if version:
        return f"Import UAPF package {name}@{version}"
    return f"Import UAPF package {name}"


def spool_archive(source: ArchiveSource, *, declared_size: Optional[int], config: TransferConfig) -> IO[bytes]:
    """Copy the archive into a spooled temp file, enforcing `config.max_package_size`.

    At most `max + 1` bytes are read, so an oversized upload is detected without
    buffering unbounded data.
    """
    limit = int(config.max_package_size) if config.size_limit_enabled else None
    if limit is not None and declared_size is not None and int(declared_size) > limit:
        raise SizeLimitExceededError(int(declared_size), limit)

    reader: BinaryIO = io.BytesIO(bytes(source)) if isinstance(source, (bytes, bytearray, memoryview)) else source
    spool = tempfile.SpooledTemporaryFile(
        max_size=_SPOOL_MEMORY_BYTES,
        prefix="uapf-upload-",
        dir=str(config.staging_dir) if config.staging_dir else None,
    )
    try:
        remaining = limit + 1 if limit is not None else None
        total = 0
        while remaining is None or remaining > 0:
            want = config.chunk_size if remaining is None else min(config.chunk_size, remaining)
            chunk = reader.read(want)
            if not chunk:
                break
            spool.write(chunk)
            total += len(chunk)
            if remaining is not None:
                remaining -= len(chunk)
        if limit is not None and total > limit:
            raise SizeLimitExceededError(total, limit)
        spool.seek(0)
    except BaseException:
        spool.close()
        raise
    return spool


def _entry_is_executable(info: zipfile.ZipInfo) -> bool:
    mode = (info.external_attr >> 16) & 0o777
    return bool(mode & 0o111)


def extract_archive(
    zf: zipfile.ZipFile,
    dest: Path,
    *,
    chunk_size: int,
    max_extracted_size: Optional[int] = None,
) -> int:
    """Safely extract every entry of `zf` under `dest`; return the number of files written.

    Only the executable bit is taken from archive metadata (0o755 vs 0o644).
    """
    root = dest.resolve()
    written_bytes = 0
    files = 0
    for info in zf.infolist():
        rel = canonicalize_path(info.filename)
        target = resolve_inside(root, rel)

        try:
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveFormatError(f"cannot create directory for archive entry '{info.filename}': {e}") from e
        if target.is_dir():
            raise ArchiveFormatError(f"archive entry '{info.filename}' collides with a directory")

        try:
            with zf.open(info, "r") as src, open(target, "wb") as out:
                while True:
                    chunk = src.read(chunk_size)
                    if not chunk:
                        break
                    written_bytes += len(chunk)
                    if max_extracted_size is not None and written_bytes > max_extracted_size:
                        raise SizeLimitExceededError(written_bytes, int(max_extracted_size), what="extracted package")
                    out.write(chunk)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
            raise ArchiveFormatError(f"cannot read archive entry '{info.filename}': {e}") from e

        os.chmod(target, 0o755 if _entry_is_executable(info) else 0o644)
        files += 1
    return files


def find_package_root(staging: Path) -> Path:
    """Apply the archive root rule to an extracted staging tree."""
    files: list[str] = []
    dirs: list[str] = []
    for dirpath, dirnames, filenames in os.walk(staging):
        rel = Path(dirpath).relative_to(staging)
        dirs.extend((rel / d).as_posix() for d in dirnames)
        files.extend((rel / f).as_posix() for f in filenames)
    return staging / detect_root_prefix(files, dirs)


def _walk_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            yield Path(dirpath) / name


def _is_executable_file(path: Path) -> bool:
    return bool(path.stat().st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def _repository_label(repository: TreeReader) -> str:
    try:
        return str(repository.name)
    except (UapfError, OSError):
        return type(repository).__name__


class _TreeProbe:
    """Point-in-time lookups against one commit, caching ancestor directories."""

    def __init__(self, repository: TreeReader, commit_id: str) -> None:
        self._repository = repository
        self._commit_id = commit_id
        self._ancestor_blocked: Dict[str, bool] = {}

    def collides(self, path: str) -> bool:
        if self._repository.get_entry(self._commit_id, path) is not None:
            return True
        parts = path.split("/")
        for i in range(1, len(parts)):
            anc = "/".join(parts[:i])
            blocked = self._ancestor_blocked.get(anc)
            if blocked is None:
                entry = self._repository.get_entry(self._commit_id, anc)
                blocked = entry is not None and not entry.is_dir
                self._ancestor_blocked[anc] = blocked
            if blocked:
                return True
        return False


class PackageImport:
    """One import invocation; owns its staging area exclusively."""

    def __init__(
        self,
        repository: TreeReader,
        actor: Actor,
        *,
        writer: Optional[CommitWriter] = None,
        config: Optional[TransferConfig] = None,
    ) -> None:
        if writer is None:
            if not isinstance(repository, CommitWriter):
                raise TypeError("repository does not implement CommitWriter; pass writer=")
            writer = repository
        self.repository = repository
        self.actor = actor
        self.writer = writer
        self.config = config or TransferConfig()
        self.state = ImportState.PARSING
        self.staging_path: Optional[Path] = None
        self._label = type(repository).__name__

    def _enter(self, state: ImportState) -> None:
        self.state = state
        logger.debug("UAPF import state", repository=self._label, state=state.value)

    def run(
        self,
        archive: ArchiveSource,
        *,
        declared_size: Optional[int] = None,
        target_path: str = "",
        commit_message: str = "",
    ) -> ImportResult:
        if declared_size is None and isinstance(archive, (bytes, bytearray, memoryview)):
            declared_size = len(archive)

        self._label = _repository_label(self.repository)
        spool: Optional[IO[bytes]] = None
        try:
            self._enter(ImportState.PARSING)
            spool = spool_archive(archive, declared_size=declared_size, config=self.config)
            try:
                zf = zipfile.ZipFile(spool, "r")
            except (zipfile.BadZipFile, EOFError, OSError) as e:
                raise ArchiveFormatError(f"invalid .uapf archive: {e}") from e

            with zf:
                self._enter(ImportState.EXTRACTING)
                self.staging_path = Path(
                    tempfile.mkdtemp(prefix="uapf-import-", dir=str(self.config.staging_dir) if self.config.staging_dir else None)
                )
                extract_archive(
                    zf,
                    self.staging_path,
                    chunk_size=self.config.chunk_size,
                    max_extracted_size=self.config.max_extracted_size,
                )

            self._enter(ImportState.ROOT_DETECTION)
            package_root = find_package_root(self.staging_path)

            self._enter(ImportState.VALIDATING)
            manifest, references = load_manifest((package_root / MANIFEST_FILENAME).read_bytes())
            missing = [rel for rel in references if not (package_root / Path(*rel.split("/"))).is_file()]
            if missing:
                raise ReferencedPathMissingError(missing, where="in package")
            prefix = normalize_target_prefix(target_path)

            self._enter(ImportState.CONFLICT_CHECK)
            branch = self.repository.default_branch
            operations, parent_commit_id = self._plan(package_root, prefix, branch)

            self._enter(ImportState.COMMITTING)
            message = str(commit_message or "").strip() or default_commit_message(manifest)
            commit_id = self._commit(branch, parent_commit_id, message, operations)

            self._enter(ImportState.DONE)
            logger.info(
                "UAPF import committed",
                repository=self._label,
                branch=branch,
                commit_id=commit_id,
                files=len(operations),
                target_path=prefix,
            )
            return ImportResult(
                commit_id=commit_id,
                message=message,
                manifest=manifest,
                target_path=prefix,
                paths=[op.target_path for op in operations],
            )
        except BaseException as e:
            failed_in = self.state
            self.state = ImportState.FAILED
            logger.error(
                "UAPF import failed",
                repository=self._label,
                state=failed_in.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            if spool is not None:
                spool.close()
            if self.staging_path is not None:
                shutil.rmtree(self.staging_path, ignore_errors=True)

    def _plan(self, package_root: Path, prefix: str, branch: str) -> Tuple[List[FileOperation], Optional[str]]:
        head = self.repository.branch_head(branch)
        probe = _TreeProbe(self.repository, head) if head is not None else None

        operations: list[FileOperation] = []
        conflicts: list[str] = []
        for disk_path in _walk_files(package_root):
            rel = disk_path.relative_to(package_root).as_posix()
            try:
                target = join_target_path(prefix, rel)
            except PathError as e:
                raise PathError(rel, f"invalid path in package: {e.reason}") from e
            if probe is not None and probe.collides(target):
                conflicts.append(target)
                continue
            operations.append(
                FileOperation(
                    target_path=target,
                    content_source=disk_path,
                    executable=_is_executable_file(disk_path),
                )
            )

        if conflicts:
            logger.warning("UAPF import conflicts", repository=self._label, branch=branch, paths=sorted(conflicts))
            raise ConflictError(conflicts)
        return operations, head

    def _commit(self, branch: str, parent_commit_id: Optional[str], message: str, operations: List[FileOperation]) -> str:
        try:
            return self.writer.commit_files(
                branch=branch,
                parent_commit_id=parent_commit_id,
                actor=self.actor,
                message=message,
                operations=operations,
            )
        except UapfError:
            raise
        except Exception as e:
            raise CommitError(f"commit failed: {e}") from e


def import_package(
    repository: TreeReader,
    actor: Actor,
    archive: ArchiveSource,
    *,
    declared_size: Optional[int] = None,
    target_path: str = "",
    commit_message: str = "",
    writer: Optional[CommitWriter] = None,
    config: Optional[TransferConfig] = None,
) -> ImportResult:
    """Import a `.uapf` archive into the repository's default branch as one commit."""
    job = PackageImport(repository, actor, writer=writer, config=config)
    return job.run(
        archive,
        declared_size=declared_size,
        target_path=target_path,
        commit_message=commit_message,
    )
