"""UAPF package export (repository tree -> streamed `.uapf` archive).

All validation (manifest schema, reference paths, referenced files present) runs
before the first archive byte is produced. The archive itself is written by a
background producer into a bounded pipe; producer-side failures surface on the
caller's next read of `ExportedPackage.stream`.
"""

from __future__ import annotations

import shutil
import stat
import zipfile
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional

from ..core.config import MANIFEST_FILENAME, PACKAGE_EXTENSION, TransferConfig
from ..core.errors import ManifestMissingError, ReferencedPathMissingError, SubmoduleUnsupportedError
from ..core.logging import get_logger
from ..repository.base import TreeEntry, TreeReader
from .models import Manifest, load_manifest
from .streaming import ArchiveStream, PipeWriter, start_producer

logger = get_logger(__name__)


@dataclass
class ExportedPackage:
    """Result of `export_package`: read `stream` to obtain the archive bytes."""

    stream: ArchiveStream
    filename: str
    manifest: Manifest
    commit_id: str
    references: List[str] = field(default_factory=list)


def _sanitize_filename(s: str) -> str:
    s = str(s or "").strip()
    for ch in (" ", "/", "\\"):
        s = s.replace(ch, "_")
    return s


def build_export_filename(manifest: Optional[Manifest], repo_name: str) -> str:
    """`{name}_{version}.uapf`; package.* overrides top-level fields, repo name is the last resort."""
    name = manifest.display_name if manifest is not None else ""
    version = manifest.display_version if manifest is not None else ""
    if not name:
        name = repo_name
    if not version:
        return f"{_sanitize_filename(name)}{PACKAGE_EXTENSION}"
    return f"{_sanitize_filename(name)}_{_sanitize_filename(version)}{PACKAGE_EXTENSION}"


def archive_entry_info(name: str, *, executable: bool = False) -> zipfile.ZipInfo:
    """Deflate entry with a unix regular-file mode (0o755 or 0o644)."""
    info = zipfile.ZipInfo(name)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = 3
    mode = stat.S_IFREG | (0o755 if executable else 0o644)
    info.external_attr = (mode & 0xFFFF) << 16
    return info


def _remaining_size(src: BinaryIO) -> Optional[int]:
    if not src.seekable():
        return None
    pos = src.tell()
    end = src.seek(0, 2)
    src.seek(pos)
    return end - pos


def _write_blob_entry(
    zf: zipfile.ZipFile,
    repository: TreeReader,
    commit_id: str,
    entry: TreeEntry,
    *,
    chunk_size: int,
) -> None:
    info = archive_entry_info(entry.path, executable=entry.executable)
    with repository.open_blob(commit_id, entry.path) as src:
        size = entry.size if entry.size is not None else _remaining_size(src)
        if size is not None:
            info.file_size = size
        with zf.open(info, mode="w", force_zip64=size is None) as dest:
            shutil.copyfileobj(src, dest, chunk_size)


def _read_manifest(repository: TreeReader, commit_id: str, ref: str) -> bytes:
    entry = repository.get_entry(commit_id, MANIFEST_FILENAME)
    if entry is None or not entry.is_regular_file:
        raise ManifestMissingError(f"{MANIFEST_FILENAME} not found at ref {ref}")
    with repository.open_blob(commit_id, MANIFEST_FILENAME) as f:
        return f.read()


def export_package(
    repository: TreeReader,
    ref: str = "",
    *,
    config: Optional[TransferConfig] = None,
) -> ExportedPackage:
    """Export the package at `ref` (default branch when empty) as a streamed `.uapf` archive."""
    cfg = config or TransferConfig()
    r = str(ref or "").strip() or repository.default_branch

    commit_id = repository.resolve_ref(r)
    manifest_data = _read_manifest(repository, commit_id, r)
    manifest, references = load_manifest(manifest_data)

    missing: list[str] = []
    for rel in references:
        entry = repository.get_entry(commit_id, rel)
        if entry is None or not entry.is_regular_file:
            missing.append(rel)
    if missing:
        raise ReferencedPathMissingError(missing, where=f"at ref {r}")

    entries = list(repository.list_entries(commit_id))
    filename = build_export_filename(manifest, repository.name)
    logger.info(
        "UAPF export started",
        repository=repository.name,
        ref=r,
        commit_id=commit_id,
        references=len(references),
        entries=len(entries),
    )

    def _produce(writer: PipeWriter) -> None:
        required = set(references)
        zf = zipfile.ZipFile(writer, mode="w", compression=zipfile.ZIP_DEFLATED)
        try:
            zf.writestr(archive_entry_info(MANIFEST_FILENAME), manifest_data)
            required.discard(MANIFEST_FILENAME)

            for entry in entries:
                if entry.is_dir:
                    continue
                if not entry.path or entry.path == MANIFEST_FILENAME:
                    continue
                if entry.is_submodule:
                    raise SubmoduleUnsupportedError(entry.path)
                _write_blob_entry(zf, repository, commit_id, entry, chunk_size=cfg.chunk_size)
                required.discard(entry.path)

            if required:
                raise ReferencedPathMissingError(required, where=f"at ref {r}")
        except BaseException:
            # Nothing written after a failure reaches the reader, central directory included.
            writer.abort()
            zf.close()
            raise
        zf.close()
        logger.info("UAPF export completed", repository=repository.name, ref=r, filename=filename)

    stream = start_producer(
        _produce,
        chunk_size=cfg.chunk_size,
        max_chunks=cfg.pipe_buffer_chunks,
        name=f"uapf-export:{repository.name}",
    )
    return ExportedPackage(
        stream=stream,
        filename=filename,
        manifest=manifest,
        commit_id=commit_id,
        references=list(references),
    )
