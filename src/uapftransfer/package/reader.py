"""Read-only access to `.uapf` archives (no extraction, no repository).

Uses the same path codec, root detection rule and manifest validation as import,
so a package accepted here is structurally acceptable to `import_package`.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Set, Tuple, Union

from ..core.config import MANIFEST_FILENAME
from ..core.errors import ArchiveFormatError, ReferencedPathMissingError
from .models import Manifest, load_manifest
from .paths import canonicalize_path, detect_root_prefix


PackageSource = Union[str, Path, bytes, bytearray, memoryview]


def _open_zip(source: PackageSource) -> zipfile.ZipFile:
    try:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return zipfile.ZipFile(io.BytesIO(bytes(source)), "r")
        return zipfile.ZipFile(Path(source).expanduser().resolve(), "r")
    except (zipfile.BadZipFile, EOFError) as e:
        raise ArchiveFormatError(f"invalid .uapf archive: {e}") from e


def _index_entries(zf: zipfile.ZipFile) -> Tuple[Dict[str, zipfile.ZipInfo], Set[str]]:
    """Canonical name -> ZipInfo for file entries, plus directory entries; every name goes through the codec."""
    files: Dict[str, zipfile.ZipInfo] = {}
    dirs: Set[str] = set()
    for info in zf.infolist():
        name = canonicalize_path(info.filename)
        if info.is_dir():
            dirs.add(name)
            continue
        files[name] = info
    return files, dirs


@dataclass
class UapfPackage:
    """An opened, validated `.uapf` archive."""

    manifest: Manifest
    references: List[str]
    root_prefix: str
    _zip: zipfile.ZipFile
    _files: Dict[str, zipfile.ZipInfo]

    def names(self) -> List[str]:
        """Package-relative file paths (wrapper directory stripped), archive order."""
        n = len(self.root_prefix)
        return [name[n:] for name in self._files if name.startswith(self.root_prefix)]

    def read_bytes(self, relpath: str) -> bytes:
        key = self.root_prefix + canonicalize_path(relpath)
        info = self._files.get(key)
        if info is None:
            raise FileNotFoundError(relpath)
        return self._zip.read(info)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "UapfPackage":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def open_package(source: PackageSource) -> UapfPackage:
    """Open a `.uapf` path or bytes and validate it (manifest + references present)."""
    zf = _open_zip(source)
    try:
        files, dirs = _index_entries(zf)
        prefix = detect_root_prefix(files, dirs)
        manifest, references = load_manifest(zf.read(files[prefix + MANIFEST_FILENAME]))
        missing = [rel for rel in references if prefix + rel not in files]
        if missing:
            raise ReferencedPathMissingError(missing, where="in package")
    except BaseException:
        zf.close()
        raise
    return UapfPackage(manifest=manifest, references=references, root_prefix=prefix, _zip=zf, _files=files)


def validate_package(data: Union[bytes, bytearray, memoryview]) -> Manifest:
    """Validate `.uapf` bytes without writing anything; return the manifest."""
    with open_package(data) as pkg:
        return pkg.manifest
