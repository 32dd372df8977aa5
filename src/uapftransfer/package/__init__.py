"""
uapftransfer.package

UAPF package (.uapf) support: the portable transfer unit for process packages.

Design intent:
- One path codec for every direction of travel (manifest references, archive
  entries, import target prefixes).
- Export and import validate the manifest the same way; import never trusts the
  archive it is given.
- Packages are content; hosts decide which repository and branch receive them.
"""

from .paths import (
    canonicalize_path,
    is_descendant,
    is_safe_path,
    join_target_path,
    normalize_target_prefix,
    resolve_inside,
)
from .models import (
    Manifest,
    PackageInfo,
    PackageReference,
    extract_references,
    load_manifest,
    manifest_from_dict,
    manifest_to_dict,
    validate_manifest_bytes,
)
from .streaming import ArchiveStream
from .exporter import ExportedPackage, archive_entry_info, build_export_filename, export_package
from .importer import ImportResult, ImportState, PackageImport, default_commit_message, import_package
from .reader import UapfPackage, open_package, validate_package

__all__ = [
    "canonicalize_path",
    "is_safe_path",
    "normalize_target_prefix",
    "join_target_path",
    "is_descendant",
    "resolve_inside",
    "Manifest",
    "PackageInfo",
    "PackageReference",
    "manifest_from_dict",
    "manifest_to_dict",
    "validate_manifest_bytes",
    "extract_references",
    "load_manifest",
    "ArchiveStream",
    "ExportedPackage",
    "export_package",
    "build_export_filename",
    "archive_entry_info",
    "ImportState",
    "ImportResult",
    "PackageImport",
    "import_package",
    "default_commit_message",
    "UapfPackage",
    "open_package",
    "validate_package",
]
