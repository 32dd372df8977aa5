"""
uapftransfer

Transfer of UAPF process packages between repositories.

This package provides:
- manifest validation and reference extraction
- streamed `.uapf` export from a versioned tree
- safe, all-or-nothing import of a `.uapf` archive as a single commit

Repository access goes through small protocols (tree reader, commit writer);
in-memory, local git (dulwich) and Gitea (REST) implementations are included.
"""

from .core import (
    MANIFEST_FILENAME,
    PACKAGE_EXTENSION,
    ArchiveFormatError,
    CommitError,
    ConflictError,
    ExportCancelledError,
    InvalidReferenceError,
    ManifestMissingError,
    PathError,
    ReferencedPathMissingError,
    RefNotFoundError,
    SchemaError,
    SizeLimitExceededError,
    SubmoduleUnsupportedError,
    TransferConfig,
    UapfError,
)
from .package import (
    ArchiveStream,
    ExportedPackage,
    ImportResult,
    ImportState,
    Manifest,
    PackageImport,
    PackageInfo,
    PackageReference,
    UapfPackage,
    build_export_filename,
    canonicalize_path,
    export_package,
    extract_references,
    import_package,
    is_safe_path,
    join_target_path,
    load_manifest,
    manifest_from_dict,
    manifest_to_dict,
    normalize_target_prefix,
    open_package,
    validate_manifest_bytes,
    validate_package,
)
from .repository import (
    Actor,
    CommitWriter,
    EntryKind,
    FileOperation,
    GitRepository,
    GiteaApiError,
    GiteaRepository,
    InMemoryRepository,
    TreeEntry,
    TreeReader,
)

__all__ = [
    # Configuration
    "MANIFEST_FILENAME",
    "PACKAGE_EXTENSION",
    "TransferConfig",
    # Errors
    "UapfError",
    "SchemaError",
    "InvalidReferenceError",
    "ManifestMissingError",
    "RefNotFoundError",
    "ReferencedPathMissingError",
    "SubmoduleUnsupportedError",
    "ArchiveFormatError",
    "SizeLimitExceededError",
    "PathError",
    "ConflictError",
    "CommitError",
    "ExportCancelledError",
    # Path codec + manifest
    "canonicalize_path",
    "is_safe_path",
    "normalize_target_prefix",
    "join_target_path",
    "Manifest",
    "PackageInfo",
    "PackageReference",
    "manifest_from_dict",
    "manifest_to_dict",
    "validate_manifest_bytes",
    "extract_references",
    "load_manifest",
    # Export / import
    "ArchiveStream",
    "ExportedPackage",
    "export_package",
    "build_export_filename",
    "ImportState",
    "ImportResult",
    "PackageImport",
    "import_package",
    "UapfPackage",
    "open_package",
    "validate_package",
    # Repositories
    "Actor",
    "EntryKind",
    "FileOperation",
    "TreeEntry",
    "TreeReader",
    "CommitWriter",
    "InMemoryRepository",
    "GitRepository",
    "GiteaRepository",
    "GiteaApiError",
]
