"""uapftransfer.core

Shared configuration, error taxonomy and logging adapter.
"""

from .config import MANIFEST_FILENAME, PACKAGE_EXTENSION, TransferConfig
from .errors import (
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
    UapfError,
)

__all__ = [
    "MANIFEST_FILENAME",
    "PACKAGE_EXTENSION",
    "TransferConfig",
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
]
