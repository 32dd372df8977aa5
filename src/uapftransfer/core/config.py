"""uapftransfer.core.config

Transfer configuration (size limits, streaming buffers, staging location).

This module provides a TransferConfig dataclass that centralizes the knobs shared
by the exporter and the importer. Defaults can be overridden from the environment
with `TransferConfig.from_env()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

MANIFEST_FILENAME = "manifest.json"
PACKAGE_EXTENSION = ".uapf"

DEFAULT_MAX_PACKAGE_SIZE_MB = 50
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_PIPE_BUFFER_CHUNKS = 16

_MB = 1024 * 1024


def _env_megabytes(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        value = float(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be a number of megabytes, got '{raw}'") from e
    return int(value * _MB)


@dataclass(frozen=True)
class TransferConfig:
    """Configuration for package export/import.

    Attributes:
        max_package_size: Maximum accepted archive size in bytes (<= 0 disables the limit)
        max_extracted_size: Maximum total uncompressed bytes written to staging (None = unlimited)
        chunk_size: Copy/stream chunk size in bytes
        pipe_buffer_chunks: Number of chunks the export pipe may hold before the producer blocks
        staging_dir: Parent directory for import staging areas (None = system temp dir)

    Example:
        >>> config = TransferConfig(max_package_size=1024)
        >>> config.size_limit_enabled
        True
    """

    max_package_size: int = DEFAULT_MAX_PACKAGE_SIZE_MB * _MB
    max_extracted_size: Optional[int] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    pipe_buffer_chunks: int = DEFAULT_PIPE_BUFFER_CHUNKS
    staging_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if int(self.chunk_size) <= 0:
            raise ValueError("chunk_size must be positive")
        if int(self.pipe_buffer_chunks) <= 0:
            raise ValueError("pipe_buffer_chunks must be positive")
        if self.max_extracted_size is not None and int(self.max_extracted_size) <= 0:
            raise ValueError("max_extracted_size must be positive when set")

    @property
    def size_limit_enabled(self) -> bool:
        return int(self.max_package_size) > 0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "TransferConfig":
        """Build a config from environment variables.

        Supported variables:
        - `UAPF_MAX_PACKAGE_SIZE_MB` (0 disables the limit)
        - `UAPF_MAX_EXTRACTED_SIZE_MB`
        - `UAPF_STAGING_DIR`
        """
        env = os.environ if env is None else env
        kwargs = {}

        max_package = _env_megabytes(env, "UAPF_MAX_PACKAGE_SIZE_MB")
        if max_package is not None:
            kwargs["max_package_size"] = max_package

        max_extracted = _env_megabytes(env, "UAPF_MAX_EXTRACTED_SIZE_MB")
        if max_extracted is not None and max_extracted > 0:
            kwargs["max_extracted_size"] = max_extracted

        staging = env.get("UAPF_STAGING_DIR")
        if isinstance(staging, str) and staging.strip():
            kwargs["staging_dir"] = Path(staging.strip()).expanduser().resolve()

        return cls(**kwargs)
