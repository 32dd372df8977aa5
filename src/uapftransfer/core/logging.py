"""uapftransfer.core.logging

Logging adapter.

We use AbstractCore's structured logger so that transfer events carry keyword
context (`logger.info("...", repository=..., ref=...)`) and share the host's
logging configuration.
"""

from __future__ import annotations

from typing import Any

from abstractcore.utils.structured_logging import get_logger as _core_get_logger


def get_logger(name: str) -> Any:
    return _core_get_logger(name)
