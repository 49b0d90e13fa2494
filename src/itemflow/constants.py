"""Stable constants shared across the mutation pipeline."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 2

# Default runtime paths (relative to the working directory unless overridden by config).
DEFAULT_STATE_DB: Final[PurePosixPath] = PurePosixPath("state/itemflow.sqlite")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")
CONFIG_FILE_NAME: Final[str] = "itemflow.toml"
ENV_PREFIX: Final[str] = "ITEMFLOW_"

# Capabilities understood by the permission gate.
CAPABILITY_WRITE: Final[str] = "write"
CAPABILITY_ADMIN: Final[str] = "admin"
CAPABILITY_APPROVE: Final[str] = "approve"
KNOWN_CAPABILITIES: Final[frozenset[str]] = frozenset(
    {CAPABILITY_WRITE, CAPABILITY_ADMIN, CAPABILITY_APPROVE}
)

# Fields a processor or a caller's change set may never rewrite.
IMMUTABLE_ITEM_FIELDS: Final[tuple[str, ...]] = ("id", "version", "created_by", "created_at")

# Side-effect defaults.
DEFAULT_SIDE_EFFECT_TIMEOUT_SECONDS: Final[float] = 5.0
DEFAULT_EVENT_BUFFER_SIZE: Final[int] = 1024

__all__ = [
    "CAPABILITY_ADMIN",
    "CAPABILITY_APPROVE",
    "CAPABILITY_WRITE",
    "CONFIG_FILE_NAME",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_EVENT_BUFFER_SIZE",
    "DEFAULT_LOG_DIR",
    "DEFAULT_SIDE_EFFECT_TIMEOUT_SECONDS",
    "DEFAULT_STATE_DB",
    "ENV_PREFIX",
    "IMMUTABLE_ITEM_FIELDS",
    "KNOWN_CAPABILITIES",
    "STATE_DB_SCHEMA_VERSION",
]
