"""
itemflow config package public API.

File: src/itemflow/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``itemflow.toml`` + ``ITEMFLOW_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from itemflow.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from itemflow.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
