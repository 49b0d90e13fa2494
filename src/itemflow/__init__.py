"""
itemflow — item mutation pipeline

File: src/itemflow/__init__.py

Purpose
- Package root. Exposes version metadata only.

Import boundary
- No side effects at import time (no config loading, no logging init).
- Submodules are imported explicitly by callers: ``itemflow.pipeline``,
  ``itemflow.persistence``, ``itemflow.config``, ``itemflow.observability``.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
