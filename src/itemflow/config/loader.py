"""
itemflow — runtime config loader.

File: src/itemflow/config/loader.py

Purpose
- Produce the effective runtime config from four layers, highest first:
  CLI overrides, ``ITEMFLOW_*`` environment variables, ``itemflow.toml``, built-in defaults.

Notes
- Every scalar default gets an environment variable named after its dotted path,
  e.g. ``pipeline.versioning_enabled`` is ``ITEMFLOW_PIPELINE_VERSIONING_ENABLED``;
  the value is coerced to the default's type.
- Relative paths are resolved against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from itemflow.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from itemflow.constants import CONFIG_FILE_NAME, ENV_PREFIX

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

# Optional settings with no default still get an environment variable.
_OPTIONAL_STRING_PATHS: Final[tuple[tuple[str, ...], ...]] = (("pipeline", "rules_file"),)


class ConfigLoadError(ValueError):
    """The config file or an override could not be read or coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``config_path`` defaults to ``./itemflow.toml``, which may be absent; an explicit path
    must exist. ``environ`` defaults to ``os.environ``.
    """
    source = Path(config_path).expanduser().resolve() if config_path else _default_location()
    from_file = _read_toml(source) if source.exists() else None
    if from_file is None and config_path:
        raise ConfigLoadError(f"config file not found: {source}")

    effective = assert_valid_config(merge_config(default_config(), from_file or {}))
    env = os.environ if environ is None else environ
    for layer in (_env_layer(effective, env), _cli_layer(cli_overrides or {})):
        effective = merge_config(effective, layer)
    effective = assert_valid_config(effective)
    return assert_valid_config(normalize_paths(effective, base_dir=source.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy of ``config`` with every path setting made absolute against ``base_dir``."""
    result = merge_config({}, config)
    for dotted in PATH_FIELDS:
        *parents, leaf = dotted
        section = _descend(result, parents)
        if section is not None and isinstance(section.get(leaf), str):
            section[leaf] = _absolute(section[leaf], base_dir)
    return result


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Compact, key-sorted JSON of ``config`` with secret-looking values redacted."""
    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _default_location() -> Path:
    return (Path.cwd() / CONFIG_FILE_NAME).resolve()


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, caster in sorted(_env_targets(config).items()):
        name = ENV_PREFIX + "_".join(part.upper() for part in path)
        if name in environ:
            try:
                value = caster(environ[name].strip())
            except ValueError as exc:
                raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from exc
            _assign(layer, path, value)
    return layer


def _env_targets(config: Mapping[str, object]) -> dict[tuple[str, ...], Callable[[str], object]]:
    targets = {
        path: _CASTERS[type(value)] for path, value in _leaves(config) if type(value) in _CASTERS
    }
    for path in _OPTIONAL_STRING_PATHS:
        targets.setdefault(path, _as_text)
    return targets


def _leaves(
    config: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key, value in config.items():
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _as_text(raw: str) -> str:
    return raw


def _as_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _as_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _as_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


_CASTERS: Final[dict[type, Callable[[str], object]]] = {
    str: _as_text,
    int: _as_int,
    float: _as_float,
    bool: _as_bool,
}


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, path, value)
    return layer


def _assign(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = value


def _descend(config: dict[str, Any], parts: list[str]) -> dict[str, Any] | None:
    node: object = config
    for part in parts:
        node = node.get(part) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else None


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
