"""
Entity identifiers.

Every id is ``<prefix>-<ULID>``: a 48-bit millisecond timestamp followed by 80 random bits,
written as 26 Crockford Base32 characters, so ids sort by creation time. Snapshots are
addressed as ``<item_id>@<version>``.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = 2**48 - 1

ITEM_ID_PREFIX: Final[str] = "itm"
AUDIT_ID_PREFIX: Final[str] = "aud"
EVENT_ID_PREFIX: Final[str] = "evt"
MUTATION_ID_PREFIX: Final[str] = "mut"

_DIGITS: Final[dict[str, int]] = {char: value for value, char in enumerate(CROCKFORD_BASE32_ALPHABET)}

_RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    """Return a new ULID; ``timestamp_ms`` and ``randbytes`` exist for deterministic tests."""
    millis = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if isinstance(millis, bool) or not isinstance(millis, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(millis).__name__}")
    if not 0 <= millis <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {millis}"
        )
    entropy = bytes((randbytes or secrets.token_bytes)(ULID_RANDOM_BYTES))
    if len(entropy) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")

    value = (millis << 80) | int.from_bytes(entropy, "big")
    encoded = []
    for _ in range(ULID_LENGTH):
        value, digit = divmod(value, 32)
        encoded.append(CROCKFORD_BASE32_ALPHABET[digit])
    return "".join(reversed(encoded))


def validate_ulid(s: str) -> None:
    if not isinstance(s, str):
        raise ValueError(f"ulid must be a string, got {type(s).__name__}")
    if len(s) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(s)}")
    for index, char in enumerate(s):
        if char.upper() not in _DIGITS:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
    # 26 base32 digits hold 130 bits; a ULID is 128.
    if _DIGITS[s[0].upper()] > 7:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")


def generate_prefixed_id(
    prefix: str, *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    _check_prefix(prefix)
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    """Raise ``ValueError`` unless ``id_str`` is ``<expected_prefix>-<valid ULID>``."""
    _check_prefix(expected_prefix)
    if not isinstance(id_str, str):
        raise ValueError(f"prefixed id must be a string, got {type(id_str).__name__}")
    prefix, sep, ulid = id_str.partition("-")
    if prefix != expected_prefix or not sep:
        raise ValueError(f"expected prefix '{expected_prefix}-'")
    try:
        validate_ulid(ulid)
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_item_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    return generate_prefixed_id(ITEM_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_item_id(id_str: str) -> None:
    validate_prefixed_id(id_str, ITEM_ID_PREFIX)


def generate_audit_id() -> str:
    return generate_prefixed_id(AUDIT_ID_PREFIX)


def generate_event_id() -> str:
    return generate_prefixed_id(EVENT_ID_PREFIX)


def generate_mutation_id() -> str:
    return generate_prefixed_id(MUTATION_ID_PREFIX)


def snapshot_ref(item_id: str, version: int) -> str:
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ValueError(f"snapshot version must be an integer >= 1, got {version!r}")
    return f"{item_id}@{version}"


def parse_snapshot_ref(ref: str) -> tuple[str, int]:
    """Inverse of ``snapshot_ref``."""
    if not isinstance(ref, str):
        raise ValueError(f"snapshot ref must be a string, got {type(ref).__name__}")
    item_id, sep, version = ref.rpartition("@")
    if not sep or not item_id:
        raise ValueError(f"snapshot ref must look like '<item_id>@<version>', got {ref!r}")
    if not version.isdigit() or int(version) < 1:
        raise ValueError(f"snapshot ref version must be a positive integer, got {version!r}")
    return item_id, int(version)


def _check_prefix(prefix: str) -> None:
    if not isinstance(prefix, str) or not prefix:
        raise ValueError("prefix must be a non-empty string")
    if "-" in prefix:
        raise ValueError("prefix must not contain '-'")


__all__ = [
    "AUDIT_ID_PREFIX",
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "ITEM_ID_PREFIX",
    "MUTATION_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_audit_id",
    "generate_event_id",
    "generate_item_id",
    "generate_mutation_id",
    "generate_prefixed_id",
    "generate_ulid",
    "parse_snapshot_ref",
    "snapshot_ref",
    "validate_item_id",
    "validate_prefixed_id",
    "validate_ulid",
]
