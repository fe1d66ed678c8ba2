"""Content hashing for synced documents.

Provides a short, deterministic checksum of any JSON-serializable value.
It is used for two things:

1. Deriving stable run identifiers from immutable run fields
2. Detecting merges that did not change anything (skip redundant writes)

The checksum is FNV-1a 32-bit over UTF-16 code units rendered in base 36,
so identifiers agree with those produced by the browser and mobile clients.
It is NOT a cryptographic digest; collisions are an accepted risk.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel

from utils.clock import now_ms

log = logging.getLogger("alphatyper.hash_manager")

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def fnv1a(text: str) -> str:
    """Hash a string with 32-bit FNV-1a.

    Args:
        text: Input string

    Returns:
        Base-36 rendering of the 32-bit hash

    Example:
        >>> fnv1a("")
        'ztntfp'
    """
    h = FNV_OFFSET_BASIS
    data = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return _to_base36(h)


def _encode_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> str:
    """Serialize compactly, keeping key insertion order."""
    return json.dumps(value, default=_encode_default, separators=(",", ":"), ensure_ascii=False)


def hash_json(value: Any) -> str:
    """Checksum of a JSON-serializable value.

    Equal serialized forms give equal hashes. Key order matters.

    If the value cannot be serialized, the current time in milliseconds is
    returned instead. Two such keys will almost never compare equal, so any
    equality check built on them reports a difference: a merge is treated
    as changed and written again. That costs a redundant write, never data.

    Args:
        value: Any JSON-serializable value or pydantic model

    Returns:
        Short hash string
    """
    try:
        serialized = to_json(value)
    except (TypeError, ValueError) as e:
        log.warning(f"Cannot serialize value for hashing, equality detection degraded: {e}")
        return str(now_ms())
    return fnv1a(serialized)
