"""Template fingerprinting for revision names."""

import json
import struct
from typing import Any, Optional

from .models import ObjectSetTemplate

# Omits vowels and look-alike characters so encoded hashes never spell words.
_SAFE_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193


def fnv1a_32(data: bytes, seed: int = _FNV32_OFFSET) -> int:
    """32-bit FNV-1a checksum of ``data``, continuing from ``seed``."""
    value = seed
    for byte in data:
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
    return value


def safe_encode(value: str) -> str:
    """Map every character onto an alphabet without vowels or ambiguous glyphs."""
    return "".join(_SAFE_ALPHANUMS[ord(c) % len(_SAFE_ALPHANUMS)] for c in value)


def _canonical(template: ObjectSetTemplate | dict[str, Any]) -> bytes:
    if isinstance(template, ObjectSetTemplate):
        template = template.to_dict()
    return json.dumps(
        template, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def compute_hash(
    template: ObjectSetTemplate | dict[str, Any], collision_count: Optional[int] = None
) -> str:
    """
    Compute the fingerprint of a template.

    The template is serialized with sorted keys, so templates that are equal
    by value always hash the same. A collision count, when present, is mixed
    in as 8 little-endian bytes to derive a new name after a collision.

    Args:
        template: Deployment template
        collision_count: Collision salt from the deployment status

    Returns:
        Short hash using a safe alphabet
    """
    checksum = fnv1a_32(_canonical(template))
    if collision_count is not None:
        salt = struct.pack("<I", collision_count & 0xFFFFFFFF) + b"\x00" * 4
        checksum = fnv1a_32(salt, seed=checksum)
    return safe_encode(str(checksum))
