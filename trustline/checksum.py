import hashlib, json
from typing import Any

from .crypto import consteq

CHECKSUM_LENGTH = 16


def canonical_json(value: Any) -> str:
    """Key-sorted, whitespace-free JSON so equal values always serialize the same."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def checksum_bytes(data: bytes) -> str:
    """Truncated SHA-256 hex digest. Detects corruption and edits; it is not a MAC."""
    return sha256_hex(data)[:CHECKSUM_LENGTH]


def compute_checksum(version: int, payload: str) -> str:
    """Digest over the version and the text-safe payload exactly as they appear in a code."""
    return checksum_bytes(f"{version}.{payload}".encode("ascii"))


def verify_checksum(version: int, payload: str, expected: str) -> bool:
    if len(expected) != CHECKSUM_LENGTH:
        return False
    try:
        actual = compute_checksum(version, payload)
        return consteq(actual.encode("ascii"), expected.encode("ascii"))
    except UnicodeEncodeError:
        return False
