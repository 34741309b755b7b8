"""Hashing helpers for archive and expansion-file integrity.

Every digest travels with the algorithm identifier that produced it
(``ContentHash``) so consumers know how to re-verify.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any

from apkintrospect.models.artifacts import ContentHash

DEFAULT_HASH_ALGORITHM = "sha256"
_CHUNK_SIZE = 64 * 1024


def _new_hash(algorithm: str) -> Any:
    try:
        return hashlib.new(algorithm.lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported hash algorithm: {algorithm!r}") from exc


def hash_bytes(data: bytes, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Return the lowercase hex digest of raw bytes."""
    h = _new_hash(algorithm)
    h.update(data)
    return h.hexdigest()


def md5_hex(data: bytes) -> str:
    """Return the MD5 hex digest of raw bytes."""
    return hash_bytes(data, "md5")


def hash_file(path: Path, algorithm: str = DEFAULT_HASH_ALGORITHM) -> ContentHash:
    """Hash a file in fixed-size chunks.

    Raises ``OSError`` if the file cannot be opened or read.
    """
    h = _new_hash(algorithm)
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return ContentHash(algorithm=algorithm.lower(), digest=h.hexdigest())
