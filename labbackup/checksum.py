"""Content digests for snapshot files."""
from __future__ import annotations

import hashlib
from pathlib import Path

from .errors import ChecksumError

_CHUNK_SIZE = 1024 * 1024


def file_digest(path: Path) -> str:
    """Return the SHA-256 hex digest of *path*, streamed in 1 MiB chunks."""

    digest = hashlib.sha256()
    try:
        with Path(path).open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise ChecksumError(f"cannot hash {path}: {exc}") from exc
    return digest.hexdigest()


__all__ = ["file_digest"]
