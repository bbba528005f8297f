"""Durable file writes for certificate material."""
from __future__ import annotations

import contextlib
import os
from pathlib import Path

from agent_mtls.errors import PersistenceError

PRIVATE_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644


def write_file(path: Path, data: bytes, mode: int = PUBLIC_FILE_MODE) -> None:
    """Atomically replace *path* with *data*.

    The bytes go to a hidden sibling file that is flushed, fsynced and then
    renamed over *path*, so readers never observe a partially written file.

    Raises
    ------
    PersistenceError
        If any step fails. The temporary file is removed.
    """
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc


def read_file(path: Path) -> bytes:
    """Read *path*, wrapping OS errors in :class:`PersistenceError`."""
    try:
        return path.read_bytes()
    except OSError as exc:
        raise PersistenceError(f"Failed to read {path}: {exc}") from exc
