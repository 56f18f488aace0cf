"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path

from docchat.errors import InputError


def compute_sha256(content: str) -> str:
    """Compute the SHA256 hex digest of UTF-8 encoded text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def read_text_document(path: Path) -> str:
    """Read a UTF-8 text document."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise InputError(f"{path} is not a UTF-8 text document") from exc


def atomic_write_text(path: Path, data: str) -> None:
    """Write ``data`` to ``path`` so readers see either the old or the new file.

    The content goes to a temporary file in the same directory, is fsynced and
    then moved over ``path`` with ``os.replace``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
