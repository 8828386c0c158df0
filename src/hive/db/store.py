"""JSON document storage with atomic replace-on-write."""

import json
import os
import stat
import tempfile
from pathlib import Path


DEFAULT_MODE = 0o644


class DocumentError(Exception):
    """Raised when a stored document cannot be parsed."""


def read_document(path: str | Path) -> dict | None:
    """Read a JSON object from disk. Returns None when the file does not exist."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DocumentError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DocumentError(f"{path} must contain a JSON object")
    return data


def write_document(path: str | Path, data: dict) -> None:
    """Write a JSON object so readers see either the old or the new document.

    The payload goes to a temp file in the same directory, is fsynced, and is
    then renamed over the destination. The destination keeps its mode; a new
    document gets 0644 rather than the 0600 of the temp file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        mode = DEFAULT_MODE

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
            fh.write("\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
