"""File utility functions."""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any


def ensure_directory(path: Path) -> Path:
    """Create directory if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def read_json_file(path: Path, default: Any = None) -> Any:
    """Load JSON from ``path``, or return ``default`` when the file is missing."""
    if not path.exists():
        return default
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_file(path: Path, data: Any) -> None:
    """Write JSON to ``path`` through a temp file so readers never see a partial file."""
    ensure_directory(path.parent)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def title_from_filename(filename: str) -> str:
    """Strip the extension from an uploaded file name."""
    stem = Path(filename).stem
    return stem or "Untitled"


_SAFE_ID = re.compile(r"[A-Za-z0-9_-]+")


def is_safe_id(value: str) -> bool:
    """True when ``value`` can be used as a file name stem without escaping the data dir."""
    return bool(value) and _SAFE_ID.fullmatch(value) is not None
