"""File utility functions."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def ensure_dir(p: Path) -> None:
    """Create directory if it doesn't exist."""
    p.mkdir(parents=True, exist_ok=True)


def is_binary_bytes(sample: bytes) -> bool:
    """Null bytes, or more than 30% non-printable bytes, mean binary."""
    if b"\x00" in sample:
        return True
    if not sample:
        return False
    window = sample[:8192]
    non_printable = sum(1 for c in window if not (c in (0x09, 0x0A, 0x0D) or 0x20 <= c <= 0x7E or c >= 0x80))
    return non_printable / len(window) > 0.3


def is_binary_file(path: Path) -> bool:
    """Check if file is binary by sampling its first bytes."""
    try:
        with path.open("rb") as f:
            sample = f.read(8192)
        return is_binary_bytes(sample)
    except OSError:
        return True


def to_posix_rel(root: Path, path: Path) -> str:
    return Path(os.path.relpath(path, root)).as_posix()


def read_json(path: Path) -> Optional[Any]:
    """Load JSON from ``path``; missing or unreadable files give None."""
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable JSON file {path}: {e}")
        return None


def write_private_json(path: Path, data: Any, indent: Optional[int] = 2) -> None:
    """Atomically write JSON readable by the owner only."""
    ensure_dir(path.parent)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent)
    os.replace(tmp, path)
    if os.name != "nt":
        try:
            os.chmod(path, 0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {path}")
