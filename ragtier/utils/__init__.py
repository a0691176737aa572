"""Utility functions for ragtier."""

from .file_utils import (
    ensure_dir,
    is_binary_bytes,
    is_binary_file,
    read_json,
    to_posix_rel,
    write_private_json,
)

__all__ = [
    "ensure_dir",
    "is_binary_bytes",
    "is_binary_file",
    "read_json",
    "to_posix_rel",
    "write_private_json",
]
