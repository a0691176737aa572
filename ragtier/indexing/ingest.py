"""File discovery and ignore filtering for indexing."""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS, expand_patterns
from ..utils import is_binary_bytes, to_posix_rel

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    rel_path: str
    abs_path: Path
    size: int = 0
    mtime_ms: float = 0.0
    included: bool = False
    reason: Optional[str] = None  # oversize | binary | symlink | max_files | io-error
    content: Optional[str] = None


@dataclass
class IngestionSummary:
    included: List[Attachment] = field(default_factory=list)
    skipped: List[Attachment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _match_any(path: str, globs: List[str]) -> bool:
    return any(fnmatch.fnmatch(path, g) for g in globs)


def gitignore_globs(root: Path) -> List[str]:
    """Translate the root .gitignore into fnmatch globs (negations are ignored)."""
    gitignore = root / ".gitignore"
    if not gitignore.is_file():
        return []
    globs: List[str] = []
    for raw in gitignore.read_text(encoding="utf-8", errors="replace").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith("!"):
            continue
        anchored = line.startswith("/")
        line = line.lstrip("/")
        if line.endswith("/"):
            patterns = [line + "**"]
        elif line.endswith("/**"):
            patterns = [line]
        else:
            # a bare name may be a file or a directory
            patterns = [line, line + "/**"]
        for pattern in patterns:
            if anchored or pattern.startswith("**/"):
                globs.append(pattern)
            else:
                globs.extend([pattern, "**/" + pattern])
    return globs


def _walk(start: Path, root: Path, exclude_globs: List[str]) -> Iterable[Path]:
    if start.is_file():
        yield start
        return
    for dirpath, dirnames, filenames in os.walk(start):
        # prune excluded directories before descending
        dirnames[:] = sorted(
            d for d in dirnames
            if not _match_any(to_posix_rel(root, Path(dirpath) / d) + "/", exclude_globs)
        )
        for name in sorted(filenames):
            yield Path(dirpath) / name


def ingest_paths(root_dir: Path, paths: List[str], cfg: Optional[Dict] = None) -> IngestionSummary:
    """Discover includable text files under ``paths`` (absolute or root-relative).

    Returns the included files with their content, plus skipped files with a
    reason. Paths outside ``root_dir`` are ignored.
    """
    cfg = cfg or {}
    root = Path(root_dir).resolve()
    include_globs = cfg.get("include_globs") or expand_patterns(DEFAULT_INCLUDE_PATTERNS)
    exclude_globs = list(cfg.get("exclude_globs") or expand_patterns(DEFAULT_EXCLUDE_PATTERNS))
    if cfg.get("use_gitignore", True):
        exclude_globs.extend(gitignore_globs(root))
    max_bytes = int(float(cfg.get("max_file_size_kb", 1024)) * 1024)
    max_files = cfg.get("max_files")

    summary = IngestionSummary()
    seen: set[str] = set()
    candidates: List[Path] = []

    for p in paths or ["."]:
        start = Path(p)
        if not start.is_absolute():
            start = root / start
        if not start.exists():
            continue
        for fp in _walk(start, root, exclude_globs):
            rel = to_posix_rel(root, fp)
            if rel.startswith("../") or rel in seen:
                continue
            if _match_any(rel, exclude_globs) or not _match_any(rel, include_globs):
                continue
            seen.add(rel)
            candidates.append(fp)

    for idx, fp in enumerate(candidates):
        rel = to_posix_rel(root, fp)
        att = Attachment(rel_path=rel, abs_path=fp)
        if max_files and idx >= int(max_files):
            att.reason = "max_files"
            summary.skipped.append(att)
            continue
        try:
            if fp.is_symlink():
                att.reason = "symlink"
                summary.skipped.append(att)
                continue
            st = fp.stat()
            att.size = st.st_size
            att.mtime_ms = st.st_mtime_ns / 1_000_000
            if max_bytes > 0 and st.st_size > max_bytes:
                att.reason = "oversize"
                summary.skipped.append(att)
                continue
            data = fp.read_bytes()
        except OSError as e:
            logger.debug(f"Skipping {rel}: {e}")
            att.reason = "io-error"
            summary.skipped.append(att)
            continue
        if is_binary_bytes(data):
            att.reason = "binary"
            summary.skipped.append(att)
            continue
        att.content = data.decode("utf-8", errors="replace")
        att.included = True
        summary.included.append(att)

    reasons = {a.reason for a in summary.skipped}
    if "oversize" in reasons:
        summary.warnings.append(f"Some files were skipped for exceeding max_file_size_kb={cfg.get('max_file_size_kb', 1024)}.")
    if "binary" in reasons:
        summary.warnings.append("Binary files were excluded.")
    if "max_files" in reasons:
        summary.warnings.append(f"Some files were skipped due to max_files={max_files}.")

    logger.debug(f"Ingested {len(summary.included)} files, skipped {len(summary.skipped)} under {root}")
    return summary
