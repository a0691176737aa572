"""Line-based chunking of project files into content-addressed chunks."""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import math
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import Chunk, ChunkingConfig

logger = logging.getLogger(__name__)

# Roughly 4 bytes of UTF-8 per token for English text and code
BYTES_PER_TOKEN = 4
MIN_CHUNK_BYTES = 16
FLOOR_BREAK_EVERY = 50

CODE_EXTENSIONS = {
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".rs", ".go", ".py", ".java", ".kt", ".rb",
    ".sh", ".bash", ".zsh", ".fish", ".sql",
    ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf",
    ".cs", ".cpp", ".c", ".h", ".hpp", ".swift", ".php",
}
MARKDOWN_EXTENSIONS = {".md", ".mdx"}
JSON_EXTENSIONS = {".json", ".jsonc"}

_LINE_SPLIT_RE = re.compile(r"\r?\n")
_MARKDOWN_HINT_RE = re.compile(r"^#\s", re.MULTILINE)
_HEADING_RE = re.compile(r"^#{1,6}\s")
_FENCE_RE = re.compile(r"^(?:`{3,}|~{3,})")
_CODE_BREAK_RE = re.compile(r"[;}]\s*$")


def count_tokens(text: str) -> int:
    """Approximate token count of ``text`` (ceil of UTF-8 bytes / 4)."""
    return math.ceil(len(text.encode("utf-8")) / BYTES_PER_TOKEN)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def detect_file_type(file_path: str, content: str) -> str:
    """Classify a file as markdown, code, json or text.

    The extension wins; unknown extensions fall back to a markdown heading
    heuristic, then plain text.
    """
    _, ext = os.path.splitext(file_path)
    ext = ext.lower()
    if ext in MARKDOWN_EXTENSIONS:
        return "markdown"
    if ext in JSON_EXTENSIONS:
        return "json"
    if ext in CODE_EXTENSIONS:
        return "code"
    if _MARKDOWN_HINT_RE.search(content):
        return "markdown"
    return "text"


def split_lines(content: str) -> List[str]:
    return _LINE_SPLIT_RE.split(content)


def _is_fence(line: str) -> bool:
    return bool(_FENCE_RE.match(line.strip()))


def _line_cost(line: str) -> int:
    # +1 for the newline that joins lines back together
    return len(line.encode("utf-8")) + 1


def _token_budget_bytes(tokens: int, floor: int = 0) -> int:
    return max(floor, int(tokens) * BYTES_PER_TOKEN)


def chunk_bounds(
    lines: List[str],
    budget_bytes: int,
    overlap_bytes: int,
    file_type: str,
) -> List[Tuple[int, int]]:
    """Compute (start, end) 0-based inclusive line bounds for every chunk.

    Chunks never end inside a markdown fence and every line is covered by
    at least one chunk.
    """
    n = len(lines)
    bounds: List[Tuple[int, int]] = []
    if n == 0:
        return bounds

    markdown = file_type == "markdown"
    fence_line = [False] * n
    inside_fence = [False] * n
    if markdown:
        inside = False
        for i, line in enumerate(lines):
            fence = _is_fence(line)
            fence_line[i] = fence
            inside_fence[i] = inside
            if fence:
                inside = not inside

    s = 0
    while s < n:
        in_fence = markdown and inside_fence[s]
        last_good_break = -1
        used = 0
        e = s

        while e < n:
            line = lines[e]
            cost = _line_cost(line)
            if used + cost > budget_bytes and e > s:
                break
            used += cost
            if markdown and fence_line[e]:
                in_fence = not in_fence
            elif not in_fence:
                stripped = line.strip()
                if stripped == "":
                    last_good_break = e
                elif markdown and _HEADING_RE.match(stripped):
                    last_good_break = e - 1
                elif file_type == "code" and _CODE_BREAK_RE.search(stripped):
                    last_good_break = e
                elif e > s and (e - s) % FLOOR_BREAK_EVERY == 0:
                    last_good_break = e
            e += 1

        budget_reached = e < n
        extended = False
        if markdown and in_fence:
            # Never cut a code block: run on until it closes or the file ends
            extended = True
            while e < n:
                closes = fence_line[e]
                e += 1
                if closes:
                    break

        end = e - 1
        if budget_reached and not extended and s <= last_good_break < e:
            end = last_good_break
        end = max(end, s)
        bounds.append((s, end))

        if end >= n - 1:
            break

        next_start = end + 1
        if overlap_bytes > 0:
            accum = 0
            back = end
            while back > s and accum < overlap_bytes:
                accum += _line_cost(lines[back])
                back -= 1
            next_start = max(back + 1, s + 1)

        if markdown:
            while next_start <= end and (fence_line[next_start] or inside_fence[next_start]):
                next_start += 1

        s = next_start

    return bounds


def chunk_file_content(
    file_path: str,
    content: str,
    config: Any = None,
    warnings: Optional[List[str]] = None,
) -> List[Chunk]:
    """Split one file's text into overlapping, content-addressed chunks.

    Args:
        file_path: Project-relative path (separators are normalized to ``/``)
        content: Raw file text
        config: ``ChunkingConfig``, a partial dict, or None for defaults
        warnings: Optional list that receives a truncation warning

    Returns:
        Chunks in file order, capped at ``max_chunks_per_file``
    """
    cfg = ChunkingConfig.from_value(config)
    rel = file_path.replace(os.sep, "/").replace("\\", "/")
    file_type = detect_file_type(rel, content)
    lines = split_lines(content)

    bounds = chunk_bounds(
        lines,
        _token_budget_bytes(cfg.chunk_size_tokens, MIN_CHUNK_BYTES),
        _token_budget_bytes(cfg.overlap_tokens),
        file_type,
    )

    max_chunks = max(1, cfg.max_chunks_per_file)
    if len(bounds) > max_chunks:
        msg = (
            f"File {rel} produced {len(bounds)} chunks; "
            f"truncated to max_chunks_per_file={max_chunks}."
        )
        logger.warning(msg)
        if warnings is not None:
            warnings.append(msg)
        bounds = bounds[:max_chunks]

    chunks: List[Chunk] = []
    for i, (start, end) in enumerate(bounds):
        text = "\n".join(lines[start:end + 1])
        chunks.append(
            Chunk(
                file_path=rel,
                start_line=start + 1,
                end_line=end + 1,
                chunk_index=i,
                chunk_count=len(bounds),
                sha256=sha256_text(text),
                content=text,
                tokens_estimated=count_tokens(text),
                file_type=file_type,
            )
        )
    return chunks


# -----------------------------------------------------------------------------
# Interfaces
# -----------------------------------------------------------------------------

class Chunker:
    """Abstract base class for text chunking."""

    def chunk(self, file_path: str, content: str) -> List[Chunk]:
        """Chunk one file's content.

        Args:
            file_path: Project-relative path, used for file type detection
            content: File text

        Returns:
            List of chunks in file order
        """
        raise NotImplementedError


class DefaultChunker(Chunker):
    """Token-budget line chunker with markdown/code aware break points."""

    def __init__(self, chunk_size_tokens: int = 800, overlap_tokens: int = 200, max_chunks_per_file: int = 200):
        self.config = ChunkingConfig(
            chunk_size_tokens=chunk_size_tokens,
            overlap_tokens=overlap_tokens,
            max_chunks_per_file=max_chunks_per_file,
        )
        self.warnings: List[str] = []

    def chunk(self, file_path: str, content: str) -> List[Chunk]:
        chunks = chunk_file_content(file_path, content, self.config, warnings=self.warnings)
        logger.debug(f"File {file_path}: {len(chunks)} chunks")
        return chunks


@dataclasses.dataclass
class ChunksSummary:
    chunks: List[Chunk]
    skipped: List[Any]
    totals: Dict[str, int]
    warnings: List[str]


def ingest_and_chunk_paths(
    root_dir: Path,
    paths: List[str],
    cfg: Optional[Dict] = None,
    chunking: Any = None,
) -> ChunksSummary:
    """Run the ingestion filter over ``paths`` and chunk every included file."""
    from ..indexing.ingest import ingest_paths

    ingested = ingest_paths(root_dir, paths, cfg)
    if chunking is None and cfg is not None:
        chunking = cfg.get("chunking")

    chunks: List[Chunk] = []
    warnings: List[str] = list(ingested.warnings)
    for att in ingested.included:
        chunks.extend(chunk_file_content(att.rel_path, att.content or "", chunking, warnings=warnings))

    totals = {
        "files_included": len(ingested.included),
        "chunks": len(chunks),
        "tokens_estimated": sum(c.tokens_estimated for c in chunks),
    }
    logger.info(f"Chunked {totals['files_included']} files into {totals['chunks']} chunks")
    return ChunksSummary(chunks=chunks, skipped=ingested.skipped, totals=totals, warnings=warnings)
