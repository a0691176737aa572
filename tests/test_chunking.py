"""
Tests for line-based chunking.
"""

import hashlib

import pytest

from ragtier.core.chunking import (
    DefaultChunker,
    chunk_file_content,
    count_tokens,
    detect_file_type,
    ingest_and_chunk_paths,
)
from ragtier.core.models import ChunkingConfig


def _markdown_with_fence(code_lines: int = 30) -> str:
    parts = ["# Title", ""]
    parts += [f"Intro sentence number {i} with some words." for i in range(10)]
    parts += ["", "```python"]
    parts += [f"value_{i} = compute({i})  # step {i}" for i in range(code_lines)]
    parts += ["```", "", "## Afterwards", ""]
    parts += [f"Closing sentence number {i}." for i in range(10)]
    return "\n".join(parts) + "\n"


class TestDetectFileType:

    @pytest.mark.parametrize(
        "path,content,expected",
        [
            ("README.md", "plain", "markdown"),
            ("docs/page.mdx", "plain", "markdown"),
            ("package.json", "{}", "json"),
            ("src/main.py", "# comment\n", "code"),
            ("lib/app.ts", "", "code"),
            ("NOTES", "# Heading\nbody", "markdown"),
            ("notes.txt", "just text", "text"),
        ],
    )
    def test_classification(self, path, content, expected):
        assert detect_file_type(path, content) == expected


class TestChunkFileContent:

    def test_small_file_is_one_chunk(self):
        chunks = chunk_file_content("a.txt", "A1\n")
        assert len(chunks) == 1
        c = chunks[0]
        assert c.content == "A1\n"
        assert (c.start_line, c.end_line) == (1, 2)
        assert c.chunk_index == 0 and c.chunk_count == 1
        assert c.file_type == "text"

    def test_sha256_is_hash_of_content(self):
        for c in chunk_file_content("src/x.py", "x = 1\ny = 2\n" * 200, {"chunk_size_tokens": 50}):
            assert c.sha256 == hashlib.sha256(c.content.encode("utf-8")).hexdigest()
            assert c.tokens_estimated == count_tokens(c.content)

    def test_deterministic(self):
        content = _markdown_with_fence() * 3
        cfg = ChunkingConfig(chunk_size_tokens=40, overlap_tokens=10)
        first = chunk_file_content("doc.md", content, cfg)
        second = chunk_file_content("doc.md", content, cfg)
        assert [(c.start_line, c.end_line, c.sha256) for c in first] == [
            (c.start_line, c.end_line, c.sha256) for c in second
        ]

    @pytest.mark.parametrize("overlap", [0, 5, 20])
    def test_coverage_without_gaps(self, overlap):
        lines = [f"line {i} " + "x" * (i % 17) for i in range(300)]
        content = "\n".join(lines)
        chunks = chunk_file_content(
            "notes.txt", content, {"chunk_size_tokens": 30, "overlap_tokens": overlap, "max_chunks_per_file": 1000}
        )
        assert chunks[0].start_line == 1
        assert chunks[-1].end_line == len(lines)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_line <= prev.end_line + 1
            assert nxt.start_line > prev.start_line
        if overlap == 0:
            for prev, nxt in zip(chunks, chunks[1:]):
                assert nxt.start_line == prev.end_line + 1

    def test_oversized_line_still_progresses(self):
        content = "short\n" + "y" * 2000 + "\nafter"
        chunks = chunk_file_content("t.txt", content, {"chunk_size_tokens": 4, "overlap_tokens": 0})
        assert any("y" * 2000 in c.content for c in chunks)
        assert chunks[-1].end_line == 3

    def test_fence_is_never_split(self):
        content = _markdown_with_fence(code_lines=40)
        lines = content.split("\n")
        open_ln = lines.index("```python") + 1
        close_ln = len(lines) - lines[::-1].index("```")

        chunks = chunk_file_content("guide.md", content, {"chunk_size_tokens": 30, "overlap_tokens": 8})
        assert len(chunks) > 1
        for c in chunks:
            assert not (open_ln <= c.end_line < close_ln), (c.start_line, c.end_line)
            assert not (open_ln < c.start_line <= close_ln), (c.start_line, c.end_line)
        assert any(c.start_line <= open_ln and c.end_line >= close_ln for c in chunks)

    def test_markdown_prefers_heading_breaks(self):
        section = "\n".join(f"Sentence {i} of the section." for i in range(6))
        content = f"# One\n{section}\n# Two\n{section}\n# Three\n{section}\n"
        chunks = chunk_file_content("doc.md", content, {"chunk_size_tokens": 60, "overlap_tokens": 0})
        # every chunk after the first starts on a heading
        for c in chunks[1:]:
            assert c.content.startswith("# ")

    def test_cap_enforced_with_warning(self):
        content = "\n".join("z" * 40 for _ in range(100))
        warnings = []
        chunks = chunk_file_content(
            "big.txt",
            content,
            {"chunk_size_tokens": 10, "overlap_tokens": 0, "max_chunks_per_file": 5},
            warnings=warnings,
        )
        assert len(chunks) == 5
        assert all(c.chunk_count == 5 for c in chunks)
        assert len(warnings) == 1
        assert "truncated" in warnings[0]

    def test_windows_line_endings(self):
        chunks = chunk_file_content("w.txt", "a\r\nb\r\nc")
        assert chunks[0].content == "a\nb\nc"
        assert chunks[0].end_line == 3

    def test_path_separators_normalized(self):
        chunks = chunk_file_content("src\\pkg\\mod.py", "x = 1\n")
        assert chunks[0].file_path == "src/pkg/mod.py"


class TestDefaultChunker:

    def test_collects_warnings(self):
        chunker = DefaultChunker(chunk_size_tokens=10, overlap_tokens=0, max_chunks_per_file=2)
        chunks = chunker.chunk("big.txt", "\n".join("q" * 40 for _ in range(10)))
        assert len(chunks) == 2
        assert len(chunker.warnings) == 1


class TestIngestAndChunkPaths:

    def test_sample_project(self, sample_project):
        summary = ingest_and_chunk_paths(sample_project, ["."])
        files = {c.file_path for c in summary.chunks}
        assert files == {"src/main.py", "docs/guide.md"}
        assert summary.totals["files_included"] == 2
        assert summary.totals["chunks"] == len(summary.chunks)
        assert summary.totals["tokens_estimated"] == sum(c.tokens_estimated for c in summary.chunks)
        assert [s.rel_path for s in summary.skipped] == ["blob.txt"]
        assert summary.skipped[0].reason == "binary"
