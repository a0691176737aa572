"""Configuration management for ragtier."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Dict, List, Optional

DEFAULT_HOME_DIRNAME = ".ragtier"

DEFAULT_INCLUDE_PATTERNS: List[str] = [
    "*.py", "*.js", "*.ts", "*.tsx", "*.jsx", "*.mjs", "*.cjs",
    "*.go", "*.java", "*.kt", "*.cs",
    "*.rb", "*.php", "*.rs",
    "*.c", "*.h", "*.cpp", "*.hpp",
    "*.swift", "*.sh", "*.sql",
    "*.md", "*.mdx", "*.txt", "*.rst",
    "*.yaml", "*.yml", "*.json", "*.toml", "*.ini", "*.cfg",
]

DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    ".git/**",
    "node_modules/**",
    "dist/**",
    "build/**",
    ".venv/**",
    "venv/**",
    "__pycache__/**",
    ".ragtier/**",
    "target/**",
    ".next/**",
    ".idea/**",
    ".vscode/**",
    ".env",
    ".env.*",
]

DEFAULT_CONFIG: Dict = {
    "home_dir": DEFAULT_HOME_DIRNAME,
    "max_file_size_kb": 1024,
    "use_gitignore": True,
    "chunking": {
        "chunk_size_tokens": 800,
        "overlap_tokens": 200,
        "max_chunks_per_file": 200,
    },
    "embedding": {
        "backend": "sentence_transformers",
        "sentence_transformers_model": "sentence-transformers/all-MiniLM-L6-v2",
        "http": {
            "api_base": "https://api.openai.com/v1",
            "model": "text-embedding-3-large",
            "api_key_env": "OPENAI_API_KEY",
            "timeout": 60,
        },
        "batch_size": 64,
        "max_retries": 2,
        "backoff_base_ms": 200,
    },
    "hot_index": {
        "capacity": 50_000,
        "autosave": True,
        "filename": "index.json",
    },
    "retrieval": {
        "top_k": 8,
        "top_k_hot": 8,
        "min_results": 4,
        "score_threshold": None,
        "promote_from_cold": False,
        "promote_threshold": 3,
        "hot_capacity": 1000,
    },
    "cold": {
        "drivers": ["qdrant"],
        "best_effort": False,
        "qdrant": {
            "host": "localhost",
            "port": 6333,
            "url": None,
            "api_key": None,
            "collection": None,  # None: one collection per repository
            "distance": "Cosine",
        },
        "pgvector": {
            "url": None,
            "schema": "public",
            "table": "ragtier_chunks",
            "distance": "cosine",
            "create_ann_index": True,
            "ivf_lists": 100,
        },
        "lancedb": {
            "table": "rag_chunks",
            "distance": "cosine",
        },
    },
}


def expand_pattern(pattern: str) -> List[str]:
    """Expand pattern to include both root and nested versions.

    Examples:
        '*.py' -> ['*.py', '**/*.py']
        'venv/**' -> ['venv/**', '**/venv/**']
    """
    pattern = pattern.strip()
    if not pattern or pattern.startswith("#"):
        return []

    if pattern.startswith("**/"):
        return [pattern]

    if pattern.startswith("*."):
        return [pattern, "**/" + pattern]

    if "/**" in pattern:
        return [pattern, "**/" + pattern]

    return [pattern]


def expand_patterns(patterns: List[str]) -> List[str]:
    """Expand and deduplicate patterns while preserving order."""
    out: List[str] = []
    seen: set[str] = set()
    for p in patterns:
        for ep in expand_pattern(p):
            if ep not in seen:
                seen.add(ep)
                out.append(ep)
    return out


def home_dir(cfg: Dict, repo: Optional[Path] = None) -> Path:
    """Directory holding the hot snapshot, usage record and manifest."""
    base = Path(cfg.get("home_dir", DEFAULT_HOME_DIRNAME))
    if not base.is_absolute() and repo is not None:
        base = Path(repo) / base
    return base


def hot_index_dir(cfg: Dict, repo: Optional[Path] = None) -> Path:
    return home_dir(cfg, repo) / "hot"


def cold_index_dir(cfg: Dict, repo: Optional[Path] = None) -> Path:
    return home_dir(cfg, repo) / "cold"


def load_config(repo: Path) -> Dict:
    """Load configuration.

    Returns a private copy of the defaults with environment overrides and
    expanded glob patterns applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if os.getenv("RAGTIER_HOME"):
        config["home_dir"] = os.environ["RAGTIER_HOME"]

    qdrant = config["cold"]["qdrant"]
    qdrant["host"] = os.getenv("QDRANT_HOST", qdrant["host"])
    qdrant["port"] = int(os.getenv("QDRANT_PORT", str(qdrant["port"])))
    qdrant["url"] = os.getenv("QDRANT_URL", qdrant["url"])
    qdrant["api_key"] = os.getenv("QDRANT_API_KEY", qdrant["api_key"])

    pg = config["cold"]["pgvector"]
    pg["url"] = os.getenv("DATABASE_URL") or os.getenv("PGURL") or pg["url"]

    drivers = os.getenv("RAGTIER_COLD_DRIVERS")
    if drivers is not None:
        config["cold"]["drivers"] = [d.strip() for d in drivers.split(",") if d.strip()]

    model = os.getenv("RAGTIER_EMBEDDING_MODEL")
    if model:
        config["embedding"]["sentence_transformers_model"] = model
        config["embedding"]["http"]["model"] = model

    config["include_globs"] = expand_patterns(DEFAULT_INCLUDE_PATTERNS)
    config["exclude_globs"] = expand_patterns(DEFAULT_EXCLUDE_PATTERNS)
    config["repo"] = str(Path(repo).resolve())

    return config
