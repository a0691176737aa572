"""Indexer Interface."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional


class Indexer:
    """Abstract base class for keeping the cold tier in sync with a project."""

    def index(self, repo: Path, cfg: Dict, paths: Optional[List[str]] = None):
        raise NotImplementedError
