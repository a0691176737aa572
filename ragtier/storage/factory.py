"""Factory for creating cold index drivers."""

from __future__ import annotations

import importlib
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from .base import ColdIndexDriver

logger = logging.getLogger(__name__)

# backend name -> (module, factory function); modules load only when requested
DRIVER_FACTORIES = {
    "qdrant": ("ragtier.storage.qdrant", "make_qdrant_driver"),
    "pgvector": ("ragtier.storage.pgvector", "make_pgvector_driver"),
    "lancedb": ("ragtier.storage.lancedb", "make_lancedb_driver"),
}


def collection_name_for(repo_path: Path) -> str:
    """Derive a valid collection/table name from a repository path."""
    name = re.sub(r"[^a-zA-Z0-9_-]", "_", Path(repo_path).name)
    if name and not name[0].isalpha() and name[0] != "_":
        name = "_" + name
    return name or "ragtier_chunks"


def create_cold_driver(cfg: Dict, backend: str) -> ColdIndexDriver:
    """Build one cold driver from the ``cold`` config section.

    Raises:
        ValueError: If ``backend`` is not a known driver name
    """
    key = backend.strip().lower()
    if key not in DRIVER_FACTORIES:
        raise ValueError(f"Unknown cold driver {backend!r}; expected one of {sorted(DRIVER_FACTORIES)}")

    cold_cfg = cfg.get("cold", {})
    qdrant_cfg = cold_cfg.get("qdrant", {})
    if key == "qdrant" and not qdrant_cfg.get("collection") and cfg.get("repo"):
        # no explicit collection: one per repository
        collection = collection_name_for(Path(cfg["repo"]))
        cfg = {**cfg, "cold": {**cold_cfg, "qdrant": {**qdrant_cfg, "collection": collection}}}

    module_name, factory_name = DRIVER_FACTORIES[key]
    module = importlib.import_module(module_name)
    driver = getattr(module, factory_name)(cfg)
    logger.debug(f"Created cold driver '{driver.name}'")
    return driver


def create_cold_drivers(cfg: Dict, backends: Optional[List[str]] = None) -> List[ColdIndexDriver]:
    """Build every driver listed in ``cold.drivers`` (or ``backends``), in order."""
    names = backends if backends is not None else cfg.get("cold", {}).get("drivers", [])
    return [create_cold_driver(cfg, name) for name in names]
