"""Incremental indexing of project files into the cold tier."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..config import DEFAULT_CONFIG, cold_index_dir, hot_index_dir
from ..core import Embedder, embed_chunks, make_embedder
from ..core.chunking import chunk_file_content
from ..core.models import Chunk, ChunkEmbedding
from ..storage import ColdIndexDriver, create_cold_drivers
from ..utils import to_posix_rel
from .base import Indexer
from .ingest import ingest_paths
from .manifest import Manifest, ManifestEntry, load_manifest, save_manifest

logger = logging.getLogger(__name__)


@dataclass
class IncrementalIndexResult:
    model: str
    files: Dict[str, List[str]] = field(default_factory=lambda: {"unchanged": [], "changed": [], "removed": []})
    chunks: Dict[str, int] = field(default_factory=lambda: {"embedded": 0, "upserted": 0, "deleted": 0})
    timings: Dict[str, float] = field(
        default_factory=lambda: {"total_ms": 0.0, "chunk_ms": 0.0, "embed_ms": 0.0, "upsert_ms": 0.0, "delete_ms": 0.0}
    )
    warnings: List[str] = field(default_factory=list)
    driver_errors: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class _FilePlan:
    rel: str
    size: int
    mtime_ms: float
    chunks: List[Chunk]

    @property
    def new_ids(self) -> List[str]:
        return [c.sha256 for c in self.chunks]


def _elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000.0


def _scan_scopes(root: Path, paths: Optional[List[str]]) -> Optional[List[str]]:
    """Root-relative prefixes covered by ``paths``; None means the whole root."""
    scopes: List[str] = []
    for p in paths or ["."]:
        start = Path(p) if Path(p).is_absolute() else root / p
        rel = to_posix_rel(root, start.resolve())
        if rel == ".":
            return None
        if not rel.startswith("../"):
            scopes.append(rel)
    return scopes


def _in_scope(rel: str, scope: str) -> bool:
    return rel == scope or rel.startswith(scope + "/")


def _fan_out(
    drivers: List[ColdIndexDriver],
    operation: str,
    call: Callable[[ColdIndexDriver], Any],
    best_effort: bool,
    errors: List[Dict[str, str]],
) -> None:
    """Run ``call`` on every driver in order.

    Fail-fast unless ``best_effort``, in which case each failure is logged
    and recorded and the remaining drivers still run.
    """
    for driver in drivers:
        if not best_effort:
            call(driver)
            continue
        try:
            call(driver)
        except Exception as e:
            logger.error(f"Cold driver '{driver.name}' {operation} failed: {e}")
            errors.append({"driver": driver.name, "operation": operation, "error": str(e)})


def incremental_index(
    root_dir: Union[str, Path],
    paths: Optional[List[str]],
    embedder: Embedder,
    cold_drivers: List[ColdIndexDriver],
    manifest_dir: Optional[Union[str, Path]] = None,
    cfg: Optional[Dict] = None,
    chunking: Any = None,
    usage_dir: Optional[Union[str, Path]] = None,
    best_effort: bool = False,
) -> IncrementalIndexResult:
    """Bring the cold drivers in line with the files under ``paths``.

    Files are classified against the manifest by size and mtime. Only
    changed files are re-chunked, and only chunks not already recorded for
    that file under the same model are embedded. Stale ids of changed and
    removed files are deleted from every driver, unless another tracked
    file still references them. Only tracked files under ``paths`` can be
    counted as removed; entries outside the scanned paths are left alone.

    Args:
        root_dir: Project root; manifest keys are relative to it
        paths: Files or directories to scan (None means the whole root)
        embedder: Embedding backend; its ``model`` is stamped on every vector
        cold_drivers: Drivers to upsert into and delete from, in order
        manifest_dir: Where ``manifest.v1.json`` lives (defaults to the cold dir)
        cfg: Config dict for ingestion, chunking and embedding batch settings
        chunking: Overrides ``cfg["chunking"]``
        usage_dir: When set, usage entries of deleted ids are pruned there
        best_effort: Isolate driver failures instead of aborting

    Returns:
        IncrementalIndexResult

    Raises:
        ColdDriverError: A driver call failed and ``best_effort`` is off
        EmbeddingError: Embedding failed after retries
    """
    t_start = time.perf_counter()
    cfg = cfg if cfg is not None else DEFAULT_CONFIG
    root = Path(root_dir).resolve()
    if manifest_dir is None:
        manifest_dir = cfg.get("manifest_dir") or cold_index_dir(cfg, root)
    if chunking is None:
        chunking = cfg.get("chunking")
    emb_cfg = cfg.get("embedding", {})

    manifest = load_manifest(manifest_dir)
    model = embedder.model
    result = IncrementalIndexResult(model=model)

    # classify
    ingested = ingest_paths(root, paths or ["."], cfg)
    result.warnings.extend(ingested.warnings)

    current: Dict[str, Any] = {att.rel_path: att for att in ingested.included}
    unchanged = sorted(
        rel for rel, att in current.items()
        if rel in manifest.files and manifest.files[rel].matches(att.size, att.mtime_ms)
    )
    changed = sorted(set(current) - set(unchanged))
    scopes = _scan_scopes(root, paths)
    removed = sorted(
        rel for rel in set(manifest.files) - set(current)
        if scopes is None or any(_in_scope(rel, s) for s in scopes)
    )
    result.files = {"unchanged": unchanged, "changed": changed, "removed": removed}

    # chunk changed files
    t0 = time.perf_counter()
    plans: List[_FilePlan] = []
    for rel in changed:
        att = current[rel]
        chunks = chunk_file_content(rel, att.content or "", chunking, warnings=result.warnings)
        plans.append(_FilePlan(rel=rel, size=att.size, mtime_ms=att.mtime_ms, chunks=chunks))
    result.timings["chunk_ms"] = _elapsed_ms(t0)

    # deletion set
    to_delete: Set[str] = set()
    for rel in removed:
        to_delete.update(manifest.files[rel].chunk_ids)
    for plan in plans:
        prev = manifest.files.get(plan.rel)
        if prev is not None:
            to_delete.update(set(prev.chunk_ids) - set(plan.new_ids))

    # embed only what no driver has yet
    pending: Dict[str, Chunk] = {}
    for plan in plans:
        prev = manifest.files.get(plan.rel)
        known = set(prev.chunk_ids) if prev is not None and prev.model == model else set()
        for chunk in plan.chunks:
            if chunk.sha256 not in known and chunk.sha256 not in pending:
                pending[chunk.sha256] = chunk

    embeddings: List[ChunkEmbedding] = []
    if pending:
        t0 = time.perf_counter()
        embeddings = embed_chunks(
            embedder,
            list(pending.values()),
            batch_size=int(emb_cfg.get("batch_size", 64)),
            max_retries=int(emb_cfg.get("max_retries", 2)),
            backoff_base_ms=int(emb_cfg.get("backoff_base_ms", 200)),
        )
        result.timings["embed_ms"] = _elapsed_ms(t0)
    result.chunks["embedded"] = len(embeddings)

    # update the manifest in memory so shared ids stay alive
    next_manifest = Manifest(files=dict(manifest.files))
    for plan in plans:
        next_manifest.files[plan.rel] = ManifestEntry(
            mtime_ms=plan.mtime_ms, size=plan.size, model=model, chunk_ids=plan.new_ids
        )
    for rel in removed:
        next_manifest.files.pop(rel, None)
    to_delete -= next_manifest.live_chunk_ids()

    # write to every driver: upserts first, then deletes
    if embeddings and cold_drivers:
        t0 = time.perf_counter()
        _fan_out(cold_drivers, "upsert", lambda d: d.upsert(embeddings), best_effort, result.driver_errors)
        result.timings["upsert_ms"] = _elapsed_ms(t0)
    result.chunks["upserted"] = len(embeddings) if cold_drivers else 0

    delete_ids = sorted(to_delete)
    if delete_ids and cold_drivers:
        t0 = time.perf_counter()
        _fan_out(cold_drivers, "delete", lambda d: d.delete_by_ids(delete_ids), best_effort, result.driver_errors)
        result.timings["delete_ms"] = _elapsed_ms(t0)
    result.chunks["deleted"] = len(delete_ids) if cold_drivers else 0

    # persist; a partial failure leaves the old manifest so the next run retries
    if result.driver_errors:
        result.warnings.append(
            f"{len(result.driver_errors)} cold driver call(s) failed; manifest left unchanged for retry."
        )
    else:
        save_manifest(next_manifest, manifest_dir)

    if usage_dir is not None and delete_ids:
        from ..search.promotion import UsageStore

        usage = UsageStore(usage_dir).load()
        if usage.prune(delete_ids):
            usage.save()

    result.timings["total_ms"] = _elapsed_ms(t_start)
    logger.info(
        f"Incremental index: {len(changed)} changed, {len(unchanged)} unchanged, {len(removed)} removed; "
        f"{result.chunks['upserted']} chunks upserted, {result.chunks['deleted']} deleted "
        f"in {result.timings['total_ms']:.0f}ms"
    )
    return result


class DefaultIndexer(Indexer):
    """Builds the embedder and cold drivers from config and runs an incremental pass."""

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        cold_drivers: Optional[List[ColdIndexDriver]] = None,
    ):
        self.embedder = embedder
        self.cold_drivers = cold_drivers

    def index(self, repo: Path, cfg: Dict, paths: Optional[List[str]] = None) -> IncrementalIndexResult:
        embedder = self.embedder or make_embedder(cfg)
        drivers = self.cold_drivers if self.cold_drivers is not None else create_cold_drivers(cfg)
        try:
            return incremental_index(
                repo,
                paths,
                embedder,
                drivers,
                manifest_dir=cfg.get("manifest_dir") or cold_index_dir(cfg, repo),
                cfg=cfg,
                usage_dir=hot_index_dir(cfg, repo),
                best_effort=bool(cfg.get("cold", {}).get("best_effort", False)),
            )
        finally:
            if self.cold_drivers is None:
                for driver in drivers:
                    driver.close()


def build_index(repo: Path, cfg: Dict, paths: Optional[List[str]] = None) -> IncrementalIndexResult:
    """Build or update the project index (Wrapper)."""
    indexer = DefaultIndexer()
    return indexer.index(repo, cfg, paths=paths)
