"""Reconciliation of a tag's catalog against the files currently on disk.

``plan_refresh`` is the pure diff; ``Reconciler`` feeds it from the catalog
and the workspace and hands back a ``mark_complete`` callback bound to the
tag.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from ..storage.catalog import ContentCatalog
from .types import (
    FileStats,
    IndexResultType,
    IndexTag,
    MarkCompleteCallback,
    PathAndCacheKey,
    RefreshIndexResults,
)

logger = logging.getLogger(__name__)


def compute_cache_key(content: Union[bytes, str]) -> str:
    """Content fingerprint: sha256 of the raw bytes (text is UTF-8 encoded)."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def decode_text(data: bytes) -> str:
    """Text for chunking; undecodable bytes become U+FFFD."""
    return data.decode("utf-8", errors="replace")


def plan_refresh(
    saved: Dict[str, str],
    current: Dict[str, str],
    shared_keys: Set[str],
) -> RefreshIndexResults:
    """Diff saved ``path -> cache_key`` state against the current state.

    Args:
        saved: What the tag's catalog holds
        current: What the tag should hold now
        shared_keys: Cache keys for which some other tag holds an artifact

    Returns:
        Operation sets, each sorted by path. A path whose key changed shows
        up once among compute/add_tag (new key) and once among
        delete/remove_tag (old key); otherwise every path appears at most once.
    """
    stale = [
        PathAndCacheKey(path, key)
        for path, key in saved.items()
        if current.get(path) != key
    ]
    fresh = [
        PathAndCacheKey(path, key)
        for path, key in current.items()
        if saved.get(path) != key
    ]
    kept_keys = {key for path, key in saved.items() if current.get(path) == key}
    fresh_keys = {item.cache_key for item in fresh}

    results = RefreshIndexResults()
    for item in sorted(fresh):
        if item.cache_key in shared_keys or item.cache_key in kept_keys:
            results.add_tag.append(item)
        else:
            results.compute.append(item)

    # Artifacts are only physically removed when nothing else references them
    for item in sorted(stale):
        key = item.cache_key
        if key in shared_keys or key in kept_keys or key in fresh_keys:
            results.remove_tag.append(item)
        else:
            results.delete.append(item)

    return results


@dataclass
class ReconcileOutcome:
    """Everything one index needs to bring a tag up to date."""

    results: RefreshIndexResults
    touched: List[PathAndCacheKey] = field(default_factory=list)
    last_updated: Dict[str, float] = field(default_factory=dict)
    mark_complete: MarkCompleteCallback = lambda items, result_type: None

    def total_operations(self) -> int:
        return self.results.total() + len(self.touched)


class Reconciler:
    """Computes refresh results for tags against a workspace snapshot.

    Hashes are memoized per (path, mtime, size) so the four indexes of one
    directory read every changed file only once.
    """

    def __init__(self, catalog: ContentCatalog):
        self.catalog = catalog
        self._key_cache: Dict[Tuple[str, float, int], str] = {}

    def _cache_key_for(
        self, path: str, stats: FileStats, read_bytes: Callable[[str], bytes]
    ) -> str:
        memo_key = (path, stats.last_modified, stats.size)
        cached = self._key_cache.get(memo_key)
        if cached is None:
            cached = compute_cache_key(read_bytes(path))
            self._key_cache[memo_key] = cached
        return cached

    def clear_memo(self) -> None:
        self._key_cache.clear()

    def reconcile(
        self,
        tag: IndexTag,
        stats: Dict[str, FileStats],
        read_bytes: Callable[[str], bytes],
        only_paths: Optional[Set[str]] = None,
    ) -> ReconcileOutcome:
        """Plan the work for ``tag`` given the current file stats.

        Args:
            tag: Tag to reconcile
            stats: Current files and their stats; paths missing here are gone
            read_bytes: Reads a file's raw content; only called for new or
                newer files
            only_paths: Restrict planning to these paths, leaving the rest of
                the tag's catalog alone

        Returns:
            ReconcileOutcome with results, touch list and a bound mark_complete
        """
        saved: Dict[str, str] = {}
        current: Dict[str, str] = {}
        touched: List[PathAndCacheKey] = []
        last_updated: Dict[str, float] = {}

        saved_updates: Dict[str, float] = {}
        for entry in self.catalog.list_entries(tag):
            if only_paths is not None and entry.path not in only_paths:
                continue
            saved[entry.path] = entry.cache_key
            saved_updates[entry.path] = entry.last_updated

        for path in sorted(stats):
            if only_paths is not None and path not in only_paths:
                continue
            file_stats = stats[path]
            previous = saved.get(path)
            if previous is not None and file_stats.last_modified <= saved_updates[path]:
                current[path] = previous
                continue

            try:
                key = self._cache_key_for(path, file_stats, read_bytes)
            except FileNotFoundError:
                logger.debug(f"{path} disappeared before it could be read")
                continue

            current[path] = key
            last_updated[path] = file_stats.last_modified
            if previous == key:
                touched.append(PathAndCacheKey(path, key))

        candidate_keys = {
            key for path, key in current.items() if saved.get(path) != key
        } | {key for path, key in saved.items() if current.get(path) != key}
        shared_keys = {
            key
            for key in candidate_keys
            if self.catalog.find_global_owner(key, tag.artifact_id, exclude=tag)
            is not None
        }

        results = plan_refresh(saved, current, shared_keys)

        def mark_complete(
            items: List[PathAndCacheKey], result_type: IndexResultType
        ) -> None:
            self.catalog.mark_complete(tag, items, result_type, last_updated)

        logger.debug(
            f"Planned {tag.to_string()}: compute={len(results.compute)} "
            f"delete={len(results.delete)} add_tag={len(results.add_tag)} "
            f"remove_tag={len(results.remove_tag)} touched={len(touched)}"
        )
        return ReconcileOutcome(results, touched, last_updated, mark_complete)
