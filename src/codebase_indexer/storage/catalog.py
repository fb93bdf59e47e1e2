"""Content catalog and global cache tables.

``tag_catalog`` records, per tag, which path was indexed under which cache
key and when. ``global_cache`` records which tags hold an artifact for a
cache key so another tag with the same content can attach to it instead of
recomputing. A ``global_cache`` row lives only while at least one
``tag_catalog`` row of that tag references the key.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..indexing.types import IndexResultType, IndexTag, PathAndCacheKey
from .index_store import IndexStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    tag: IndexTag
    path: str
    cache_key: str
    last_updated: float


class ContentCatalog:
    """Durable record of what every tag has indexed."""

    def __init__(self, store: IndexStore):
        self.store = store
        self._init_database()

    def _init_database(self) -> None:
        self.store.executescript(
            """
            CREATE TABLE IF NOT EXISTS tag_catalog (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                dir TEXT NOT NULL,
                branch TEXT NOT NULL,
                artifact_id TEXT NOT NULL,
                path TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                last_updated REAL NOT NULL,
                UNIQUE (dir, branch, artifact_id, path)
            );
            CREATE INDEX IF NOT EXISTS idx_tag_catalog_key
                ON tag_catalog (cache_key, artifact_id);

            CREATE TABLE IF NOT EXISTS global_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cache_key TEXT NOT NULL,
                artifact_id TEXT NOT NULL,
                dir TEXT NOT NULL,
                branch TEXT NOT NULL,
                UNIQUE (cache_key, artifact_id, dir, branch)
            );
            """
        )

    def list_entries(self, tag: IndexTag) -> List[CatalogEntry]:
        rows = self.store.fetchall(
            """
            SELECT path, cache_key, last_updated FROM tag_catalog
            WHERE dir = ? AND branch = ? AND artifact_id = ?
            ORDER BY path
            """,
            (tag.directory, tag.branch, tag.artifact_id),
        )
        return [CatalogEntry(tag, path, key, updated) for path, key, updated in rows]

    def find_global_owners(self, cache_key: str, artifact_id: str) -> List[IndexTag]:
        rows = self.store.fetchall(
            """
            SELECT dir, branch FROM global_cache
            WHERE cache_key = ? AND artifact_id = ?
            ORDER BY dir, branch
            """,
            (cache_key, artifact_id),
        )
        return [IndexTag(d, b, artifact_id) for d, b in rows]

    def find_global_owner(
        self, cache_key: str, artifact_id: str, exclude: Optional[IndexTag] = None
    ) -> Optional[IndexTag]:
        """Return some tag other than ``exclude`` holding an artifact for the key."""
        for owner in self.find_global_owners(cache_key, artifact_id):
            if owner != exclude:
                return owner
        return None

    def is_referenced(self, cache_key: str, artifact_id: str) -> bool:
        """True while any tag of this artifact kind still lists the key."""
        row = self.store.fetchone(
            "SELECT 1 FROM tag_catalog WHERE cache_key = ? AND artifact_id = ? LIMIT 1",
            (cache_key, artifact_id),
        )
        return row is not None

    def _release_global(self, conn, tag: IndexTag, cache_key: str) -> None:
        """Drop the tag's global cache row once none of its entries use the key."""
        still_used = conn.execute(
            """
            SELECT 1 FROM tag_catalog
            WHERE dir = ? AND branch = ? AND artifact_id = ? AND cache_key = ?
            LIMIT 1
            """,
            (tag.directory, tag.branch, tag.artifact_id, cache_key),
        ).fetchone()
        if still_used is None:
            conn.execute(
                """
                DELETE FROM global_cache
                WHERE cache_key = ? AND artifact_id = ? AND dir = ? AND branch = ?
                """,
                (cache_key, tag.artifact_id, tag.directory, tag.branch),
            )

    def upsert_entry(
        self, tag: IndexTag, path: str, cache_key: str, last_updated: float
    ) -> None:
        """Record ``path`` under ``cache_key``, releasing any key it replaces."""
        with self.store.transaction() as conn:
            previous = conn.execute(
                """
                SELECT cache_key FROM tag_catalog
                WHERE dir = ? AND branch = ? AND artifact_id = ? AND path = ?
                """,
                (tag.directory, tag.branch, tag.artifact_id, path),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO tag_catalog
                    (dir, branch, artifact_id, path, cache_key, last_updated)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (dir, branch, artifact_id, path)
                DO UPDATE SET cache_key = excluded.cache_key,
                              last_updated = excluded.last_updated
                """,
                (tag.directory, tag.branch, tag.artifact_id, path, cache_key, last_updated),
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO global_cache (cache_key, artifact_id, dir, branch)
                VALUES (?, ?, ?, ?)
                """,
                (cache_key, tag.artifact_id, tag.directory, tag.branch),
            )
            if previous is not None and previous[0] != cache_key:
                self._release_global(conn, tag, previous[0])

    def remove_entry(self, tag: IndexTag, path: str, cache_key: str) -> None:
        """Drop the entry if it still points at ``cache_key``.

        Matching on the key keeps an entry that was already recomputed under
        a new key intact.
        """
        with self.store.transaction() as conn:
            conn.execute(
                """
                DELETE FROM tag_catalog
                WHERE dir = ? AND branch = ? AND artifact_id = ? AND path = ?
                  AND cache_key = ?
                """,
                (tag.directory, tag.branch, tag.artifact_id, path, cache_key),
            )
            self._release_global(conn, tag, cache_key)

    def touch(self, tag: IndexTag, path: str, last_updated: float) -> None:
        with self.store.transaction() as conn:
            conn.execute(
                """
                UPDATE tag_catalog SET last_updated = ?
                WHERE dir = ? AND branch = ? AND artifact_id = ? AND path = ?
                """,
                (last_updated, tag.directory, tag.branch, tag.artifact_id, path),
            )

    def mark_complete(
        self,
        tag: IndexTag,
        items: Iterable[PathAndCacheKey],
        result_type: IndexResultType,
        last_updated: Optional[Dict[str, float]] = None,
    ) -> None:
        """Apply catalog bookkeeping for items an index has finished.

        Args:
            tag: Tag the items belong to
            items: Paths and cache keys the index has durably written
            result_type: Which operation the index performed
            last_updated: Per-path timestamps to record; defaults to now
        """
        stamps = last_updated or {}
        now = time.time()
        with self.store.transaction():
            for item in items:
                stamp = stamps.get(item.path, now)
                if result_type in (IndexResultType.COMPUTE, IndexResultType.ADD_TAG):
                    self.upsert_entry(tag, item.path, item.cache_key, stamp)
                elif result_type in (IndexResultType.DELETE, IndexResultType.REMOVE_TAG):
                    self.remove_entry(tag, item.path, item.cache_key)
                elif result_type is IndexResultType.UPDATE_LAST_UPDATED:
                    self.touch(tag, item.path, stamp)

    def clear_tag(self, tag: IndexTag) -> None:
        with self.store.transaction() as conn:
            conn.execute(
                "DELETE FROM tag_catalog WHERE dir = ? AND branch = ? AND artifact_id = ?",
                (tag.directory, tag.branch, tag.artifact_id),
            )
            conn.execute(
                "DELETE FROM global_cache WHERE dir = ? AND branch = ? AND artifact_id = ?",
                (tag.directory, tag.branch, tag.artifact_id),
            )

    def count_entries(self) -> Dict[str, int]:
        """Entry counts per artifact id, for status reporting."""
        rows = self.store.fetchall(
            "SELECT artifact_id, COUNT(*) FROM tag_catalog GROUP BY artifact_id"
        )
        return {artifact_id: count for artifact_id, count in rows}
