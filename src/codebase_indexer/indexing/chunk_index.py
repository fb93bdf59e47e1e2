"""Chunk artifact index.

Chunks are content-addressed: rows in ``chunks`` are keyed by cache key and
shared by every tag that holds the same content. ``chunk_tags`` records
which (tag, path) pairs use which key. Other indexes read chunks from here,
so this index must run first.
"""

import logging
from typing import Callable, Iterator, List, Optional, Set

from ..storage.catalog import ContentCatalog
from ..storage.index_store import IndexStore
from .chunker import Chunker
from .codebase_index import CodebaseIndex
from .refresh_index import compute_cache_key, decode_text
from .types import (
    Chunk,
    IndexResultType,
    IndexTag,
    IndexUpdateProgress,
    MarkCompleteCallback,
    PathAndCacheKey,
    RefreshIndexResults,
)

logger = logging.getLogger(__name__)


def load_chunks(store: IndexStore, cache_key: str) -> List[Chunk]:
    """Chunks stored for a cache key, in file order."""
    rows = store.fetchall(
        """
        SELECT content, start_line, end_line, idx, path FROM chunks
        WHERE cache_key = ? ORDER BY idx
        """,
        (cache_key,),
    )
    return [
        Chunk(content, start, end, idx, path, cache_key)
        for content, start, end, idx, path in rows
    ]


class ChunkCodebaseIndex(CodebaseIndex):
    artifact_id = "chunks"
    relative_expected_time = 1.0

    def __init__(
        self,
        store: IndexStore,
        catalog: ContentCatalog,
        read_bytes: Callable[[str], bytes],
        max_chunk_size: int = 2000,
    ):
        super().__init__(store, catalog)
        self.read_bytes = read_bytes
        self.chunker = Chunker(max_chunk_size)
        self._init_database()

    def _init_database(self) -> None:
        self.store.executescript(
            """
            CREATE TABLE IF NOT EXISTS chunks (
                cache_key TEXT NOT NULL,
                idx INTEGER NOT NULL,
                path TEXT NOT NULL,
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                content TEXT NOT NULL,
                PRIMARY KEY (cache_key, idx)
            );
            CREATE TABLE IF NOT EXISTS chunk_tags (
                tag TEXT NOT NULL,
                path TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                UNIQUE (tag, path, cache_key)
            );
            CREATE INDEX IF NOT EXISTS idx_chunk_tags_key ON chunk_tags (cache_key);
            """
        )

    def _has_chunks(self, cache_key: str) -> bool:
        row = self.store.fetchone(
            "SELECT 1 FROM chunks WHERE cache_key = ? LIMIT 1", (cache_key,)
        )
        return row is not None

    def _compute_one(self, tag: IndexTag, item: PathAndCacheKey) -> bool:
        """Chunk one file and attach it to the tag. False if the file moved on."""
        if not self._has_chunks(item.cache_key):
            try:
                data = self.read_bytes(item.path)
            except FileNotFoundError:
                logger.debug(f"{item.path} vanished before it could be chunked")
                return False
            if compute_cache_key(data) != item.cache_key:
                # Changed since planning; the next refresh picks it up
                logger.debug(f"{item.path} changed while indexing, skipping")
                return False

            rows = [
                (item.cache_key, chunk.index, item.path, chunk.start_line, chunk.end_line, chunk.content)
                for chunk in self.chunker.chunk_text(decode_text(data))
            ]
            self.store.connection.executemany(
                """
                INSERT OR IGNORE INTO chunks
                    (cache_key, idx, path, start_line, end_line, content)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

        self._attach(tag, item)
        return True

    def _attach(self, tag: IndexTag, item: PathAndCacheKey) -> None:
        self.store.connection.execute(
            "INSERT OR IGNORE INTO chunk_tags (tag, path, cache_key) VALUES (?, ?, ?)",
            (tag.to_string(), item.path, item.cache_key),
        )

    def _detach(self, tag: IndexTag, item: PathAndCacheKey) -> None:
        self.store.connection.execute(
            "DELETE FROM chunk_tags WHERE tag = ? AND path = ? AND cache_key = ?",
            (tag.to_string(), item.path, item.cache_key),
        )

    def _delete_chunks(self, cache_key: str) -> None:
        self.store.connection.execute(
            "DELETE FROM chunks WHERE cache_key = ?", (cache_key,)
        )

    def update(
        self,
        tag: IndexTag,
        results: RefreshIndexResults,
        mark_complete: MarkCompleteCallback,
        repo_name: Optional[str] = None,
    ) -> Iterator[IndexUpdateProgress]:
        total = results.total()
        done = 0

        for item in results.delete:
            with self.store.transaction():
                self._detach(tag, item)
                mark_complete([item], IndexResultType.DELETE)
                if self.is_orphaned(item.cache_key):
                    self._delete_chunks(item.cache_key)
            done += 1
            yield self._progress(done, total, f"Removing chunks for {item.path}")

        if results.remove_tag:
            with self.store.transaction():
                for item in results.remove_tag:
                    self._detach(tag, item)
                mark_complete(results.remove_tag, IndexResultType.REMOVE_TAG)
            done += len(results.remove_tag)
            yield self._progress(done, total, self._describe("Detached", results.remove_tag))

        for item in results.compute:
            with self.store.transaction():
                if self._compute_one(tag, item):
                    mark_complete([item], IndexResultType.COMPUTE)
            done += 1
            yield self._progress(done, total, f"Chunking {item.path}")

        for item in results.add_tag:
            with self.store.transaction():
                if self._has_chunks(item.cache_key):
                    self._attach(tag, item)
                    completed = True
                else:
                    completed = self._compute_one(tag, item)
                if completed:
                    mark_complete([item], IndexResultType.ADD_TAG)
            done += 1
            yield self._progress(done, total, f"Reusing chunks for {item.path}")

    def clear_tag(self, tag: IndexTag, orphaned_keys: Set[str]) -> None:
        with self.store.transaction() as conn:
            conn.execute("DELETE FROM chunk_tags WHERE tag = ?", (tag.to_string(),))
            for key in orphaned_keys:
                conn.execute("DELETE FROM chunks WHERE cache_key = ?", (key,))

    def get_chunks(self, cache_key: str) -> List[Chunk]:
        return load_chunks(self.store, cache_key)
