"""
Vector artifact index.

Embeddings are cached per cache key in ``vector_cache`` and copied into one
table per tag, so attaching content another tag already embedded costs no
provider call. Retrieval ranks a tag's rows by cosine similarity.
"""

import logging
import struct
import threading
from concurrent.futures import Future
from typing import Iterator, List, Optional, Sequence, Set, Tuple

from ..config import VectorConfig
from ..services.adaptive_limiter import AdaptiveConcurrencyLimiter
from ..services.embedding_provider import EmbeddingProvider, EmbeddingProviderError
from ..services.vector_calculation_manager import VectorCalculationManager, VectorResult
from ..storage.catalog import ContentCatalog
from ..storage.index_store import IndexStore
from .chunk_index import load_chunks
from .codebase_index import CodebaseIndex
from .types import (
    Chunk,
    IndexResultType,
    IndexTag,
    IndexUpdateProgress,
    MarkCompleteCallback,
    PathAndCacheKey,
    RefreshIndexResults,
    SearchHit,
)

try:
    import numpy as np

    NUMPY_AVAILABLE = True
except ImportError:
    NUMPY_AVAILABLE = False

logger = logging.getLogger(__name__)

CANCELLED = "Cancelled"


def vectors_supported() -> bool:
    """Platform check: numpy importable on a 64-bit interpreter."""
    return NUMPY_AVAILABLE and struct.calcsize("P") == 8


def create_vector_index(
    store: IndexStore,
    catalog: ContentCatalog,
    embedding_provider: Optional[EmbeddingProvider],
    config: VectorConfig,
    cancellation_event: Optional[threading.Event] = None,
) -> Optional["VectorCodebaseIndex"]:
    """Build the vector index, or None when it should not be registered."""
    if embedding_provider is None:
        logger.debug("No embedding provider configured; vector index disabled")
        return None
    if not config.enabled:
        logger.debug("Vector index disabled by configuration")
        return None
    if not vectors_supported():
        logger.warning("Vector index unavailable on this platform (numpy, 64-bit)")
        return None
    return VectorCodebaseIndex(
        store, catalog, embedding_provider, config, cancellation_event
    )


class VectorCodebaseIndex(CodebaseIndex):
    relative_expected_time = 3.0

    def __init__(
        self,
        store: IndexStore,
        catalog: ContentCatalog,
        embedding_provider: EmbeddingProvider,
        config: VectorConfig,
        cancellation_event: Optional[threading.Event] = None,
    ):
        super().__init__(store, catalog)
        self.embedding_provider = embedding_provider
        self.config = config
        self.artifact_id = f"vectordb::{embedding_provider.get_model_id()}"
        self.limiter = AdaptiveConcurrencyLimiter(
            min_limit=config.min_concurrency,
            max_limit=config.max_concurrency,
            latency_target=config.latency_target,
        )
        self.cancellation_event = cancellation_event or threading.Event()
        self._init_database()

    def _init_database(self) -> None:
        self.store.executescript(
            """
            CREATE TABLE IF NOT EXISTS vector_cache (
                artifact_id TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                idx INTEGER NOT NULL,
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                content TEXT NOT NULL,
                vector BLOB NOT NULL,
                PRIMARY KEY (artifact_id, cache_key, idx)
            );
            """
        )

    def table_for(self, tag: IndexTag) -> str:
        return tag.table_name("vectors")

    def _ensure_tag_table(self, tag: IndexTag) -> str:
        table = self.table_for(tag)
        self.store.connection.execute(
            f"""
            CREATE TABLE IF NOT EXISTS "{table}" (
                path TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                idx INTEGER NOT NULL,
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                content TEXT NOT NULL,
                vector BLOB NOT NULL,
                PRIMARY KEY (path, cache_key, idx)
            )
            """
        )
        return table

    def _expected_dimension(self) -> Optional[int]:
        row = self.store.fetchone(
            "SELECT length(vector) FROM vector_cache WHERE artifact_id = ? LIMIT 1",
            (self.artifact_id,),
        )
        return row[0] // 4 if row else None

    def _cached_rows(self, cache_key: str) -> List[Tuple]:
        return self.store.fetchall(
            """
            SELECT idx, start_line, end_line, content, vector FROM vector_cache
            WHERE artifact_id = ? AND cache_key = ? ORDER BY idx
            """,
            (self.artifact_id, cache_key),
        )

    def _has_cached(self, cache_key: str) -> bool:
        return bool(
            self.store.fetchone(
                "SELECT 1 FROM vector_cache WHERE artifact_id = ? AND cache_key = ? LIMIT 1",
                (self.artifact_id, cache_key),
            )
        )

    def _write_cache(
        self, cache_key: str, chunks: List[Chunk], embeddings: List[Tuple[float, ...]]
    ) -> None:
        expected = self._expected_dimension()
        rows = []
        for chunk, embedding in zip(chunks, embeddings):
            if expected is not None and len(embedding) != expected:
                raise ValueError(
                    f"Vector length mismatch: got {len(embedding)}, index holds {expected}"
                )
            vector = np.asarray(embedding, dtype=np.float32).tobytes()
            rows.append(
                (self.artifact_id, cache_key, chunk.index, chunk.start_line, chunk.end_line, chunk.content, vector)
            )
        self.store.connection.executemany(
            """
            INSERT OR REPLACE INTO vector_cache
                (artifact_id, cache_key, idx, start_line, end_line, content, vector)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )

    def _attach(self, tag: IndexTag, item: PathAndCacheKey) -> None:
        table = self._ensure_tag_table(tag)
        self.store.connection.execute(
            f"""
            INSERT OR REPLACE INTO "{table}"
                (path, cache_key, idx, start_line, end_line, content, vector)
            SELECT ?, cache_key, idx, start_line, end_line, content, vector
            FROM vector_cache WHERE artifact_id = ? AND cache_key = ?
            """,
            (item.path, self.artifact_id, item.cache_key),
        )

    def _detach(self, tag: IndexTag, item: PathAndCacheKey) -> None:
        table = self.table_for(tag)
        if self.store.table_exists(table):
            self.store.connection.execute(
                f'DELETE FROM "{table}" WHERE path = ? AND cache_key = ?',
                (item.path, item.cache_key),
            )

    def _embed(
        self, items: List[PathAndCacheKey]
    ) -> Iterator[Tuple[PathAndCacheKey, List[Chunk], List[Tuple[float, ...]]]]:
        """Embed the chunks of each item, yielding items as they complete."""
        batch_size = max(1, self.embedding_provider.max_batch_size)
        manager = VectorCalculationManager(
            self.embedding_provider, self.limiter, self.cancellation_event
        )
        with manager:
            pending: List[Tuple[PathAndCacheKey, List[Chunk], List["Future[VectorResult]"]]] = []
            for item in items:
                chunks = load_chunks(self.store, item.cache_key)
                futures = [
                    manager.submit_batch_task(
                        [c.content for c in chunks[start : start + batch_size]],
                        {"path": item.path},
                    )
                    for start in range(0, len(chunks), batch_size)
                ]
                pending.append((item, chunks, futures))

            for item, chunks, futures in pending:
                embeddings: List[Tuple[float, ...]] = []
                for future in futures:
                    result = future.result()
                    if result.error == CANCELLED:
                        return
                    if result.error is not None:
                        manager.request_cancellation()
                        raise EmbeddingProviderError(
                            self.embedding_provider.get_provider_name(), result.error
                        )
                    embeddings.extend(result.embeddings)
                if len(embeddings) != len(chunks):
                    raise EmbeddingProviderError(
                        self.embedding_provider.get_provider_name(),
                        f"Expected {len(chunks)} embeddings for {item.path}, got {len(embeddings)}",
                    )
                yield item, chunks, embeddings

    def update(
        self,
        tag: IndexTag,
        results: RefreshIndexResults,
        mark_complete: MarkCompleteCallback,
        repo_name: Optional[str] = None,
    ) -> Iterator[IndexUpdateProgress]:
        total = results.total()
        done = 0

        if results.delete:
            with self.store.transaction():
                for item in results.delete:
                    self._detach(tag, item)
                mark_complete(results.delete, IndexResultType.DELETE)
                for key in {item.cache_key for item in results.delete}:
                    if self.is_orphaned(key):
                        self.store.connection.execute(
                            "DELETE FROM vector_cache WHERE artifact_id = ? AND cache_key = ?",
                            (self.artifact_id, key),
                        )
            done += len(results.delete)
            yield self._progress(done, total, self._describe("Removed vectors for", results.delete))

        if results.remove_tag:
            with self.store.transaction():
                for item in results.remove_tag:
                    self._detach(tag, item)
                mark_complete(results.remove_tag, IndexResultType.REMOVE_TAG)
            done += len(results.remove_tag)
            yield self._progress(done, total, self._describe("Detached vectors for", results.remove_tag))

        to_embed = [i for i in results.compute if not self._has_cached(i.cache_key)]
        reuse = [i for i in results.compute if self._has_cached(i.cache_key)]
        # Attaching needs cached vectors; fall back to embedding when they are gone
        attach = [i for i in results.add_tag if self._has_cached(i.cache_key)]
        to_embed += [i for i in results.add_tag if not self._has_cached(i.cache_key)]
        add_tag_paths = {i.path for i in results.add_tag}

        for item, chunks, embeddings in self._embed(to_embed):
            with self.store.transaction():
                if not self._has_cached(item.cache_key):
                    self._write_cache(item.cache_key, chunks, embeddings)
                self._attach(tag, item)
                result_type = (
                    IndexResultType.ADD_TAG
                    if item.path in add_tag_paths
                    else IndexResultType.COMPUTE
                )
                mark_complete([item], result_type)
            done += 1
            yield self._progress(done, total, f"Embedded {item.path}")

        if reuse or attach:
            with self.store.transaction():
                for item in reuse + attach:
                    self._attach(tag, item)
                if reuse:
                    mark_complete(reuse, IndexResultType.COMPUTE)
                if attach:
                    mark_complete(attach, IndexResultType.ADD_TAG)
            done += len(reuse) + len(attach)
            yield self._progress(done, total, self._describe("Reused vectors for", reuse + attach))

    def clear_tag(self, tag: IndexTag, orphaned_keys: Set[str]) -> None:
        with self.store.transaction() as conn:
            conn.execute(f'DROP TABLE IF EXISTS "{self.table_for(tag)}"')
            for key in orphaned_keys:
                conn.execute(
                    "DELETE FROM vector_cache WHERE artifact_id = ? AND cache_key = ?",
                    (self.artifact_id, key),
                )

    def retrieve(
        self, tags: Sequence[IndexTag], query: str, n: int = 10
    ) -> List[SearchHit]:
        """Rank the tags' chunks by cosine similarity to ``query``."""
        if n <= 0:
            return []
        query_vector = np.asarray(
            self.embedding_provider.get_embedding(query), dtype=np.float32
        )
        query_norm = float(np.linalg.norm(query_vector)) or 1.0

        candidates: List[Tuple[str, int, int, str]] = []
        matrices = []
        for tag in tags:
            own_tag = IndexTag(tag.directory, tag.branch, self.artifact_id)
            table = self.table_for(own_tag)
            if not self.store.table_exists(table):
                continue
            for path, start, end, content, blob in self.store.fetchall(
                f'SELECT path, start_line, end_line, content, vector FROM "{table}"'
            ):
                candidates.append((path, start, end, content))
                matrices.append(np.frombuffer(blob, dtype=np.float32))

        if not candidates:
            return []

        matrix = np.vstack(matrices)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1.0
        scores = matrix @ query_vector / (norms * query_norm)
        order = np.argsort(-scores)[:n]

        return [
            SearchHit(
                path=candidates[i][0],
                start_line=candidates[i][1],
                end_line=candidates[i][2],
                content=candidates[i][3],
                score=float(scores[i]),
            )
            for i in order
        ]
