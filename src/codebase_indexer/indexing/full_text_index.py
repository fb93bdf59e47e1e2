"""
Full-text search artifact index backed by Tantivy.

One Tantivy document is written per chunk and carries the chunk's cache key,
so documents are shared by every tag holding the same content. Attaching or
detaching a tag is catalog-only; results are mapped back to a tag's paths
through the catalog at query time.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from ..storage.catalog import ContentCatalog
from ..storage.index_store import IndexStore
from .chunk_index import load_chunks
from .codebase_index import CodebaseIndex
from .types import (
    IndexResultType,
    IndexTag,
    IndexUpdateProgress,
    MarkCompleteCallback,
    PathAndCacheKey,
    RefreshIndexResults,
    SearchHit,
)

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")


class FullTextSearchCodebaseIndex(CodebaseIndex):
    """Tantivy index over chunk text.

    The writer is held for the life of the index. Each batch is committed to
    Tantivy before the matching catalog rows are committed, so a failed
    Tantivy commit leaves the catalog untouched.
    """

    artifact_id = "full_text_search"
    relative_expected_time = 0.2

    def __init__(
        self,
        store: IndexStore,
        catalog: ContentCatalog,
        index_dir: Optional[Path] = None,
        heap_size: int = 64_000_000,
    ):
        super().__init__(store, catalog)
        self.index_dir = Path(index_dir) if index_dir else store.fts_dir
        self._heap_size = heap_size
        self._lock = threading.Lock()
        self._index: Any = None
        self._writer: Any = None

        try:
            import tantivy

            self._tantivy = tantivy
        except ImportError as e:
            logger.error("Tantivy library not installed")
            raise ImportError(
                "Tantivy is required for full-text indexing. "
                "Install it with: pip install tantivy"
            ) from e

        self._schema = self._create_schema()
        self._open()

    def _create_schema(self) -> Any:
        schema_builder = self._tantivy.SchemaBuilder()
        schema_builder.add_text_field("cache_key", stored=True, tokenizer_name="raw")
        schema_builder.add_text_field("path", stored=True, tokenizer_name="raw")
        schema_builder.add_text_field("content", stored=True)
        schema_builder.add_unsigned_field("start_line", stored=True)
        schema_builder.add_unsigned_field("end_line", stored=True)
        return schema_builder.build()

    def _open(self) -> None:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        if (self.index_dir / "meta.json").exists():
            self._index = self._tantivy.Index.open(str(self.index_dir))
            logger.debug(f"Opened existing Tantivy index at {self.index_dir}")
        else:
            self._index = self._tantivy.Index(self._schema, str(self.index_dir))
            logger.info(f"Created Tantivy index at {self.index_dir}")
        self._writer = self._index.writer(self._heap_size, 1)

    def _key_query(self, cache_key: str) -> Any:
        return self._tantivy.Query.term_query(self._schema, "cache_key", cache_key)

    def _delete_key(self, cache_key: str) -> None:
        self._writer.delete_documents_by_query(self._key_query(cache_key))

    def _add_key(self, item: PathAndCacheKey) -> None:
        for chunk in load_chunks(self.store, item.cache_key):
            doc = self._tantivy.Document()
            doc.add_text("cache_key", item.cache_key)
            doc.add_text("path", item.path)
            doc.add_text("content", chunk.content)
            doc.add_unsigned("start_line", chunk.start_line)
            doc.add_unsigned("end_line", chunk.end_line)
            self._writer.add_document(doc)

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
            with self._lock, self.store.transaction():
                mark_complete(results.delete, IndexResultType.DELETE)
                for key in {item.cache_key for item in results.delete}:
                    if self.is_orphaned(key):
                        self._delete_key(key)
                self._writer.commit()
            done += len(results.delete)
            yield self._progress(done, total, self._describe("Removed", results.delete))

        if results.remove_tag:
            mark_complete(results.remove_tag, IndexResultType.REMOVE_TAG)
            done += len(results.remove_tag)
            yield self._progress(done, total, self._describe("Detached", results.remove_tag))

        if results.compute:
            with self._lock, self.store.transaction():
                for item in results.compute:
                    # Re-adding a key replaces whatever a previous attempt left
                    self._delete_key(item.cache_key)
                    self._add_key(item)
                self._writer.commit()
                mark_complete(results.compute, IndexResultType.COMPUTE)
            done += len(results.compute)
            yield self._progress(done, total, self._describe("Indexed", results.compute))

        if results.add_tag:
            mark_complete(results.add_tag, IndexResultType.ADD_TAG)
            done += len(results.add_tag)
            yield self._progress(done, total, self._describe("Attached", results.add_tag))

    def clear_tag(self, tag: IndexTag, orphaned_keys: Set[str]) -> None:
        if not orphaned_keys:
            return
        with self._lock:
            for key in orphaned_keys:
                self._delete_key(key)
            self._writer.commit()

    def _paths_for_key(self, cache_key: str, tags: Sequence[IndexTag]) -> List[str]:
        paths: List[str] = []
        for tag in tags:
            rows = self.store.fetchall(
                """
                SELECT path FROM tag_catalog
                WHERE dir = ? AND branch = ? AND artifact_id = ? AND cache_key = ?
                """,
                (tag.directory, tag.branch, self.artifact_id, cache_key),
            )
            paths.extend(row[0] for row in rows)
        return paths

    def retrieve(
        self, tags: Sequence[IndexTag], text: str, n: int = 10
    ) -> List[SearchHit]:
        """Search chunk text, restricted to files the given tags hold.

        Args:
            tags: Tags to search (their artifact id is ignored)
            text: Free text; split into alphanumeric terms, any may match
            n: Maximum number of hits

        Returns:
            Hits ordered by score
        """
        terms = [t.lower() for t in _TOKEN_RE.findall(text)]
        if not terms or n <= 0:
            return []

        query = self._tantivy.Query.boolean_query(
            [
                (
                    self._tantivy.Occur.Should,
                    self._tantivy.Query.term_query(self._schema, "content", term),
                )
                for term in terms
            ]
        )

        self._index.reload()
        searcher = self._index.searcher()
        hits: List[SearchHit] = []
        seen: Set[tuple] = set()
        path_cache: Dict[str, List[str]] = {}

        for score, address in searcher.search(query, n * 5).hits:
            doc = searcher.doc(address)
            key = doc.get_first("cache_key")
            if key not in path_cache:
                path_cache[key] = self._paths_for_key(key, tags)
            start = int(doc.get_first("start_line"))
            for path in path_cache[key]:
                marker = (path, start)
                if marker in seen:
                    continue
                seen.add(marker)
                hits.append(
                    SearchHit(
                        path=path,
                        start_line=start,
                        end_line=int(doc.get_first("end_line")),
                        content=doc.get_first("content") or "",
                        score=float(score),
                    )
                )
                if len(hits) >= n:
                    return hits
        return hits

    def get_document_count(self) -> int:
        self._index.reload()
        return int(self._index.searcher().num_docs)

    def close(self) -> None:
        """Release the writer."""
        with self._lock:
            if self._writer is not None:
                self._writer.wait_merging_threads()
                self._writer = None
