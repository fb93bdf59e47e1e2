"""
Indexing orchestrator.

Walks workspace directories, asks the reconciler what each artifact index is
missing, applies the work in bounded batches and streams progress events.
Pause and cancellation are observed at the top of every directory, while
files are discovered, and before every batch.
"""

import logging
import os
import threading
import time
from typing import Dict, Iterator, List, Optional, Sequence

from ..config import Config
from ..services.embedding_provider import EmbeddingProvider
from ..services.workspace import Workspace
from ..storage.catalog import ContentCatalog
from ..storage.index_store import IndexStore
from .chunk_index import ChunkCodebaseIndex
from .codebase_index import CodebaseIndex
from .errors import ErrorKind, classify_error, is_embedding_failure, minimal_stack_trace, root_cause
from .full_text_index import FullTextSearchCodebaseIndex
from .refresh_index import Reconciler
from .snippets_index import CodeSnippetsCodebaseIndex
from .tokens import PauseToken
from .types import (
    FileStats,
    IndexResultType,
    IndexTag,
    IndexingProgressUpdate,
    IndexingStatus,
    RefreshIndexResults,
    SearchHit,
)
from .vector_index import VectorCodebaseIndex, create_vector_index

logger = logging.getLogger(__name__)

PROGRESS_LOG_STEP = 0.025


class CodebaseIndexer:
    """Keeps every artifact index in sync with the workspace."""

    def __init__(
        self,
        config: Config,
        workspace: Workspace,
        store: IndexStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
        pause_token: Optional[PauseToken] = None,
    ):
        self.config = config
        self.workspace = workspace
        self.store = store
        self.embedding_provider = embedding_provider
        self.pause_token = pause_token or PauseToken()
        self.files_per_batch = config.indexing.files_per_batch
        self.cancel_event = threading.Event()

        self.catalog = ContentCatalog(store)
        self.reconciler = Reconciler(self.catalog)
        self._indexes: Optional[List[CodebaseIndex]] = None

    def get_indexes_to_build(self) -> List[CodebaseIndex]:
        """Artifact indexes in dependency order: chunks first."""
        if self._indexes is None:
            indexes: List[CodebaseIndex] = [
                ChunkCodebaseIndex(
                    self.store,
                    self.catalog,
                    self.workspace.read_bytes,
                    self.config.indexing.max_chunk_size,
                )
            ]
            vector_index = create_vector_index(
                self.store,
                self.catalog,
                self.embedding_provider,
                self.config.vectors,
                self.cancel_event,
            )
            if vector_index is not None:
                indexes.append(vector_index)
            indexes.append(FullTextSearchCodebaseIndex(self.store, self.catalog))
            indexes.append(
                CodeSnippetsCodebaseIndex(self.store, self.catalog, self.workspace.read_bytes)
            )
            self._indexes = indexes
        return self._indexes

    def batch_refresh_index_results(
        self, results: RefreshIndexResults
    ) -> Iterator[RefreshIndexResults]:
        """Split results into batches of at most ``files_per_batch`` operations.

        Operations are taken in delete, remove_tag, compute, add_tag order,
        so N operations always produce ceil(N / files_per_batch) batches and
        a modified file releases its old key before its new key is recorded.
        """
        operations = (
            [("delete", item) for item in results.delete]
            + [("remove_tag", item) for item in results.remove_tag]
            + [("compute", item) for item in results.compute]
            + [("add_tag", item) for item in results.add_tag]
        )
        for start in range(0, len(operations), self.files_per_batch):
            batch = RefreshIndexResults()
            for kind, item in operations[start : start + self.files_per_batch]:
                getattr(batch, kind).append(item)
            yield batch

    def _bind_cancel_event(self, cancel_event: Optional[threading.Event]) -> threading.Event:
        # Indexes only observe the event; the caller or a fresh one owns it
        event = cancel_event or threading.Event()
        self.cancel_event = event
        for index in self.get_indexes_to_build():
            index.cancellation_event = event
        return event

    def _paused_update(self, progress: float) -> IndexingProgressUpdate:
        return IndexingProgressUpdate(progress, "Indexing Paused", IndexingStatus.PAUSED)

    def _cancelled_update(self, progress: float) -> IndexingProgressUpdate:
        return IndexingProgressUpdate(progress, "Indexing cancelled", IndexingStatus.CANCELLED)

    def _wait_while_paused(self, cancel_event: threading.Event) -> None:
        self.pause_token.wait_while_paused(
            self.config.indexing.pause_poll_interval, cancel_event
        )

    def refresh_dirs(
        self,
        dirs: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[IndexingProgressUpdate]:
        """Bring every index up to date for ``dirs``, yielding progress.

        Args:
            dirs: Workspace directories, processed one after another
            cancel_event: Set it to stop after the current step

        Yields:
            Progress events; the last one is done, cancelled, disabled or failed

        Raises:
            EmbeddingProviderError: Embedding failures are not converted to events
        """
        if not dirs:
            yield IndexingProgressUpdate(1.0, "Nothing to index", IndexingStatus.DONE)
            return

        if self.config.indexing.disable_indexing:
            yield IndexingProgressUpdate(
                0.0, "Indexing is disabled in config.json", IndexingStatus.DISABLED
            )
            return

        yield IndexingProgressUpdate(0.0, "Starting indexing", IndexingStatus.LOADING)

        try:
            # Opening the indexes can hit corrupted on-disk state
            cancel = self._bind_cancel_event(cancel_event)
        except Exception as err:
            if is_embedding_failure(err):
                raise
            yield self._error_update(err, 0.0)
            return

        begin_time = time.time()
        progress = 0.0
        last_logged = 0.0
        completed_files = 0

        for dir_index, directory in enumerate(dirs):
            dir_start = dir_index / len(dirs)

            if cancel.is_set():
                yield self._cancelled_update(progress)
                return
            if self.pause_token.paused:
                yield self._paused_update(progress)
                self._wait_while_paused(cancel)
                if cancel.is_set():
                    yield self._cancelled_update(progress)
                    return

            yield IndexingProgressUpdate(
                progress,
                f"Discovering files in {os.path.basename(directory) or directory}...",
                IndexingStatus.INDEXING,
            )

            try:
                files: List[str] = []
                for path in self.workspace.list_files(directory):
                    if cancel.is_set():
                        yield self._cancelled_update(progress)
                        return
                    if self.pause_token.paused:
                        yield self._paused_update(progress)
                        self._wait_while_paused(cancel)
                        if cancel.is_set():
                            yield self._cancelled_update(progress)
                            return
                    files.append(path)

                stats = self.workspace.stat_files(files)
                branch = self.workspace.get_branch(directory)
                repo_name = self.workspace.get_repo_name(directory)

                for update in self._index_files(directory, stats, branch, repo_name, cancel):
                    overall = dir_start + update.progress / len(dirs)
                    progress = max(progress, min(overall, 1.0))
                    update.progress = progress
                    yield update
                    if update.status is IndexingStatus.CANCELLED:
                        return
                    if progress - last_logged >= PROGRESS_LOG_STEP:
                        self._log_progress(begin_time, completed_files, progress)
                        last_logged = progress
            except Exception as err:
                if is_embedding_failure(err):
                    raise
                yield self._error_update(err, progress)
                return
            finally:
                self.reconciler.clear_memo()

            completed_files += len(stats)
            progress = max(progress, (dir_index + 1) / len(dirs))

        self._log_progress(begin_time, completed_files, 1.0)
        yield IndexingProgressUpdate(1.0, "Indexing Complete", IndexingStatus.DONE)

    def _index_files(
        self,
        directory: str,
        stats: Dict[str, FileStats],
        branch: str,
        repo_name: Optional[str],
        cancel: threading.Event,
    ) -> Iterator[IndexingProgressUpdate]:
        """Progress values yielded here are fractions of this directory."""
        indexes = self.get_indexes_to_build()
        progress = 0.0

        for completed_indexes, index in enumerate(indexes):
            tag = IndexTag(directory, branch, index.artifact_id)
            yield IndexingProgressUpdate(
                progress,
                f"Planning changes for {index.artifact_id} index...",
                IndexingStatus.INDEXING,
            )

            outcome = self.reconciler.reconcile(tag, stats, self.workspace.read_bytes)
            total_ops = outcome.results.total()
            completed_ops = 0

            # Some indexes do setup work even for empty batches
            if total_ops > 0:
                for batch in self.batch_refresh_index_results(outcome.results):
                    if cancel.is_set():
                        yield self._cancelled_update(progress)
                        return
                    if self.pause_token.paused:
                        yield self._paused_update(progress)
                        self._wait_while_paused(cancel)
                        if cancel.is_set():
                            yield self._cancelled_update(progress)
                            return

                    batch_ops = batch.total()
                    for update in index.update(tag, batch, outcome.mark_complete, repo_name):
                        within = (completed_ops + update.progress * batch_ops) / total_ops
                        yield IndexingProgressUpdate(
                            max(progress, (completed_indexes + within) / len(indexes)),
                            update.description,
                            IndexingStatus.INDEXING,
                        )

                    completed_ops += batch_ops
                    progress = (completed_indexes + completed_ops / total_ops) / len(indexes)

            if outcome.touched:
                outcome.mark_complete(outcome.touched, IndexResultType.UPDATE_LAST_UPDATED)
            progress = (completed_indexes + 1) / len(indexes)

    def refresh_file(self, path: str, workspace_dirs: Optional[Sequence[str]] = None) -> None:
        """Re-index a single file, e.g. after it was saved.

        No-op while paused or when the file is outside every workspace
        directory. Indexes with nothing to do for the file are skipped.
        """
        if self.pause_token.paused:
            return

        dirs = list(workspace_dirs) if workspace_dirs is not None else self.workspace.get_workspace_dirs()
        directory = next(
            (d for d in dirs if os.path.commonpath([os.path.abspath(path), os.path.abspath(d)]) == os.path.abspath(d)),
            None,
        )
        if directory is None:
            logger.debug(f"{path} is outside the workspace, not indexing")
            return

        branch = self.workspace.get_branch(directory)
        repo_name = self.workspace.get_repo_name(directory)
        stats = self.workspace.stat_files([path])

        try:
            for index in self.get_indexes_to_build():
                tag = IndexTag(directory, branch, index.artifact_id)
                outcome = self.reconciler.reconcile(
                    tag, stats, self.workspace.read_bytes, only_paths={path}
                )
                results = outcome.results.filter_path(path)
                if results.is_empty() and not outcome.touched:
                    continue
                for _ in index.update(tag, results, outcome.mark_complete, repo_name):
                    pass
                if outcome.touched:
                    outcome.mark_complete(outcome.touched, IndexResultType.UPDATE_LAST_UPDATED)
        finally:
            self.reconciler.clear_memo()

    def refresh_files(self, paths: Sequence[str]) -> Iterator[IndexingProgressUpdate]:
        """Re-index specific files, yielding one event per file."""
        dirs = self.workspace.get_workspace_dirs()
        try:
            for position, path in enumerate(paths):
                yield IndexingProgressUpdate(
                    position / len(paths), f"Indexing file {path}...", IndexingStatus.INDEXING
                )
                self.refresh_file(path, dirs)
                if self.pause_token.paused:
                    yield self._paused_update(position / len(paths))
                    self._wait_while_paused(self.cancel_event)
        except Exception as err:
            if is_embedding_failure(err):
                raise
            yield self._error_update(err, 0.0)
            return
        yield IndexingProgressUpdate(1.0, "Indexing Complete", IndexingStatus.DONE)

    def clear_indexes_for_directory(self, directory: str) -> None:
        """Remove catalog rows and artifacts for ``directory`` on its current branch.

        Artifacts still referenced by another directory or branch are kept.
        """
        branch = self.workspace.get_branch(directory)
        for index in self.get_indexes_to_build():
            tag = IndexTag(directory, branch, index.artifact_id)
            keys = {entry.cache_key for entry in self.catalog.list_entries(tag)}
            with self.store.transaction():
                self.catalog.clear_tag(tag)
                orphaned = {k for k in keys if not self.catalog.is_referenced(k, index.artifact_id)}
                index.clear_tag(tag, orphaned)
            logger.info(f"Cleared {tag.to_string()} ({len(orphaned)} artifacts removed)")

    def clear_indexes(self, dirs: Optional[Sequence[str]] = None) -> None:
        for directory in dirs if dirs is not None else self.workspace.get_workspace_dirs():
            self.clear_indexes_for_directory(directory)

    def clear_all_indexes(self) -> None:
        """Delete every index for every project. Used to recover from corruption."""
        self.close()
        self.store.reset()
        self.catalog = ContentCatalog(self.store)
        self.reconciler = Reconciler(self.catalog)
        logger.warning(f"All indexes under {self.store.index_dir} were cleared")

    def _tags_for(self, artifact_id: str, dirs: Optional[Sequence[str]]) -> List[IndexTag]:
        return [
            IndexTag(d, self.workspace.get_branch(d), artifact_id)
            for d in (dirs if dirs is not None else self.workspace.get_workspace_dirs())
        ]

    def search_text(self, text: str, n: int = 10, dirs: Optional[Sequence[str]] = None) -> List[SearchHit]:
        index = next(i for i in self.get_indexes_to_build() if isinstance(i, FullTextSearchCodebaseIndex))
        return index.retrieve(self._tags_for(index.artifact_id, dirs), text, n)

    def search_vectors(self, query: str, n: int = 10, dirs: Optional[Sequence[str]] = None) -> List[SearchHit]:
        index = next(
            (i for i in self.get_indexes_to_build() if isinstance(i, VectorCodebaseIndex)), None
        )
        if index is None:
            raise RuntimeError("Vector search needs an embedding provider")
        return index.retrieve(self._tags_for(index.artifact_id, dirs), query, n)

    def status(self) -> Dict[str, int]:
        """Catalog entry counts per artifact id."""
        return self.catalog.count_entries()

    def _error_update(self, err: Exception, progress: float) -> IndexingProgressUpdate:
        kind = classify_error(err)
        cause = root_cause(err)
        logger.error(f"Error when indexing ({kind.value}): {cause}")
        return IndexingProgressUpdate(
            progress,
            str(cause) or type(cause).__name__,
            IndexingStatus.FAILED,
            should_clear_indexes=kind is ErrorKind.CORRUPTION,
            debug_info=minimal_stack_trace(err),
        )

    def _log_progress(self, begin_time: float, completed_files: int, progress: float) -> None:
        seconds = max(time.time() - begin_time, 1e-6)
        logger.info(
            f"Indexing: {progress * 100:.1f}% complete, elapsed time: {seconds:.0f}s, "
            f"{completed_files / seconds:.2f} file/sec"
        )

    def close(self) -> None:
        if self._indexes is not None:
            for index in self._indexes:
                index.close()
        self._indexes = None
