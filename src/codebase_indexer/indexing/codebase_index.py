"""Common interface for artifact indexes."""

import threading
from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Set

from ..storage.catalog import ContentCatalog
from ..storage.index_store import IndexStore
from .types import (
    IndexTag,
    IndexUpdateProgress,
    MarkCompleteCallback,
    PathAndCacheKey,
    RefreshIndexResults,
)


class CodebaseIndex(ABC):
    """One kind of derived artifact kept in sync with the catalog.

    ``update`` applies one batch of refresh results for a tag. An
    implementation must call ``mark_complete`` only for items whose artifact
    writes are durable, and in the same store transaction when the artifact
    lives in sqlite.
    """

    artifact_id: str = ""
    relative_expected_time: float = 1.0

    def __init__(self, store: IndexStore, catalog: ContentCatalog):
        self.store = store
        self.catalog = catalog
        # Set by the orchestrator for the duration of a run
        self.cancellation_event: Optional[threading.Event] = None

    @abstractmethod
    def update(
        self,
        tag: IndexTag,
        results: RefreshIndexResults,
        mark_complete: MarkCompleteCallback,
        repo_name: Optional[str] = None,
    ) -> Iterator[IndexUpdateProgress]:
        pass

    @abstractmethod
    def clear_tag(self, tag: IndexTag, orphaned_keys: Set[str]) -> None:
        """Drop the tag's associations and the artifacts for ``orphaned_keys``."""
        pass

    def is_orphaned(self, cache_key: str) -> bool:
        return not self.catalog.is_referenced(cache_key, self.artifact_id)

    def close(self) -> None:
        pass

    @staticmethod
    def _progress(done: int, total: int, description: str) -> IndexUpdateProgress:
        return IndexUpdateProgress(done / total if total else 1.0, description)

    @staticmethod
    def _describe(verb: str, items: List[PathAndCacheKey]) -> str:
        if len(items) == 1:
            return f"{verb} {items[0].path}"
        return f"{verb} {len(items)} files"
