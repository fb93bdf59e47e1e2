"""Indexing components: reconciliation, artifact indexes and orchestration."""

from .types import (
    IndexTag,
    IndexingProgressUpdate,
    IndexingStatus,
    PathAndCacheKey,
    RefreshIndexResults,
)
from .chunker import Chunker
from .file_finder import FileFinder

__all__ = [
    "IndexTag",
    "IndexingProgressUpdate",
    "IndexingStatus",
    "PathAndCacheKey",
    "RefreshIndexResults",
    "Chunker",
    "FileFinder",
]
