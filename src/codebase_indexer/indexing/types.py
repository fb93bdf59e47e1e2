"""Value types shared by the catalog, the reconciler and the indexes."""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional


@dataclass(frozen=True)
class IndexTag:
    """Identifies one (directory, branch, artifact kind) slice of the index."""

    directory: str
    branch: str
    artifact_id: str

    def to_string(self) -> str:
        return f"{self.directory}::{self.branch}::{self.artifact_id}"

    def table_name(self, prefix: str) -> str:
        """Deterministic sqlite table name for this tag.

        The readable part is sanitized to ``[A-Za-z0-9_]`` and truncated; a
        short digest of the full tag string keeps distinct tags apart.
        """
        tag_string = self.to_string()
        readable = re.sub(r"[^A-Za-z0-9_]", "_", tag_string)[-40:]
        digest = hashlib.sha256(tag_string.encode("utf-8")).hexdigest()[:12]
        return f"{prefix}_{readable}_{digest}"


@dataclass(frozen=True)
class FileStats:
    """What the workspace reports about a file without reading it."""

    last_modified: float
    size: int


@dataclass(frozen=True, order=True)
class PathAndCacheKey:
    path: str
    cache_key: str


@dataclass
class RefreshIndexResults:
    """Operation sets one index must apply to bring a tag up to date."""

    compute: List[PathAndCacheKey] = field(default_factory=list)
    delete: List[PathAndCacheKey] = field(default_factory=list)
    add_tag: List[PathAndCacheKey] = field(default_factory=list)
    remove_tag: List[PathAndCacheKey] = field(default_factory=list)

    def total(self) -> int:
        return (
            len(self.compute)
            + len(self.delete)
            + len(self.add_tag)
            + len(self.remove_tag)
        )

    def is_empty(self) -> bool:
        return self.total() == 0

    def filter_path(self, path: str) -> "RefreshIndexResults":
        """Restrict every operation set to a single path."""
        return RefreshIndexResults(
            compute=[item for item in self.compute if item.path == path],
            delete=[item for item in self.delete if item.path == path],
            add_tag=[item for item in self.add_tag if item.path == path],
            remove_tag=[item for item in self.remove_tag if item.path == path],
        )


class IndexResultType(Enum):
    COMPUTE = "compute"
    DELETE = "del"
    ADD_TAG = "addTag"
    REMOVE_TAG = "removeTag"
    UPDATE_LAST_UPDATED = "updateLastUpdated"


MarkCompleteCallback = Callable[[List[PathAndCacheKey], IndexResultType], None]


@dataclass
class IndexUpdateProgress:
    """Progress reported by an index while it applies one batch."""

    progress: float
    description: str


class IndexingStatus(Enum):
    LOADING = "loading"
    INDEXING = "indexing"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    FAILED = "failed"
    DISABLED = "disabled"
    DONE = "done"


@dataclass
class IndexingProgressUpdate:
    """Event yielded by the orchestrator to whoever drives indexing."""

    progress: float
    description: str
    status: IndexingStatus
    should_clear_indexes: Optional[bool] = None
    debug_info: Optional[str] = None


@dataclass
class Chunk:
    """A line-aligned slice of a file."""

    content: str
    start_line: int
    end_line: int
    index: int
    path: str = ""
    cache_key: str = ""


@dataclass
class SearchHit:
    """A chunk returned by full-text or vector retrieval."""

    path: str
    start_line: int
    end_line: int
    content: str
    score: float
