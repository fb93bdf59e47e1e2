"""
Shared fixtures for unit tests.

Provides an in-memory workspace, a deterministic embedding provider and
factories for stores and indexers backed by a temporary directory.
"""

import hashlib
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pytest

from codebase_indexer.config import Config
from codebase_indexer.indexing.codebase_indexer import CodebaseIndexer
from codebase_indexer.indexing.tokens import PauseToken
from codebase_indexer.indexing.types import FileStats
from codebase_indexer.services.embedding_provider import (
    EmbeddingProvider,
    EmbeddingProviderError,
)
from codebase_indexer.services.workspace import Workspace
from codebase_indexer.storage.catalog import ContentCatalog
from codebase_indexer.storage.index_store import IndexStore


class FakeWorkspace(Workspace):
    """Files kept in a dict; every write advances a fake clock."""

    def __init__(self, dirs: Optional[List[str]] = None):
        self.dirs = list(dirs or ["/repo"])
        self.files: Dict[str, Tuple[bytes, float]] = {}
        self.branches: Dict[str, str] = {}
        self.clock = 1000.0
        self.reads: List[str] = []

    def write(self, path: str, content: Union[str, bytes]) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.clock += 1.0
        self.files[path] = (content, self.clock)

    def touch(self, path: str) -> None:
        content, _ = self.files[path]
        self.write(path, content)

    def delete(self, path: str) -> None:
        del self.files[path]

    def get_workspace_dirs(self) -> List[str]:
        return list(self.dirs)

    def list_files(self, directory: str) -> Iterable[str]:
        prefix = directory.rstrip("/") + "/"
        for path in sorted(self.files):
            if path.startswith(prefix):
                yield path

    def stat_files(self, paths: List[str]) -> Dict[str, FileStats]:
        return {
            p: FileStats(self.files[p][1], len(self.files[p][0]))
            for p in paths
            if p in self.files
        }

    def read_bytes(self, path: str) -> bytes:
        self.reads.append(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path][0]

    def get_branch(self, directory: str) -> str:
        return self.branches.get(directory, "main")

    def get_repo_name(self, directory: str) -> Optional[str]:
        return os.path.basename(directory)


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic 8-dimensional embeddings derived from word hashes."""

    DIMENSIONS = 8

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.embedded_texts: List[str] = []

    @staticmethod
    def vector_for(text: str) -> List[float]:
        vector = [0.0] * FakeEmbeddingProvider.DIMENSIONS
        for word in text.lower().split():
            digest = hashlib.md5(word.encode("utf-8")).digest()
            vector[digest[0] % FakeEmbeddingProvider.DIMENSIONS] += 1.0
        return vector

    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        return self.vector_for(text)

    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        if self.fail:
            raise EmbeddingProviderError("fake", "service unavailable")
        self.embedded_texts.extend(texts)
        return [self.vector_for(t) for t in texts]

    def health_check(self) -> bool:
        return not self.fail

    def get_model_info(self) -> Dict[str, int]:
        return {"dimensions": self.DIMENSIONS}

    def get_provider_name(self) -> str:
        return "fake"

    def get_current_model(self) -> str:
        return "fake-8d"

    @property
    def max_batch_size(self) -> int:
        return 4


@pytest.fixture
def store(tmp_path: Path):
    index_store = IndexStore(tmp_path / "index")
    yield index_store
    index_store.close()


@pytest.fixture
def catalog(store: IndexStore) -> ContentCatalog:
    return ContentCatalog(store)


@pytest.fixture
def workspace() -> FakeWorkspace:
    return FakeWorkspace()


@pytest.fixture
def config() -> Config:
    config = Config(workspace_dirs=[Path("/repo")])
    config.indexing.pause_poll_interval = 0.01
    return config


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def make_indexer(config: Config, workspace: FakeWorkspace, store: IndexStore):
    """Factory for indexers sharing the test's store and workspace."""
    created: List[CodebaseIndexer] = []

    def _make(
        embedding_provider: Optional[EmbeddingProvider] = None,
        pause_token: Optional[PauseToken] = None,
        **indexing_overrides,
    ) -> CodebaseIndexer:
        for key, value in indexing_overrides.items():
            setattr(config.indexing, key, value)
        indexer = CodebaseIndexer(
            config, workspace, store, embedding_provider, pause_token
        )
        created.append(indexer)
        return indexer

    yield _make

    for indexer in created:
        indexer.close()
