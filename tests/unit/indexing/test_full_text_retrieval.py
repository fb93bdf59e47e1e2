"""Tests for the Tantivy-backed full-text index."""

import pytest

from codebase_indexer.indexing.chunk_index import ChunkCodebaseIndex
from codebase_indexer.indexing.full_text_index import FullTextSearchCodebaseIndex
from codebase_indexer.indexing.refresh_index import Reconciler
from codebase_indexer.indexing.types import IndexTag


@pytest.fixture
def indexes(store, catalog, workspace):
    chunk_index = ChunkCodebaseIndex(store, catalog, workspace.read_bytes, max_chunk_size=200)
    fts = FullTextSearchCodebaseIndex(store, catalog)
    yield chunk_index, fts
    fts.close()


def _sync(indexes, catalog, workspace, directory="/repo", branch="main"):
    reconciler = Reconciler(catalog)
    stats = workspace.stat_files(list(workspace.list_files(directory)))
    for index in indexes:
        tag = IndexTag(directory, branch, index.artifact_id)
        outcome = reconciler.reconcile(tag, stats, workspace.read_bytes)
        list(index.update(tag, outcome.results, outcome.mark_complete))


class TestFullTextSearchIndex:
    def test_finds_indexed_terms(self, indexes, catalog, workspace):
        workspace.write("/repo/auth.py", "def authenticate_user(token):\n    return token\n")
        workspace.write("/repo/math.py", "def add(a, b):\n    return a + b\n")
        _sync(indexes, catalog, workspace)
        fts = indexes[1]

        hits = fts.retrieve([IndexTag("/repo", "main", "")], "authenticate user")

        assert [h.path for h in hits] == ["/repo/auth.py"]
        assert hits[0].start_line == 1
        assert "authenticate_user" in hits[0].content

    def test_results_limited_to_requested_tags(self, indexes, catalog, workspace):
        workspace.write("/repo/a.py", "needle = 1\n")
        workspace.write("/other/b.py", "needle = 2\n")
        _sync(indexes, catalog, workspace, "/repo")
        _sync(indexes, catalog, workspace, "/other")
        fts = indexes[1]

        hits = fts.retrieve([IndexTag("/other", "main", "")], "needle")

        assert [h.path for h in hits] == ["/other/b.py"]

    def test_shared_content_is_written_once(self, indexes, catalog, workspace):
        workspace.write("/repo/a.py", "shared_content = True\n")
        _sync(indexes, catalog, workspace, branch="main")
        _sync(indexes, catalog, workspace, branch="feature")
        fts = indexes[1]

        assert fts.get_document_count() == 1
        tags = [IndexTag("/repo", "main", ""), IndexTag("/repo", "feature", "")]
        assert len(fts.retrieve(tags, "shared_content")) == 1

    def test_deleted_file_drops_documents(self, indexes, catalog, workspace):
        workspace.write("/repo/a.py", "temporary_marker = 1\n")
        _sync(indexes, catalog, workspace)
        workspace.delete("/repo/a.py")
        _sync(indexes, catalog, workspace)
        fts = indexes[1]

        assert fts.get_document_count() == 0
        assert fts.retrieve([IndexTag("/repo", "main", "")], "temporary_marker") == []

    def test_empty_query_returns_nothing(self, indexes):
        assert indexes[1].retrieve([IndexTag("/repo", "main", "")], "  ?? ") == []
