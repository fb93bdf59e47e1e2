"""Tests for refresh planning and catalog reconciliation."""

from codebase_indexer.indexing.refresh_index import (
    Reconciler,
    compute_cache_key,
    plan_refresh,
)
from codebase_indexer.indexing.types import (
    IndexResultType,
    IndexTag,
    PathAndCacheKey,
)


def _paths(items):
    return [item.path for item in items]


class TestPlanRefresh:
    """Pure diff between saved and current path -> cache key maps."""

    def test_new_files_are_computed(self):
        results = plan_refresh({}, {"/r/b.py": "k2", "/r/a.py": "k1"}, set())

        assert results.compute == [
            PathAndCacheKey("/r/a.py", "k1"),
            PathAndCacheKey("/r/b.py", "k2"),
        ]
        assert results.delete == [] and results.add_tag == [] and results.remove_tag == []

    def test_unchanged_state_plans_nothing(self):
        state = {"/r/a.py": "k1", "/r/b.py": "k2"}

        assert plan_refresh(state, dict(state), set()).is_empty()

    def test_removed_file_is_deleted(self):
        results = plan_refresh({"/r/a.py": "k1", "/r/b.py": "k2"}, {"/r/a.py": "k1"}, set())

        assert results.delete == [PathAndCacheKey("/r/b.py", "k2")]
        assert results.total() == 1

    def test_content_known_elsewhere_is_attached(self):
        results = plan_refresh({}, {"/r/a.py": "k1"}, {"k1"})

        assert results.compute == []
        assert results.add_tag == [PathAndCacheKey("/r/a.py", "k1")]

    def test_removed_file_with_shared_content_is_detached(self):
        results = plan_refresh({"/r/a.py": "k1"}, {}, {"k1"})

        assert results.delete == []
        assert results.remove_tag == [PathAndCacheKey("/r/a.py", "k1")]

    def test_modified_file_recomputes_and_deletes_old_key(self):
        results = plan_refresh({"/r/a.py": "old"}, {"/r/a.py": "new"}, set())

        assert results.compute == [PathAndCacheKey("/r/a.py", "new")]
        assert results.delete == [PathAndCacheKey("/r/a.py", "old")]

    def test_rename_keeps_artifact(self):
        results = plan_refresh({"/r/old.py": "k1"}, {"/r/new.py": "k1"}, set())

        assert results.compute == [PathAndCacheKey("/r/new.py", "k1")]
        assert results.delete == []
        assert results.remove_tag == [PathAndCacheKey("/r/old.py", "k1")]

    def test_duplicate_of_kept_file_is_attached(self):
        saved = {"/r/a.py": "k1"}
        current = {"/r/a.py": "k1", "/r/copy.py": "k1"}

        results = plan_refresh(saved, current, set())

        assert results.add_tag == [PathAndCacheKey("/r/copy.py", "k1")]
        assert results.compute == []

    def test_results_are_sorted_by_path(self):
        current = {f"/r/{name}.py": name for name in ["z", "m", "a", "q"]}

        results = plan_refresh({}, current, set())

        assert _paths(results.compute) == sorted(current)


class TestReconciler:
    """Reconciliation against the catalog and a workspace snapshot."""

    def _apply(self, outcome):
        """Record every planned operation as completed."""
        results = outcome.results
        outcome.mark_complete(results.compute, IndexResultType.COMPUTE)
        outcome.mark_complete(results.delete, IndexResultType.DELETE)
        outcome.mark_complete(results.add_tag, IndexResultType.ADD_TAG)
        outcome.mark_complete(results.remove_tag, IndexResultType.REMOVE_TAG)
        outcome.mark_complete(outcome.touched, IndexResultType.UPDATE_LAST_UPDATED)

    def _reconcile(self, reconciler, workspace, tag):
        stats = workspace.stat_files(list(workspace.list_files(tag.directory)))
        return reconciler.reconcile(tag, stats, workspace.read_bytes)

    def test_second_run_without_changes_is_empty(self, catalog, workspace):
        workspace.write("/repo/a.py", "print('a')\n")
        workspace.write("/repo/b.py", "print('b')\n")
        tag = IndexTag("/repo", "main", "chunks")
        reconciler = Reconciler(catalog)

        first = self._reconcile(reconciler, workspace, tag)
        assert len(first.results.compute) == 2
        self._apply(first)

        second = self._reconcile(reconciler, workspace, tag)
        assert second.results.is_empty()
        assert second.touched == []

    def test_unchanged_files_are_not_read(self, catalog, workspace):
        workspace.write("/repo/a.py", "x = 1\n")
        tag = IndexTag("/repo", "main", "chunks")
        reconciler = Reconciler(catalog)
        self._apply(self._reconcile(reconciler, workspace, tag))

        workspace.reads.clear()
        self._reconcile(reconciler, workspace, tag)

        assert workspace.reads == []

    def test_touched_file_with_same_content_updates_timestamp(self, catalog, workspace):
        workspace.write("/repo/a.py", "x = 1\n")
        tag = IndexTag("/repo", "main", "chunks")
        reconciler = Reconciler(catalog)
        self._apply(self._reconcile(reconciler, workspace, tag))

        workspace.touch("/repo/a.py")
        outcome = self._reconcile(reconciler, workspace, tag)

        assert outcome.results.is_empty()
        assert _paths(outcome.touched) == ["/repo/a.py"]
        self._apply(outcome)
        entry = catalog.list_entries(tag)[0]
        assert entry.last_updated == workspace.files["/repo/a.py"][1]

    def test_other_branch_reuses_content(self, catalog, workspace):
        workspace.write("/repo/a.py", "x = 1\n")
        reconciler = Reconciler(catalog)
        main = IndexTag("/repo", "main", "chunks")
        self._apply(self._reconcile(reconciler, workspace, main))

        feature = IndexTag("/repo", "feature", "chunks")
        outcome = self._reconcile(reconciler, workspace, feature)

        assert outcome.results.compute == []
        assert _paths(outcome.results.add_tag) == ["/repo/a.py"]

    def test_deleted_shared_content_is_only_detached(self, catalog, workspace):
        workspace.write("/repo/a.py", "x = 1\n")
        reconciler = Reconciler(catalog)
        main = IndexTag("/repo", "main", "chunks")
        feature = IndexTag("/repo", "feature", "chunks")
        self._apply(self._reconcile(reconciler, workspace, main))
        self._apply(self._reconcile(reconciler, workspace, feature))

        workspace.delete("/repo/a.py")
        outcome = self._reconcile(reconciler, workspace, feature)

        assert outcome.results.delete == []
        assert _paths(outcome.results.remove_tag) == ["/repo/a.py"]

    def test_deleted_unique_content_is_deleted(self, catalog, workspace):
        workspace.write("/repo/a.py", "x = 1\n")
        reconciler = Reconciler(catalog)
        tag = IndexTag("/repo", "main", "chunks")
        self._apply(self._reconcile(reconciler, workspace, tag))

        workspace.delete("/repo/a.py")
        outcome = self._reconcile(reconciler, workspace, tag)

        assert outcome.results.delete == [
            PathAndCacheKey("/repo/a.py", compute_cache_key("x = 1\n"))
        ]
        self._apply(outcome)
        assert catalog.list_entries(tag) == []
        assert not catalog.is_referenced(compute_cache_key("x = 1\n"), "chunks")

    def test_modified_file_round_trip(self, catalog, workspace):
        workspace.write("/repo/a.py", "x = 1\n")
        reconciler = Reconciler(catalog)
        tag = IndexTag("/repo", "main", "chunks")
        self._apply(self._reconcile(reconciler, workspace, tag))

        workspace.write("/repo/a.py", "x = 2\n")
        outcome = self._reconcile(reconciler, workspace, tag)
        self._apply(outcome)

        entries = catalog.list_entries(tag)
        assert [(e.path, e.cache_key) for e in entries] == [
            ("/repo/a.py", compute_cache_key("x = 2\n"))
        ]

    def test_only_paths_leaves_other_entries_alone(self, catalog, workspace):
        workspace.write("/repo/a.py", "a\n")
        workspace.write("/repo/b.py", "b\n")
        reconciler = Reconciler(catalog)
        tag = IndexTag("/repo", "main", "chunks")
        self._apply(self._reconcile(reconciler, workspace, tag))

        workspace.write("/repo/a.py", "a2\n")
        stats = workspace.stat_files(["/repo/a.py"])
        outcome = reconciler.reconcile(
            tag, stats, workspace.read_bytes, only_paths={"/repo/a.py"}
        )

        assert _paths(outcome.results.compute) == ["/repo/a.py"]
        assert _paths(outcome.results.delete) == ["/repo/a.py"]
        assert outcome.results.total() == 2

    def test_vanished_file_is_skipped(self, catalog, workspace):
        workspace.write("/repo/a.py", "a\n")
        stats = workspace.stat_files(["/repo/a.py"])
        workspace.delete("/repo/a.py")

        outcome = Reconciler(catalog).reconcile(
            IndexTag("/repo", "main", "chunks"), stats, workspace.read_bytes
        )

        assert outcome.results.is_empty()

    def test_hashes_are_memoized_until_cleared(self, catalog, workspace):
        workspace.write("/repo/a.py", "a\n")
        reconciler = Reconciler(catalog)
        stats = workspace.stat_files(["/repo/a.py"])

        reconciler.reconcile(IndexTag("/repo", "main", "chunks"), stats, workspace.read_bytes)
        reconciler.reconcile(IndexTag("/repo", "main", "code_snippets"), stats, workspace.read_bytes)
        assert workspace.reads == ["/repo/a.py"]

        reconciler.clear_memo()
        reconciler.reconcile(IndexTag("/repo", "main", "full_text_search"), stats, workspace.read_bytes)
        assert workspace.reads == ["/repo/a.py", "/repo/a.py"]

    def test_files_differing_only_in_invalid_bytes_are_distinct(self, catalog, workspace):
        workspace.write("/repo/a.py", b"x = '\xff'\n")
        workspace.write("/repo/b.py", b"x = '\xfe'\n")

        outcome = self._reconcile(Reconciler(catalog), workspace, IndexTag("/repo", "main", "chunks"))

        assert [item.cache_key for item in outcome.results.compute] == [
            compute_cache_key(b"x = '\xff'\n"),
            compute_cache_key(b"x = '\xfe'\n"),
        ]
        assert outcome.results.add_tag == []
