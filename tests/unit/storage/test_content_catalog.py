"""Tests for the content catalog and the sqlite index store."""

import pytest

from codebase_indexer.indexing.types import IndexResultType, IndexTag, PathAndCacheKey
from codebase_indexer.storage.catalog import ContentCatalog
from codebase_indexer.storage.index_store import IndexStore


MAIN = IndexTag("/repo", "main", "chunks")
FEATURE = IndexTag("/repo", "feature", "chunks")


class TestContentCatalog:
    def test_compute_records_entry_and_global_owner(self, catalog):
        catalog.mark_complete(
            MAIN, [PathAndCacheKey("/repo/a.py", "k1")], IndexResultType.COMPUTE, {"/repo/a.py": 5.0}
        )

        entries = catalog.list_entries(MAIN)
        assert [(e.path, e.cache_key, e.last_updated) for e in entries] == [
            ("/repo/a.py", "k1", 5.0)
        ]
        assert catalog.find_global_owners("k1", "chunks") == [MAIN]

    def test_find_global_owner_excludes_tag(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)

        assert catalog.find_global_owner("k1", "chunks", exclude=MAIN) is None
        assert catalog.find_global_owner("k1", "chunks", exclude=FEATURE) == MAIN

    def test_global_owner_is_per_artifact(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)

        assert catalog.find_global_owners("k1", "code_snippets") == []

    def test_remove_keeps_owner_while_another_path_uses_key(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)
        catalog.upsert_entry(MAIN, "/repo/copy.py", "k1", 1.0)

        catalog.remove_entry(MAIN, "/repo/a.py", "k1")
        assert catalog.find_global_owners("k1", "chunks") == [MAIN]

        catalog.remove_entry(MAIN, "/repo/copy.py", "k1")
        assert catalog.find_global_owners("k1", "chunks") == []
        assert not catalog.is_referenced("k1", "chunks")

    def test_remove_ignores_entry_with_newer_key(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "new", 2.0)

        catalog.remove_entry(MAIN, "/repo/a.py", "old")

        assert [e.cache_key for e in catalog.list_entries(MAIN)] == ["new"]

    def test_replacing_key_releases_old_global_owner(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "old", 1.0)

        catalog.upsert_entry(MAIN, "/repo/a.py", "new", 2.0)

        assert catalog.find_global_owners("old", "chunks") == []
        assert catalog.find_global_owners("new", "chunks") == [MAIN]
        assert not catalog.is_referenced("old", "chunks")

    def test_replacing_key_keeps_owner_used_by_another_path(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "old", 1.0)
        catalog.upsert_entry(MAIN, "/repo/copy.py", "old", 1.0)

        catalog.upsert_entry(MAIN, "/repo/a.py", "new", 2.0)

        assert catalog.find_global_owners("old", "chunks") == [MAIN]

    def test_update_last_updated_only_touches_timestamp(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)

        catalog.mark_complete(
            MAIN,
            [PathAndCacheKey("/repo/a.py", "k1")],
            IndexResultType.UPDATE_LAST_UPDATED,
            {"/repo/a.py": 9.0},
        )

        entry = catalog.list_entries(MAIN)[0]
        assert entry.cache_key == "k1"
        assert entry.last_updated == 9.0

    def test_clear_tag_leaves_other_tags(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)
        catalog.upsert_entry(FEATURE, "/repo/a.py", "k1", 1.0)

        catalog.clear_tag(MAIN)

        assert catalog.list_entries(MAIN) == []
        assert catalog.find_global_owners("k1", "chunks") == [FEATURE]
        assert len(catalog.list_entries(FEATURE)) == 1

    def test_count_entries_groups_by_artifact(self, catalog):
        catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)
        catalog.upsert_entry(MAIN, "/repo/b.py", "k2", 1.0)
        catalog.upsert_entry(IndexTag("/repo", "main", "code_snippets"), "/repo/a.py", "k1", 1.0)

        assert catalog.count_entries() == {"chunks": 2, "code_snippets": 1}


class TestIndexStore:
    def test_nested_transaction_rolls_back_as_a_unit(self, store):
        catalog = ContentCatalog(store)

        with pytest.raises(RuntimeError):
            with store.transaction():
                catalog.upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)
                with store.transaction():
                    catalog.upsert_entry(MAIN, "/repo/b.py", "k2", 1.0)
                raise RuntimeError("boom")

        assert catalog.list_entries(MAIN) == []

    def test_data_survives_reopen(self, tmp_path):
        with IndexStore(tmp_path / "idx") as first:
            ContentCatalog(first).upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)

        with IndexStore(tmp_path / "idx") as second:
            assert len(ContentCatalog(second).list_entries(MAIN)) == 1

    def test_reset_removes_everything(self, store):
        ContentCatalog(store).upsert_entry(MAIN, "/repo/a.py", "k1", 1.0)
        store.fts_dir.mkdir(parents=True)
        (store.fts_dir / "segment").write_text("data")

        store.reset()

        assert not store.table_exists("tag_catalog")
        assert not store.fts_dir.exists()
        assert ContentCatalog(store).list_entries(MAIN) == []

    def test_closed_store_refuses_queries(self, tmp_path):
        index_store = IndexStore(tmp_path / "idx")
        index_store.close()

        with pytest.raises(RuntimeError, match="closed"):
            index_store.fetchall("SELECT 1")
