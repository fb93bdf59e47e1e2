"""Tests for tree-sitter snippet extraction and the snippets index."""

from codebase_indexer.indexing.snippets_index import (
    CodeSnippetsCodebaseIndex,
    extract_snippets,
)
from codebase_indexer.indexing.refresh_index import Reconciler
from codebase_indexer.indexing.types import IndexTag

PYTHON_SOURCE = '''\
class Greeter:
    def greet(self, name):
        return f"hello {name}"


def main():
    Greeter().greet("world")
'''


class TestExtractSnippets:
    def test_python_definitions_in_source_order(self):
        snippets = extract_snippets(PYTHON_SOURCE, "python")

        assert [s.title for s in snippets] == ["Greeter", "greet", "main"]
        assert [s.kind for s in snippets] == [
            "class_definition",
            "function_definition",
            "function_definition",
        ]

    def test_line_ranges_and_signature(self):
        greet = extract_snippets(PYTHON_SOURCE, "python")[1]

        assert (greet.start_line, greet.end_line) == (2, 3)
        assert greet.signature == "def greet(self, name)"

    def test_source_without_definitions(self):
        assert extract_snippets("x = 1\n", "python") == []


class TestCodeSnippetsIndex:
    def test_language_for_extension(self):
        assert CodeSnippetsCodebaseIndex.language_for("/r/a.py") == "python"
        assert CodeSnippetsCodebaseIndex.language_for("/r/a.TS") == "typescript"
        assert CodeSnippetsCodebaseIndex.language_for("/r/notes.txt") is None

    def test_update_stores_snippets_for_tag(self, store, catalog, workspace):
        workspace.write("/repo/app.py", PYTHON_SOURCE)
        index = CodeSnippetsCodebaseIndex(store, catalog, workspace.read_bytes)
        tag = IndexTag("/repo", "main", index.artifact_id)
        outcome = Reconciler(catalog).reconcile(
            tag, workspace.stat_files(["/repo/app.py"]), workspace.read_bytes
        )

        list(index.update(tag, outcome.results, outcome.mark_complete))

        titles = [s.title for s in index.get_snippets([tag], "/repo/app.py")]
        assert titles == ["Greeter", "greet", "main"]
        assert [e.path for e in catalog.list_entries(tag)] == ["/repo/app.py"]

    def test_unsupported_files_are_still_cataloged(self, store, catalog, workspace):
        workspace.write("/repo/readme.txt", "just text\n")
        index = CodeSnippetsCodebaseIndex(store, catalog, workspace.read_bytes)
        tag = IndexTag("/repo", "main", index.artifact_id)
        outcome = Reconciler(catalog).reconcile(
            tag, workspace.stat_files(["/repo/readme.txt"]), workspace.read_bytes
        )

        list(index.update(tag, outcome.results, outcome.mark_complete))

        assert index.get_snippets([tag], "/repo/readme.txt") == []
        assert len(catalog.list_entries(tag)) == 1

    def test_copy_of_text_file_under_source_name_gets_snippets(self, store, catalog, workspace):
        source = "def hello():\n    pass\n"
        workspace.write("/repo/notes.txt", source)
        index = CodeSnippetsCodebaseIndex(store, catalog, workspace.read_bytes)
        tag = IndexTag("/repo", "main", index.artifact_id)
        reconciler = Reconciler(catalog)
        outcome = reconciler.reconcile(
            tag, workspace.stat_files(["/repo/notes.txt"]), workspace.read_bytes
        )
        list(index.update(tag, outcome.results, outcome.mark_complete))

        workspace.write("/repo/hello.py", source)
        outcome = reconciler.reconcile(
            tag, workspace.stat_files(["/repo/notes.txt", "/repo/hello.py"]), workspace.read_bytes
        )
        assert [i.path for i in outcome.results.add_tag] == ["/repo/hello.py"]
        list(index.update(tag, outcome.results, outcome.mark_complete))

        assert [s.title for s in index.get_snippets([tag], "/repo/hello.py")] == ["hello"]
