"""Code snippet artifact index: top-level and nested definitions per file."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set

from tree_sitter_language_pack import get_parser

from ..storage.catalog import ContentCatalog
from ..storage.index_store import IndexStore
from .codebase_index import CodebaseIndex
from .refresh_index import compute_cache_key, decode_text
from .types import (
    IndexResultType,
    IndexTag,
    IndexUpdateProgress,
    MarkCompleteCallback,
    PathAndCacheKey,
    RefreshIndexResults,
)

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES: Dict[str, str] = {
    "py": "python",
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "tsx",
    "java": "java",
    "go": "go",
    "rs": "rust",
    "rb": "ruby",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cc": "cpp",
    "hpp": "cpp",
    "cs": "csharp",
    "php": "php",
    "kt": "kotlin",
    "swift": "swift",
    "scala": "scala",
    "lua": "lua",
}

DEFINITION_TYPES: Set[str] = {
    "function_definition",
    "function_declaration",
    "function_item",
    "method_definition",
    "method_declaration",
    "method",
    "singleton_method",
    "class_definition",
    "class_declaration",
    "class_specifier",
    "class",
    "module",
    "interface_declaration",
    "struct_item",
    "struct_specifier",
    "enum_item",
    "enum_declaration",
    "trait_item",
    "impl_item",
    "type_declaration",
    "type_alias_declaration",
    "object_declaration",
    "protocol_declaration",
}

MAX_SNIPPET_CHARS = 4000


@dataclass
class CodeSnippet:
    title: str
    signature: str
    content: str
    start_line: int
    end_line: int
    kind: str


def _node_name(node: Any) -> Optional[str]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        # impl blocks name their type, C/C++ functions nest the name in a declarator
        name_node = node.child_by_field_name("type") or node.child_by_field_name(
            "declarator"
        )
    if name_node is None:
        return None
    return name_node.text.decode("utf-8", errors="replace").split("(")[0].strip()


def _signature(text: str) -> str:
    first = text.split("\n", 1)[0].rstrip()
    for terminator in ("{", ":"):
        if first.endswith(terminator):
            first = first[: -len(terminator)].rstrip()
    return first


def extract_snippets(content: str, language: str) -> List[CodeSnippet]:
    """Walk the syntax tree and collect named definitions in source order."""
    parser = get_parser(language)
    tree = parser.parse(bytes(content, "utf8"))

    snippets: List[CodeSnippet] = []
    stack = [tree.root_node]
    while stack:
        node = stack.pop()
        if node.type in DEFINITION_TYPES:
            name = _node_name(node)
            if name:
                text = node.text.decode("utf-8", errors="replace")
                snippets.append(
                    CodeSnippet(
                        title=name,
                        signature=_signature(text),
                        content=text[:MAX_SNIPPET_CHARS],
                        start_line=node.start_point[0] + 1,
                        end_line=node.end_point[0] + 1,
                        kind=node.type,
                    )
                )
        stack.extend(reversed(node.children))

    return snippets


class CodeSnippetsCodebaseIndex(CodebaseIndex):
    artifact_id = "code_snippets"
    relative_expected_time = 1.0

    def __init__(
        self,
        store: IndexStore,
        catalog: ContentCatalog,
        read_bytes: Callable[[str], bytes],
    ):
        super().__init__(store, catalog)
        self.read_bytes = read_bytes
        self._init_database()

    def _init_database(self) -> None:
        self.store.executescript(
            """
            CREATE TABLE IF NOT EXISTS code_snippets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cache_key TEXT NOT NULL,
                path TEXT NOT NULL,
                title TEXT NOT NULL,
                signature TEXT NOT NULL,
                kind TEXT NOT NULL,
                content TEXT NOT NULL,
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                UNIQUE (cache_key, title, start_line)
            );
            CREATE TABLE IF NOT EXISTS code_snippets_tags (
                tag TEXT NOT NULL,
                path TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                UNIQUE (tag, path, cache_key)
            );
            CREATE INDEX IF NOT EXISTS idx_snippets_key ON code_snippets (cache_key);
            """
        )

    @staticmethod
    def language_for(path: str) -> Optional[str]:
        return EXTENSION_LANGUAGES.get(Path(path).suffix.lstrip(".").lower())

    def _compute_one(self, tag: IndexTag, item: PathAndCacheKey) -> bool:
        language = self.language_for(item.path)
        if language is not None:
            try:
                data = self.read_bytes(item.path)
            except FileNotFoundError:
                logger.debug(f"{item.path} vanished before snippets were extracted")
                return False
            if compute_cache_key(data) != item.cache_key:
                logger.debug(f"{item.path} changed while indexing, skipping")
                return False

            self.store.connection.executemany(
                """
                INSERT OR IGNORE INTO code_snippets
                    (cache_key, path, title, signature, kind, content, start_line, end_line)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (item.cache_key, item.path, s.title, s.signature, s.kind, s.content, s.start_line, s.end_line)
                    for s in extract_snippets(decode_text(data), language)
                ],
            )
        self._attach(tag, item)
        return True

    def _attach(self, tag: IndexTag, item: PathAndCacheKey) -> None:
        self.store.connection.execute(
            "INSERT OR IGNORE INTO code_snippets_tags (tag, path, cache_key) VALUES (?, ?, ?)",
            (tag.to_string(), item.path, item.cache_key),
        )

    def _detach(self, tag: IndexTag, item: PathAndCacheKey) -> None:
        self.store.connection.execute(
            "DELETE FROM code_snippets_tags WHERE tag = ? AND path = ? AND cache_key = ?",
            (tag.to_string(), item.path, item.cache_key),
        )

    def _has_snippets(self, cache_key: str) -> bool:
        return bool(
            self.store.fetchone(
                "SELECT 1 FROM code_snippets WHERE cache_key = ? LIMIT 1", (cache_key,)
            )
        )

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
            with self.store.transaction() as conn:
                for item in results.delete:
                    self._detach(tag, item)
                mark_complete(results.delete, IndexResultType.DELETE)
                for key in {item.cache_key for item in results.delete}:
                    if self.is_orphaned(key):
                        conn.execute("DELETE FROM code_snippets WHERE cache_key = ?", (key,))
            done += len(results.delete)
            yield self._progress(done, total, self._describe("Removed snippets for", results.delete))

        if results.remove_tag:
            with self.store.transaction():
                for item in results.remove_tag:
                    self._detach(tag, item)
                mark_complete(results.remove_tag, IndexResultType.REMOVE_TAG)
            done += len(results.remove_tag)
            yield self._progress(done, total, self._describe("Detached snippets for", results.remove_tag))

        for item in results.compute:
            with self.store.transaction():
                if self._has_snippets(item.cache_key):
                    self._attach(tag, item)
                    completed = True
                else:
                    completed = self._compute_one(tag, item)
                if completed:
                    mark_complete([item], IndexResultType.COMPUTE)
            done += 1
            yield self._progress(done, total, f"Extracting snippets from {item.path}")

        for item in results.add_tag:
            with self.store.transaction():
                # The same content under a parseable name may have no snippets yet
                if self._has_snippets(item.cache_key) or self.language_for(item.path) is None:
                    self._attach(tag, item)
                    completed = True
                else:
                    completed = self._compute_one(tag, item)
                if completed:
                    mark_complete([item], IndexResultType.ADD_TAG)
            done += 1
        if results.add_tag:
            yield self._progress(done, total, self._describe("Reused snippets for", results.add_tag))

    def clear_tag(self, tag: IndexTag, orphaned_keys: Set[str]) -> None:
        with self.store.transaction() as conn:
            conn.execute("DELETE FROM code_snippets_tags WHERE tag = ?", (tag.to_string(),))
            for key in orphaned_keys:
                conn.execute("DELETE FROM code_snippets WHERE cache_key = ?", (key,))

    def get_snippets(self, tags: Sequence[IndexTag], path: str) -> List[CodeSnippet]:
        """Snippets for ``path`` as seen by any of the given tags."""
        found: List[CodeSnippet] = []
        for tag in tags:
            own = IndexTag(tag.directory, tag.branch, self.artifact_id).to_string()
            rows = self.store.fetchall(
                """
                SELECT s.title, s.signature, s.content, s.start_line, s.end_line, s.kind
                FROM code_snippets s
                JOIN code_snippets_tags t ON t.cache_key = s.cache_key
                WHERE t.tag = ? AND t.path = ?
                ORDER BY s.start_line
                """,
                (own, path),
            )
            found.extend(CodeSnippet(*row) for row in rows)
        return found
