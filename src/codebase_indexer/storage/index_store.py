"""SQLite-backed storage handle shared by the catalog and every index.

One ``IndexStore`` owns one sqlite connection and the directory that holds
the full-text index. It is constructed explicitly and handed to whatever
needs it; nothing reaches it through module state.
"""

import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class IndexStore:
    """Connection owner with nestable transactions.

    ``transaction()`` may be entered recursively from the same thread; only
    the outermost block issues BEGIN and COMMIT (or ROLLBACK on error), so an
    index can write its artifact rows and the catalog rows in one unit.
    """

    DB_NAME = "index.sqlite"
    FTS_DIR_NAME = "fts"
    SCHEMA_VERSION = 1

    def __init__(self, index_dir: Path):
        self.index_dir = Path(index_dir)
        self.db_path = self.index_dir / self.DB_NAME
        self._lock = threading.RLock()
        self._depth = 0
        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self) -> None:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are managed explicitly
        self._conn = sqlite3.connect(
            str(self.db_path), check_same_thread=False, isolation_level=None
        )
        self._conn.execute("PRAGMA busy_timeout = 3000")
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)"
        )
        row = self._conn.execute("SELECT version FROM schema_version").fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )
        elif row[0] != self.SCHEMA_VERSION:
            logger.warning(
                f"Index schema version {row[0]} differs from {self.SCHEMA_VERSION}; "
                "clear the indexes if indexing fails"
            )

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("IndexStore is closed")
        return self._conn

    @property
    def fts_dir(self) -> Path:
        return self.index_dir / self.FTS_DIR_NAME

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self.connection
            outermost = self._depth == 0
            if outermost:
                conn.execute("BEGIN")
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outermost:
                    conn.execute("COMMIT")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self.connection.execute(sql, params)

    def executescript(self, script: str) -> None:
        with self._lock:
            self.connection.executescript(script)

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple]:
        with self._lock:
            return self.connection.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Tuple]:
        with self._lock:
            return self.connection.execute(sql, params).fetchone()

    def table_exists(self, name: str) -> bool:
        row = self.fetchone(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        )
        return row is not None

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def reset(self) -> None:
        """Delete the database and full-text directory, then reopen empty."""
        with self._lock:
            self.close()
            for suffix in ("", "-wal", "-shm"):
                candidate = Path(f"{self.db_path}{suffix}")
                if candidate.exists():
                    candidate.unlink()
            if self.fts_dir.exists():
                shutil.rmtree(self.fts_dir)
            logger.info(f"Removed index data under {self.index_dir}")
            self._connect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
