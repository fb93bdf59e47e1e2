"""Error classification for indexing failures."""

import re
import sqlite3
import traceback
from enum import Enum
from typing import Optional

from ..services.embedding_provider import EmbeddingProviderError


class ErrorKind(Enum):
    CORRUPTION = "corruption"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


# sqlite result code names whose presence means the index should be rebuilt
_CORRUPTION_CODES = (
    "SQLITE_CONSTRAINT",
    "SQLITE_ERROR",
    "SQLITE_CORRUPT",
    "SQLITE_IOERR",
    "SQLITE_FULL",
    "SQLITE_NOTADB",
)
_TRANSIENT_CODES = ("SQLITE_BUSY", "SQLITE_LOCKED")

_CORRUPTION_PATTERNS = [
    re.compile(r"Invalid argument error: Values length \d+ is less than the length \(\d+\) multiplied by the value size"),
    re.compile(r"vector length mismatch", re.IGNORECASE),
    re.compile(r"SQLITE_(CONSTRAINT|ERROR|CORRUPT|IOERR|FULL|NOTADB)"),
    re.compile(r"constraint failed", re.IGNORECASE),
    re.compile(r"database disk image is malformed", re.IGNORECASE),
    re.compile(r"file is not a database", re.IGNORECASE),
    re.compile(r"disk I/O error", re.IGNORECASE),
    re.compile(r"database or disk is full", re.IGNORECASE),
    # tantivy, e.g. an unreadable meta.json
    re.compile(r"Data corrupted", re.IGNORECASE),
    re.compile(r"Meta file cannot be deserialized", re.IGNORECASE),
]
_TRANSIENT_PATTERNS = [
    re.compile(r"SQLITE_(BUSY|LOCKED)"),
    re.compile(r"database (table )?is locked", re.IGNORECASE),
    re.compile(r"database is busy", re.IGNORECASE),
]


def root_cause(err: BaseException) -> BaseException:
    """Follow ``__cause__``/``__context__`` to the innermost exception."""
    seen = set()
    current = err
    while id(current) not in seen:
        seen.add(id(current))
        nxt = current.__cause__ or current.__context__
        if nxt is None:
            break
        current = nxt
    return current


def _sqlite_code_name(err: BaseException) -> Optional[str]:
    if isinstance(err, sqlite3.Error):
        return getattr(err, "sqlite_errorname", None)
    return None


def classify_error(err: BaseException) -> ErrorKind:
    """Decide whether an indexing failure means the indexes are corrupt.

    The sqlite driver's result code is used when available; otherwise the
    message of the error and its causes is matched against known signatures.
    Busy/locked errors are transient and never ask for a rebuild.
    """
    current: Optional[BaseException] = err
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        code = _sqlite_code_name(current)
        if code:
            if code.startswith(_TRANSIENT_CODES):
                return ErrorKind.TRANSIENT
            if code.startswith(_CORRUPTION_CODES):
                return ErrorKind.CORRUPTION

        message = str(current)
        if any(p.search(message) for p in _TRANSIENT_PATTERNS):
            return ErrorKind.TRANSIENT
        if any(p.search(message) for p in _CORRUPTION_PATTERNS):
            return ErrorKind.CORRUPTION
        current = current.__cause__ or current.__context__

    return ErrorKind.UNKNOWN


def is_embedding_failure(err: BaseException) -> bool:
    return isinstance(err, EmbeddingProviderError) or isinstance(
        root_cause(err), EmbeddingProviderError
    )


def minimal_stack_trace(err: BaseException, frames: int = 3, limit: int = 1000) -> str:
    """Short diagnostic excerpt: the error line plus its innermost frames."""
    summary = traceback.extract_tb(err.__traceback__)[-frames:]
    lines = [f"{type(err).__name__}: {err}"]
    lines.extend(
        f"  at {frame.name} ({frame.filename}:{frame.lineno})" for frame in summary
    )
    text = "\n".join(lines)
    return text if len(text) <= limit else text[: limit - 3] + "..."
