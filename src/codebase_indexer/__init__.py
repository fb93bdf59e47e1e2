"""
Codebase Indexer - incremental, content-addressed indexing of source trees.

Keeps chunk, full-text, vector and code snippet indexes in sync with the
files of one or more workspace directories, recomputing only what changed
and sharing artifacts across branches and directories with identical content.
"""

__version__ = "0.3.0"
