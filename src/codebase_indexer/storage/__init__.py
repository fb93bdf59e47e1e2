"""SQLite storage for the catalog and the index artifacts."""

from .index_store import IndexStore
from .catalog import CatalogEntry, ContentCatalog

__all__ = ["IndexStore", "CatalogEntry", "ContentCatalog"]
