"""Note stores for notesport."""

from .base import NoteStore, RowSummary, StoreRow
from .duckdb_store import DuckDBNoteStore

__all__ = ["NoteStore", "RowSummary", "StoreRow", "DuckDBNoteStore"]
