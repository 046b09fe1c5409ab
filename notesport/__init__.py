"""
notesport: moves notes between a note-taking application and plain files.

Decodes the application's gzip-compressed note blobs into a structural
Document model, converts Documents to and from Markdown, JSON and HTML
markup, and runs batch exports and imports.
"""

__version__ = "0.1.0"
__author__ = "notesport Project"

# Import main components
from .codec import NoteDecoder, decode, encode, encode_document
from .models import Document, TransferResult
from .store import DuckDBNoteStore
from .bridge import MockBridge, OsaScriptBridge
from .transfer import TransferOrchestrator
from .versioning import VersionManager

__all__ = [
    "NoteDecoder",
    "decode",
    "encode",
    "encode_document",
    "Document",
    "TransferResult",
    "DuckDBNoteStore",
    "MockBridge",
    "OsaScriptBridge",
    "TransferOrchestrator",
    "VersionManager",
]
