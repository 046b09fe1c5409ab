"""Data models for notesport."""

from .document import (
    AttachmentRef,
    Block,
    Checklist,
    CodeLine,
    ColorTag,
    Document,
    Heading,
    InternalLink,
    ListItem,
    Paragraph,
    Run,
    Table,
    WireExtension,
    extract_hashtags,
    extract_internal_links,
    merge_runs,
    plain_runs,
    table_from_cells,
)
from .transfer import (
    ConflictStrategy,
    ExportFormat,
    ExportOptions,
    ImportConflict,
    ImportOptions,
    ItemState,
    JsonMode,
    TransferItem,
    TransferResult,
)

__all__ = [
    "AttachmentRef",
    "Block",
    "Checklist",
    "CodeLine",
    "ColorTag",
    "Document",
    "Heading",
    "InternalLink",
    "ListItem",
    "Paragraph",
    "Run",
    "Table",
    "WireExtension",
    "extract_hashtags",
    "extract_internal_links",
    "merge_runs",
    "plain_runs",
    "table_from_cells",
    "ConflictStrategy",
    "ExportFormat",
    "ExportOptions",
    "ImportConflict",
    "ImportOptions",
    "ItemState",
    "JsonMode",
    "TransferItem",
    "TransferResult",
]
