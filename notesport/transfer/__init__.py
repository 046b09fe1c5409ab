"""Batch export and import for notesport."""

from .orchestrator import TransferOrchestrator, derive_folder, discover_files, parse_file
from .paths import PathAllocator, attachment_path, restore_name, safe_name

__all__ = [
    "TransferOrchestrator",
    "derive_folder",
    "discover_files",
    "parse_file",
    "PathAllocator",
    "attachment_path",
    "restore_name",
    "safe_name",
]
