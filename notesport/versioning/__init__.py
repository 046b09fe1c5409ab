"""Git history for export directories."""

from .manager import VersionManager

__all__ = ["VersionManager"]
