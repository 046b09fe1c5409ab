"""
Automation bridge interface for notesport.

This module defines the capability interface through which every write
reaches the host application. Conversion code never calls a bridge; only
the transfer orchestrator does.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import AttachmentRef


class AutomationBridge(ABC):
    """
    Abstract base class for automation bridges.

    Every failure is raised as BridgeError carrying the host's message
    verbatim.
    """

    supports_update: bool = True

    @abstractmethod
    def create(self, title: str, markup: str, folder: str) -> str:
        """
        Create a note.

        Args:
            title: Note title
            markup: Full HTML markup of the note, title included
            folder: Target folder name; created when missing

        Returns:
            External identifier of the new note
        """
        pass

    @abstractmethod
    def update(self, external_id: str, title: Optional[str] = None,
               markup: Optional[str] = None) -> None:
        """
        Update a note in place.

        Args:
            external_id: Identifier of the note to change
            title: New title, or None to keep the current one
            markup: New body markup (without the title), or None to keep the current body
        """
        pass

    @abstractmethod
    def delete(self, external_id: str) -> None:
        """Delete a note."""
        pass

    @abstractmethod
    def fetch_attachment_bytes(self, ref: AttachmentRef) -> bytes:
        """Return the payload of an attachment."""
        pass
