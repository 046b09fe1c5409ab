"""
Store interface for notesport.

This module defines the read-only interface the transfer orchestrator uses
to reach note blobs and their metadata.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..models import AttachmentRef


class StoreRow(BaseModel):
    """One note as held by the store: the raw blob plus metadata."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Store identifier of the note")
    data: bytes = Field(default=b"", description="Gzipped note blob")
    folder: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    attachments: Tuple[AttachmentRef, ...] = ()
    tables: Dict[str, List[List[str]]] = Field(
        default_factory=dict,
        description="Table cell text keyed by table attachment identifier"
    )


class RowSummary(BaseModel):
    """Listing entry used for selection and conflict detection."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    title: str
    folder: Optional[str] = None
    modified_at: Optional[datetime] = None


class NoteStore(ABC):
    """
    Abstract base class for note stores.

    Stores are read-only sources; every write goes through the automation
    bridge.
    """

    @abstractmethod
    def fetch_row(self, identifier: str) -> StoreRow:
        """
        Fetch one note.

        Args:
            identifier: Store identifier of the note

        Returns:
            The stored row

        Raises:
            NoteNotFound: If no note has that identifier
        """
        pass

    @abstractmethod
    def list_rows(self, folder: Optional[str] = None, limit: Optional[int] = None) -> List[RowSummary]:
        """
        List notes, optionally restricted to one folder.

        Args:
            folder: Only list notes in this folder
            limit: Maximum number of rows to return

        Returns:
            Row summaries, most recently modified first
        """
        pass
