"""
Transfer models for notesport.

This module defines the per-item state machine, conflict descriptors, batch
options and the aggregated result returned by the transfer orchestrator.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidTransition


class ItemState(str, Enum):
    """Lifecycle of one transfer item."""

    PENDING = "pending"
    CONVERTING = "converting"
    CONFLICT_CHECK = "conflict_check"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    CONFLICT_UNRESOLVED = "conflict_unresolved"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    ItemState.SUCCEEDED,
    ItemState.SKIPPED,
    ItemState.CONFLICT_UNRESOLVED,
    ItemState.FAILED,
})

ALLOWED_TRANSITIONS: Dict[ItemState, frozenset] = {
    ItemState.PENDING: frozenset({ItemState.CONVERTING, ItemState.CONFLICT_CHECK}) | TERMINAL_STATES,
    ItemState.CONVERTING: frozenset({ItemState.CONFLICT_CHECK}) | TERMINAL_STATES,
    ItemState.CONFLICT_CHECK: frozenset({ItemState.CONVERTING}) | TERMINAL_STATES,
}


class ConflictStrategy(str, Enum):
    """How an identity conflict is handled during import."""

    SKIP = "skip"
    REPLACE = "replace"
    DUPLICATE = "duplicate"
    ASK = "ask"


class ExportFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"

    @property
    def extension(self) -> str:
        return "md" if self is ExportFormat.MARKDOWN else "json"


class JsonMode(str, Enum):
    MINIMAL = "minimal"
    FULL = "full"


class ImportConflict(BaseModel):
    """An import whose title and folder match a document already present."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Title of the document being imported")
    folder: str = Field(..., description="Resolved target folder")
    existing_id: str = Field(..., description="Identifier of the document already present")
    source: str = Field(..., description="Source artifact of the import")


class TransferItem(BaseModel):
    """
    One unit of work in a batch: a note identifier on export, a file on import.

    Terminal states are final; attempting to leave one raises InvalidTransition.
    """

    source: str = Field(..., description="Note identifier or source file path")
    title: Optional[str] = None
    folder: Optional[str] = None
    target: Optional[str] = Field(
        None,
        description="Written file path on export, created note id on import"
    )
    state: ItemState = ItemState.PENDING
    history: List[ItemState] = Field(default_factory=list)

    def transition(self, new_state: ItemState) -> None:
        """
        Move to a new state.

        Args:
            new_state: The state to enter

        Raises:
            InvalidTransition: If the item is already terminal or the move is not allowed
        """
        if self.state.is_terminal:
            raise InvalidTransition(
                f"Item {self.source} is already {self.state.value}; cannot move to {new_state.value}"
            )
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {new_state.value}")
        self.history.append(self.state)
        self.state = new_state


class ExportOptions(BaseModel):
    """Options for a batch export."""

    output_dir: Optional[Path] = Field(None, description="Root directory for written artifacts")
    format: ExportFormat = ExportFormat.MARKDOWN
    json_mode: JsonMode = JsonMode.MINIMAL
    include_frontmatter: bool = True
    copy_attachments: bool = False
    dry_run: bool = False


class ImportOptions(BaseModel):
    """Options for a batch import."""

    target_folder: Optional[str] = Field(
        None,
        description="Folder for every imported note; overrides header and directory folders"
    )
    conflict_strategy: ConflictStrategy = ConflictStrategy.ASK
    dry_run: bool = False
    recursive: bool = True


class TransferResult(BaseModel):
    """Aggregated outcome of one batch."""

    direction: Literal["export", "import"]
    total: int = 0
    succeeded: List[TransferItem] = Field(default_factory=list)
    skipped: List[Tuple[TransferItem, str]] = Field(default_factory=list)
    conflicts: List[ImportConflict] = Field(default_factory=list)
    failures: List[Tuple[TransferItem, str]] = Field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    @property
    def exported_count(self) -> int:
        return len(self.succeeded) if self.direction == "export" else 0

    @property
    def imported_count(self) -> int:
        return len(self.succeeded) if self.direction == "import" else 0

    @property
    def completed(self) -> int:
        """Number of items that reached a terminal state."""
        return len(self.succeeded) + len(self.skipped) + len(self.conflicts) + len(self.failures)

    def summary(self) -> Dict[str, int]:
        """Counts per outcome for reporting."""
        return {
            "succeeded": len(self.succeeded),
            "skipped": len(self.skipped),
            "conflicts": len(self.conflicts),
            "failures": len(self.failures),
        }
