"""
Error taxonomy for notesport.

Per-item errors (decode, conversion, bridge, filesystem) are caught by the
transfer orchestrator and recorded in the batch result. Only
ConfigurationError aborts a batch, and it is raised before any item runs.
"""


class NotesportError(Exception):
    """Base class for every error raised by notesport."""


class DecodeError(NotesportError):
    """A note blob could not be decoded."""


class MalformedHeader(DecodeError):
    """The blob does not start with the expected envelope, or the envelope is corrupt."""


class UnsupportedVersion(DecodeError):
    """The envelope or document declares a version this decoder does not understand."""


class TruncatedStream(DecodeError):
    """A declared length runs past the end of the available bytes."""


class CorruptRunTable(DecodeError):
    """Attribute runs are out of range or split a character."""


class EncodeError(NotesportError):
    """A document could not be encoded into a note blob."""


class ConversionError(NotesportError):
    """An imported text artifact could not be parsed."""


class ConflictUnresolved(NotesportError):
    """An identity conflict was left unresolved by the caller."""


class BridgeError(NotesportError):
    """The automation bridge reported a failure; the message is passed through verbatim."""


class NoteNotFound(NotesportError):
    """The store has no row for the requested identifier."""

    def __init__(self, identifier: str):
        super().__init__(f"Note not found: {identifier}")
        self.identifier = identifier


class InvalidTransition(NotesportError):
    """A transfer item was asked to leave a terminal state."""


class ConfigurationError(NotesportError):
    """Invalid batch configuration, raised before any item is processed."""
