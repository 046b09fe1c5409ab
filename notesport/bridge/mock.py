"""
Mock automation bridge for testing notesport.

This module provides an in-memory bridge that records every call, so the
transfer pipeline can be exercised and inspected without a host
application. Dry runs never reach a bridge at all.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from ..errors import BridgeError
from ..models import AttachmentRef
from .base import AutomationBridge


class BridgeCall(NamedTuple):
    """One recorded bridge call."""

    method: str
    args: Tuple[Any, ...]


class MockBridge(AutomationBridge):
    """
    Mock bridge that keeps notes in a dictionary.

    Failures can be scripted per method and per title (or external id), and
    attachment payloads are served from a dictionary keyed by attachment id.
    """

    def __init__(self, supports_update: bool = True,
                 attachments: Optional[Dict[str, bytes]] = None):
        """
        Initialize the mock bridge.

        Args:
            supports_update: Whether update() is offered
            attachments: Attachment payloads keyed by attachment identifier
        """
        self.supports_update = supports_update
        self.attachments = dict(attachments or {})
        self.notes: Dict[str, Dict[str, Any]] = {}
        self.calls: List[BridgeCall] = []
        self._failures: Dict[Tuple[str, str], str] = {}
        self._next_id = 1

    def fail_on(self, method: str, key: str, message: str) -> None:
        """
        Script a failure.

        Args:
            method: "create", "update", "delete" or "fetch_attachment_bytes"
            key: Title for create, external id for update/delete, attachment id otherwise
            message: Error message the bridge reports
        """
        self._failures[(method, key)] = message

    def _check(self, method: str, key: str) -> None:
        message = self._failures.get((method, key))
        if message is not None:
            logging.debug(f"MockBridge failing {method} for {key}: {message}")
            raise BridgeError(message)

    def create(self, title: str, markup: str, folder: str) -> str:
        self.calls.append(BridgeCall("create", (title, markup, folder)))
        self._check("create", title)
        external_id = f"x-coredata://mock/ICNote/p{self._next_id}"
        self._next_id += 1
        self.notes[external_id] = {"title": title, "markup": markup, "folder": folder}
        return external_id

    def update(self, external_id: str, title: Optional[str] = None,
               markup: Optional[str] = None) -> None:
        self.calls.append(BridgeCall("update", (external_id, title, markup)))
        if not self.supports_update:
            raise BridgeError("Update is not supported by this bridge")
        self._check("update", external_id)
        if external_id not in self.notes:
            raise BridgeError(f"Note not found: {external_id}")
        if title is not None:
            self.notes[external_id]["title"] = title
        if markup is not None:
            self.notes[external_id]["markup"] = markup

    def delete(self, external_id: str) -> None:
        self.calls.append(BridgeCall("delete", (external_id,)))
        self._check("delete", external_id)
        if self.notes.pop(external_id, None) is None:
            raise BridgeError(f"Note not found: {external_id}")

    def fetch_attachment_bytes(self, ref: AttachmentRef) -> bytes:
        self.calls.append(BridgeCall("fetch_attachment_bytes", (ref.identifier,)))
        self._check("fetch_attachment_bytes", ref.identifier)
        if ref.identifier not in self.attachments:
            raise BridgeError(f"Attachment not found: {ref.identifier}")
        return self.attachments[ref.identifier]

    def add_existing(self, title: str, folder: str, markup: str = "",
                     external_id: Optional[str] = None) -> str:
        """Seed a note as if it already existed in the host; not recorded as a call."""
        if external_id is None:
            external_id = f"x-coredata://mock/ICNote/p{self._next_id}"
            self._next_id += 1
        self.notes[external_id] = {"title": title, "markup": markup, "folder": folder}
        return external_id

    def calls_to(self, method: str) -> List[BridgeCall]:
        return [call for call in self.calls if call.method == method]
