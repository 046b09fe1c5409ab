"""
osascript automation bridge for notesport.

Drives the host notes application through AppleScript run by
/usr/bin/osascript. Every script failure becomes a BridgeError carrying
osascript's error output verbatim.
"""

import html
import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..converters.markup import split_title_and_body
from ..errors import BridgeError
from ..models import AttachmentRef
from .base import AutomationBridge


OSASCRIPT = "/usr/bin/osascript"
FIELD_SEPARATOR = "\x1e"
DEFAULT_TIMEOUT = 60.0

Runner = Callable[[List[str]], "subprocess.CompletedProcess[str]"]


def escape_applescript(value: str) -> str:
    """Escape a value for use inside an AppleScript string literal."""
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def _run_subprocess(arguments: List[str], timeout: Optional[float]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(arguments, capture_output=True, text=True, check=False, timeout=timeout)


class OsaScriptBridge(AutomationBridge):
    """
    Bridge that talks to the host application through AppleScript.

    Setting a note's body replaces its title as well, so partial updates
    rebuild the missing half from the note's current state.
    """

    supports_update = True

    def __init__(self, account: Optional[str] = None, runner: Optional[Runner] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT):
        """
        Initialize the bridge.

        Args:
            account: Account to create notes in; the default account when None
            runner: Callable executing an argument list; subprocess.run by default
            timeout: Seconds one script may run before it is abandoned; None waits forever
        """
        self.account = account
        self.timeout = timeout
        self._runner = runner or (lambda arguments: _run_subprocess(arguments, self.timeout))

    def run_script(self, script: str) -> str:
        """
        Run one AppleScript and return its output.

        Raises:
            BridgeError: If osascript is missing, times out or the script fails
        """
        try:
            result = self._runner([OSASCRIPT, "-e", script])
        except FileNotFoundError as e:
            raise BridgeError(f"osascript is not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise BridgeError(f"osascript did not finish within {e.timeout} seconds") from e
        if result.returncode != 0:
            message = (result.stderr or "").strip() or "Unknown AppleScript error"
            raise BridgeError(message)
        return (result.stdout or "").strip()

    def create(self, title: str, markup: str, folder: str) -> str:
        folder_literal = escape_applescript(folder)
        body_literal = escape_applescript(markup)
        target = f'tell account "{escape_applescript(self.account)}"' if self.account else "tell default account"
        script = f'''
tell application "Notes"
    {target}
        if not (exists folder "{folder_literal}") then
            make new folder with properties {{name:"{folder_literal}"}}
        end if
        set newNote to make new note at folder "{folder_literal}" with properties {{body:"{body_literal}"}}
        return id of newNote
    end tell
end tell
'''
        external_id = self.run_script(script)
        logging.info(f"Created note '{title}' in folder '{folder}' ({external_id})")
        return external_id

    def update(self, external_id: str, title: Optional[str] = None,
               markup: Optional[str] = None) -> None:
        if title is None and markup is None:
            raise BridgeError("Nothing to update: neither title nor body given")

        note_literal = escape_applescript(external_id)
        if title is None or markup is None:
            current_title, current_text = self._read_note(external_id)
            if title is None:
                title = current_title
            else:
                _, body_text = split_title_and_body(current_text, current_title)
                markup = "".join(
                    f"<div>{html.escape(line, quote=False) or '<br>'}</div>"
                    for line in body_text.split("\n")
                ) if body_text else ""

        body = f"<h1>{html.escape(title, quote=False)}</h1>{markup}"
        script = f'''
tell application "Notes"
    set theNote to note id "{note_literal}"
    set body of theNote to "{escape_applescript(body)}"
end tell
'''
        self.run_script(script)
        logging.info(f"Updated note {external_id}")

    def _read_note(self, external_id: str) -> Tuple[str, str]:
        script = f'''
tell application "Notes"
    set theNote to note id "{escape_applescript(external_id)}"
    return (name of theNote) & (ASCII character 30) & (plaintext of theNote)
end tell
'''
        output = self.run_script(script)
        name, _, text = output.partition(FIELD_SEPARATOR)
        return name, text

    def delete(self, external_id: str) -> None:
        script = f'''
tell application "Notes"
    delete note id "{escape_applescript(external_id)}"
end tell
'''
        self.run_script(script)
        logging.info(f"Deleted note {external_id}")

    def fetch_attachment_bytes(self, ref: AttachmentRef) -> bytes:
        script = f'''
tell application "Notes"
    set att to attachment id "{escape_applescript(ref.identifier)}"
    set props to properties of att
    set filePath to contents of props
    return POSIX path of filePath
end tell
'''
        path = Path(self.run_script(script))
        try:
            return path.read_bytes()
        except OSError as e:
            raise BridgeError(f"Cannot read attachment {ref.identifier} at {path}: {e}") from e
