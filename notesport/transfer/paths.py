"""
Filesystem naming for exports.

Titles and folder names become file names through a fixed percent-style
substitution table. '%' is itself substituted, so the mapping is injective:
two different titles never produce the same safe name. Case-insensitive
clashes inside one batch are resolved by PathAllocator.
"""

import hashlib
from pathlib import Path
from typing import Dict, Optional, Set
from urllib.parse import unquote


SUBSTITUTIONS: Dict[str, str] = {
    "%": "%25",
    "/": "%2F",
    "\\": "%5C",
    ":": "%3A",
    "*": "%2A",
    "?": "%3F",
    '"': "%22",
    "<": "%3C",
    ">": "%3E",
    "|": "%7C",
}

# Cannot be produced by encoding a non-empty name: a bare '%' is always escaped
EMPTY_NAME = "%Untitled"
MAX_NAME_BYTES = 200
ATTACHMENTS_DIR = "attachments"


def safe_name(name: str) -> str:
    """
    Map a title or folder name to a filesystem-safe name.

    Control characters, leading dots and trailing dots or spaces are
    substituted as well. Names longer than MAX_NAME_BYTES are shortened
    and suffixed with a digest of the full name.
    """
    if not name:
        return EMPTY_NAME

    chars = []
    for index, char in enumerate(name):
        if char in SUBSTITUTIONS:
            chars.append(SUBSTITUTIONS[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            chars.append(f"%{ord(char):02X}")
        elif char == "." and index == 0:
            chars.append("%2E")
        else:
            chars.append(char)

    # Trailing dots and spaces are dropped by some filesystems
    tail = len(chars)
    while tail > 0 and chars[tail - 1] in (".", " "):
        tail -= 1
    for index in range(tail, len(chars)):
        chars[index] = "%2E" if chars[index] == "." else "%20"

    result = "".join(chars)
    if len(result.encode("utf-8")) > MAX_NAME_BYTES:
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:12]
        shortened = result.encode("utf-8")[:MAX_NAME_BYTES - 16].decode("utf-8", errors="ignore")
        # A cut inside an escape would leave a dangling '%'
        cut = shortened.rfind("%")
        if cut >= len(shortened) - 2:
            shortened = shortened[:cut]
        result = f"{shortened}%~{digest}"
    return result


def restore_name(safe: str) -> str:
    """Invert safe_name for names that were not shortened."""
    if safe == EMPTY_NAME:
        return ""
    return unquote(safe)


class PathAllocator:
    """
    Hands out export paths for one batch.

    A path whose lower-cased form was already handed out gets
    ' (<identifier>)' appended to its stem.
    """

    def __init__(self, output_dir: Path, extension: str):
        self.output_dir = Path(output_dir)
        self.extension = extension
        self._used: Set[str] = set()

    def allocate(self, folder: Optional[str], title: str, identifier: str) -> Path:
        directory = self.output_dir / safe_name(folder) if folder else self.output_dir
        stem = safe_name(title)
        path = directory / f"{stem}.{self.extension}"
        if self._key(path) in self._used:
            path = directory / f"{stem} ({safe_name(identifier)}).{self.extension}"
            counter = 2
            while self._key(path) in self._used:
                path = directory / f"{stem} ({safe_name(identifier)}) {counter}.{self.extension}"
                counter += 1
        self._used.add(self._key(path))
        return path

    @staticmethod
    def _key(path: Path) -> str:
        return path.as_posix().casefold()


def attachment_path(output_dir: Path, note_path: Path, name: str) -> Path:
    """
    Path of an exported attachment: attachments/<folder>/<note stem>/<name>.

    The directory mirrors the note file allocated by PathAllocator, so two
    notes sharing a title never share an attachment directory.
    """
    output_dir = Path(output_dir)
    note_path = Path(note_path)
    folder = note_path.parent.relative_to(output_dir)
    return output_dir / ATTACHMENTS_DIR / folder / note_path.stem / safe_name(name)
