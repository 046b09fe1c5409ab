"""
Document model for notesport.

This module defines the structural representation every conversion path
shares: styled runs, a closed set of block variants and the Document itself.
Hashtags and internal links are derived from the blocks on access and are
never stored as independent state.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Iterator, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


NOTE_LINK_PREFIX = "applenotes:note/"
HASHTAG_PATTERN = re.compile(r"(?<!\w)#(\w+)")


class ColorTag(str, Enum):
    """Closed palette of foreground colours the host format can express."""

    DEFAULT = "default"
    CODE_INLINE = "code_inline"
    QUOTE = "quote"
    LINK = "link"


class Run(BaseModel):
    """
    A span of text with a single set of inline attributes.

    Runs inside one block concatenate to exactly the block's text.
    """

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="The text covered by this run")
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    monospace: bool = False
    color: ColorTag = Field(
        default=ColorTag.DEFAULT,
        description="Foreground colour tag from the fixed palette"
    )
    link: Optional[str] = Field(
        default=None,
        description="Link target URL; a linked run always carries the link colour"
    )

    @model_validator(mode="before")
    @classmethod
    def _link_implies_link_color(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("link"):
            data = {**data, "color": ColorTag.LINK}
        return data

    def same_style(self, other: "Run") -> bool:
        """Check whether two runs carry identical attributes."""
        return self.style_key() == other.style_key()

    def style_key(self) -> Tuple[Any, ...]:
        return (
            self.bold, self.italic, self.underline, self.strikethrough,
            self.monospace, self.color, self.link,
        )

    def with_text(self, text: str) -> "Run":
        return self.model_copy(update={"text": text})


class _Block(BaseModel):
    model_config = ConfigDict(frozen=True)


class Paragraph(_Block):
    """Plain body text line."""

    kind: Literal["paragraph"] = "paragraph"
    runs: Tuple[Run, ...] = ()

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


class Heading(_Block):
    """Heading line; level 1 is the largest."""

    kind: Literal["heading"] = "heading"
    level: int = Field(default=1, ge=1, le=6)
    runs: Tuple[Run, ...] = ()

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


class ListItem(_Block):
    """Bulleted or numbered list entry."""

    kind: Literal["list_item"] = "list_item"
    ordered: bool = False
    runs: Tuple[Run, ...] = ()

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


class Checklist(_Block):
    """Checklist entry with its checked state."""

    kind: Literal["checklist"] = "checklist"
    checked: bool = False
    runs: Tuple[Run, ...] = ()

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


class CodeLine(_Block):
    """One line of monospaced text."""

    kind: Literal["code_line"] = "code_line"
    text: str = ""


class Table(_Block):
    """
    Table whose cells each hold their own block sequence.

    The attachment identifier ties the table back to the embedded object in
    the note blob so it survives re-encoding.
    """

    kind: Literal["table"] = "table"
    rows: Tuple[Tuple[Tuple["Block", ...], ...], ...] = ()
    attachment_id: Optional[str] = None

    @property
    def text(self) -> str:
        return "\n".join(
            "\t".join(cell_text(cell) for cell in row) for row in self.rows
        )


Block = Annotated[
    Union[Paragraph, Heading, ListItem, Checklist, CodeLine, Table],
    Field(discriminator="kind"),
]

RUN_BLOCKS = (Paragraph, Heading, ListItem, Checklist)

Table.model_rebuild()


class AttachmentRef(BaseModel):
    """Attachment metadata. Payload bytes stay with the store."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Attachment identifier in the host store")
    name: Optional[str] = Field(None, description="Display/file name, e.g. IMG_0473.jpg")
    type_uti: str = Field(default="public.data", description="Uniform type tag, e.g. public.jpeg")
    file_size: int = Field(default=0, ge=0, description="Size in bytes")
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class InternalLink(BaseModel):
    """A link from one note to another."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Display text of the link")
    target_id: str = Field(..., description="Identifier of the target note")


ExtensionScope = Literal[
    "store",
    "document",
    "note",
    "run",
    "paragraph_style",
    "checklist",
    "font",
    "color",
    "attachment",
]

# Scopes nested inside an attribute run; these carry the run's text offset
RUN_SCOPES = frozenset({"run", "paragraph_style", "checklist", "font", "color", "attachment"})


class WireExtension(BaseModel):
    """
    A field from the note blob that the Document does not model, kept
    verbatim for re-encoding.

    Fields found inside an attribute run record the UTF-8 byte offset of
    that run in the note text, so the encoder can hang them on the run
    that starts there again.
    """

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    scope: ExtensionScope
    field_number: int = Field(..., ge=1)
    wire_type: int = Field(..., ge=0, le=5)
    raw: bytes = Field(..., description="Complete field bytes including the tag")
    offset: Optional[int] = Field(
        default=None,
        ge=0,
        description="Byte offset of the owning attribute run, for run scopes"
    )

    @model_validator(mode="after")
    def _offset_matches_scope(self) -> "WireExtension":
        if (self.scope in RUN_SCOPES) != (self.offset is not None):
            raise ValueError(f"Extension scope '{self.scope}' and offset {self.offset} do not match")
        return self


class Document(BaseModel):
    """
    The canonical structural representation of one note.

    Documents are immutable; every conversion returns a new instance.
    """

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(
        default="",
        description="Opaque key correlating to the store row"
    )
    title: str = Field(default="", description="First line of the note text")
    folder: Optional[str] = Field(default=None, description="Containing folder name")
    blocks: Tuple[Block, ...] = Field(
        default=(),
        description="Ordered body blocks (the title line is not a block)"
    )
    attachments: Tuple[AttachmentRef, ...] = ()
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    extensions: Tuple[WireExtension, ...] = Field(
        default=(),
        description="Opaque wire fields preserved for re-encoding"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hashtags(self) -> Tuple[str, ...]:
        return extract_hashtags(self.blocks)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def internal_links(self) -> Tuple[InternalLink, ...]:
        return extract_internal_links(self.blocks)

    @property
    def body_text(self) -> str:
        return "\n".join(block.text for block in self.blocks)

    @property
    def plain_text(self) -> str:
        """Full note text: the title line followed by the body lines."""
        if not self.blocks:
            return self.title
        return f"{self.title}\n{self.body_text}"


def cell_text(cell: Sequence[Any]) -> str:
    return "\n".join(block.text for block in cell)


def iter_runs(blocks: Sequence[Any]) -> Iterator[Tuple[Run, ...]]:
    """Yield the run sequence of every run-bearing block, descending into table cells."""
    for block in blocks:
        if isinstance(block, RUN_BLOCKS):
            yield block.runs
        elif isinstance(block, Table):
            for row in block.rows:
                for cell in row:
                    yield from iter_runs(cell)


def extract_hashtags(blocks: Sequence[Any]) -> Tuple[str, ...]:
    """
    Extract hashtags from block text.

    Args:
        blocks: Block sequence to scan

    Returns:
        Tags including the leading '#', case preserved, de-duplicated in
        first-occurrence order. Code lines are not scanned.
    """
    seen: List[str] = []
    for runs in iter_runs(blocks):
        text = "".join(run.text for run in runs)
        for match in HASHTAG_PATTERN.finditer(text):
            tag = f"#{match.group(1)}"
            if tag not in seen:
                seen.append(tag)
    return tuple(seen)


def extract_internal_links(blocks: Sequence[Any]) -> Tuple[InternalLink, ...]:
    """
    Extract note-to-note links from link-tagged runs.

    Adjacent runs sharing one link target form a single link.
    """
    links: List[InternalLink] = []
    for runs in iter_runs(blocks):
        current_url: Optional[str] = None
        current_text = ""
        for run in list(runs) + [None]:
            url = run.link if run is not None and run.color == ColorTag.LINK else None
            if url is not None and url == current_url:
                current_text += run.text
                continue
            if current_url and current_url.startswith(NOTE_LINK_PREFIX):
                target = current_url[len(NOTE_LINK_PREFIX):].split("?", 1)[0]
                links.append(InternalLink(text=current_text, target_id=target.upper()))
            current_url = url
            current_text = run.text if url is not None else ""
    return tuple(links)


def merge_runs(runs: Sequence[Run]) -> Tuple[Run, ...]:
    """Coalesce adjacent runs with identical attributes and drop empty ones."""
    merged: List[Run] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].same_style(run):
            merged[-1] = merged[-1].with_text(merged[-1].text + run.text)
        else:
            merged.append(run)
    return tuple(merged)


def plain_runs(text: str) -> Tuple[Run, ...]:
    return (Run(text=text),) if text else ()


def table_from_cells(rows: Sequence[Sequence[Any]], attachment_id: Optional[str] = None) -> Table:
    """
    Build a Table from rows of cells given either as strings or block sequences.

    Multi-line cell strings become one paragraph per line.
    """
    built_rows = []
    for row in rows:
        cells = []
        for cell in row:
            if isinstance(cell, str):
                cells.append(tuple(Paragraph(runs=plain_runs(line)) for line in cell.split("\n")))
            else:
                cells.append(tuple(cell))
        built_rows.append(tuple(cells))
    return Table(rows=tuple(built_rows), attachment_id=attachment_id)
