"""
Note blob decoder.

Turns a gzipped note blob into a Document: the first line of the note text
becomes the title, every following line becomes one block whose variant is
chosen from the paragraph style of the attribute run covering it.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import CorruptRunTable, MalformedHeader, UnsupportedVersion
from ..models.document import (
    Checklist,
    CodeLine,
    ColorTag,
    Document,
    Heading,
    ListItem,
    Paragraph,
    Run,
    Table,
    WireExtension,
    merge_runs,
    table_from_cells,
)
from . import wire
from .palette import color_tag_for_rgba
from .wire import StyleType, WireField


HEADING_LEVELS = {
    StyleType.TITLE: 1,
    StyleType.HEADING: 2,
    StyleType.SUBHEADING: 3,
    StyleType.SUBHEADING_2: 4,
}

TableRows = Sequence[Sequence[Any]]


@dataclass
class AttributeRun:
    """Decoded attribute run before it is clipped to lines."""

    length: int = 0
    style_type: Optional[int] = None
    checked: bool = False
    font_name: Optional[str] = None
    font_weight: int = 0
    underlined: bool = False
    strikethrough: bool = False
    link: Optional[str] = None
    rgba: Optional[Tuple[float, float, float, float]] = None
    attachment_id: Optional[str] = None
    attachment_uti: Optional[str] = None
    # (scope, field) pairs the Document does not model
    preserved: List[Tuple[str, WireField]] = dataclasses.field(default_factory=list)

    def to_run(self, text: str) -> Run:
        monospace = bool(self.font_name) and any(
            hint in self.font_name.lower() for hint in wire.MONOSPACE_FONT_HINTS
        )
        color = color_tag_for_rgba(self.rgba) if self.rgba else ColorTag.DEFAULT
        return Run(
            text=text,
            bold=self.font_weight in (wire.FontWeight.BOLD, wire.FontWeight.BOLD_ITALIC),
            italic=self.font_weight in (wire.FontWeight.ITALIC, wire.FontWeight.BOLD_ITALIC),
            underline=self.underlined,
            strikethrough=self.strikethrough,
            monospace=monospace,
            color=color,
            link=self.link or None,
        )


class NoteDecoder:
    """
    Decoder for note blobs.

    Decoding is a pure function of the input bytes (plus the optional table
    contents), so one decoder may be shared between threads.
    """

    def decode(self, data: bytes, identifier: str = "",
               tables: Optional[Mapping[str, TableRows]] = None) -> Document:
        """
        Decode a note blob.

        Args:
            data: Raw blob bytes as stored by the host
            identifier: Store identifier to attach to the Document
            tables: Table contents keyed by table attachment identifier

        Returns:
            The decoded Document; empty input yields an empty Document

        Raises:
            DecodeError: One of MalformedHeader, UnsupportedVersion,
                TruncatedStream or CorruptRunTable
        """
        if not data:
            return Document(identifier=identifier)

        payload = wire.unwrap_envelope(data)
        extensions: List[WireExtension] = []
        note_bytes = self._parse_store(payload, extensions)
        text, attribute_runs = self._parse_note(note_bytes, extensions)

        title, blocks = self._build_blocks(text, attribute_runs, tables or {})
        return Document(
            identifier=identifier,
            title=title,
            blocks=tuple(blocks),
            extensions=tuple(extensions),
        )

    # -- message walkers ---------------------------------------------------

    def _parse_store(self, payload: bytes, extensions: List[WireExtension]) -> bytes:
        document_bytes = None
        for field in wire.iter_fields(payload):
            if field.number == wire.STORE_FIELD_DOCUMENT and field.wire_type == wire.WIRE_BYTES:
                document_bytes = field.value
            elif field.raw != wire.DEFAULT_HEADER:
                extensions.append(_extension("store", field))
        if document_bytes is None:
            raise MalformedHeader("Note store has no document")
        return self._parse_document(document_bytes, extensions)

    def _parse_document(self, data: bytes, extensions: List[WireExtension]) -> bytes:
        note_bytes = None
        version = 0
        for field in wire.iter_fields(data):
            if field.number == wire.DOCUMENT_FIELD_VERSION and field.wire_type == wire.WIRE_VARINT:
                version = field.value
            elif field.number == wire.DOCUMENT_FIELD_NOTE and field.wire_type == wire.WIRE_BYTES:
                note_bytes = field.value
            elif field.raw != wire.DEFAULT_HEADER:
                extensions.append(_extension("document", field))
        if version not in wire.SUPPORTED_DOCUMENT_VERSIONS:
            raise UnsupportedVersion(f"Unsupported document version: {version}")
        if note_bytes is None:
            raise MalformedHeader("Document has no note")
        return note_bytes

    def _parse_note(self, data: bytes,
                    extensions: List[WireExtension]) -> Tuple[str, List[AttributeRun]]:
        text_bytes = b""
        runs: List[AttributeRun] = []
        for field in wire.iter_fields(data):
            if field.number == wire.NOTE_FIELD_TEXT and field.wire_type == wire.WIRE_BYTES:
                text_bytes = field.value
            elif field.number == wire.NOTE_FIELD_ATTRIBUTE_RUN and field.wire_type == wire.WIRE_BYTES:
                runs.append(self._parse_attribute_run(field.value))
            else:
                extensions.append(_extension("note", field))
        try:
            text = text_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedHeader(f"Note text is not valid UTF-8: {e}") from e

        offset = 0
        for run in runs:
            for scope, field in run.preserved:
                extensions.append(_extension(scope, field, offset=offset))
            offset += run.length
        return text, runs

    def _parse_attribute_run(self, data: bytes) -> AttributeRun:
        run = AttributeRun()
        for field in wire.iter_fields(data):
            number, value = field.number, field.value
            if number == wire.RUN_FIELD_LENGTH and field.wire_type == wire.WIRE_VARINT:
                run.length = value
            elif number == wire.RUN_FIELD_PARAGRAPH_STYLE and field.wire_type == wire.WIRE_BYTES:
                self._parse_paragraph_style(value, run)
            elif number == wire.RUN_FIELD_FONT and field.wire_type == wire.WIRE_BYTES:
                self._parse_font(field, run)
            elif number == wire.RUN_FIELD_FONT_WEIGHT and field.wire_type == wire.WIRE_VARINT:
                run.font_weight = value
            elif number == wire.RUN_FIELD_UNDERLINED and field.wire_type == wire.WIRE_VARINT:
                run.underlined = bool(value)
            elif number == wire.RUN_FIELD_STRIKETHROUGH and field.wire_type == wire.WIRE_VARINT:
                run.strikethrough = bool(value)
            elif number == wire.RUN_FIELD_LINK and field.wire_type == wire.WIRE_BYTES:
                run.link = _text(field)
            elif number == wire.RUN_FIELD_COLOR and field.wire_type == wire.WIRE_BYTES:
                self._parse_color(field, run)
            elif number == wire.RUN_FIELD_ATTACHMENT and field.wire_type == wire.WIRE_BYTES:
                self._parse_attachment(field, run)
            else:
                run.preserved.append(("run", field))
        return run

    def _parse_paragraph_style(self, data: bytes, run: AttributeRun) -> None:
        for field in wire.iter_fields(data):
            if field.number == wire.STYLE_FIELD_TYPE and field.wire_type == wire.WIRE_VARINT:
                run.style_type = field.value
            elif field.number == wire.STYLE_FIELD_CHECKLIST and field.wire_type == wire.WIRE_BYTES:
                for sub in wire.iter_fields(field.value):
                    if sub.number == wire.CHECKLIST_FIELD_DONE and sub.wire_type == wire.WIRE_VARINT:
                        run.checked = bool(sub.value)
                    elif sub.number != wire.CHECKLIST_FIELD_UUID:
                        run.preserved.append(("checklist", sub))
            else:
                # alignment, indent and anything newer
                run.preserved.append(("paragraph_style", field))

    # A sub-message the Document keeps nothing of is preserved whole at run
    # scope; otherwise only its unread sub-fields are.

    def _parse_font(self, field: WireField, run: AttributeRun) -> None:
        name = None
        rest = []
        for sub in wire.iter_fields(field.value):
            if sub.number == wire.FONT_FIELD_NAME and sub.wire_type == wire.WIRE_BYTES:
                name = _text(sub)
            else:
                rest.append(sub)
        if name and any(hint in name.lower() for hint in wire.MONOSPACE_FONT_HINTS):
            run.font_name = name
            run.preserved.extend(("font", sub) for sub in rest)
        else:
            run.preserved.append(("run", field))

    def _parse_color(self, field: WireField, run: AttributeRun) -> None:
        rgba = _parse_color(field.value)
        if color_tag_for_rgba(rgba) == ColorTag.DEFAULT:
            run.preserved.append(("run", field))
            return
        run.rgba = rgba
        run.preserved.extend(
            ("color", sub) for sub in wire.iter_fields(field.value)
            if sub.number not in wire.COLOR_CHANNELS or wire.as_float(sub) is None
        )

    def _parse_attachment(self, field: WireField, run: AttributeRun) -> None:
        identifier = uti = None
        rest = []
        for sub in wire.iter_fields(field.value):
            if sub.number == wire.ATTACHMENT_FIELD_IDENTIFIER and sub.wire_type == wire.WIRE_BYTES:
                identifier = _text(sub)
            elif sub.number == wire.ATTACHMENT_FIELD_UTI and sub.wire_type == wire.WIRE_BYTES:
                uti = _text(sub)
            else:
                rest.append(sub)
        if uti != wire.TABLE_UTI:
            run.preserved.append(("run", field))
            return
        run.attachment_id = identifier
        run.attachment_uti = uti
        run.preserved.extend(("attachment", sub) for sub in rest)

    # -- block reconstruction ----------------------------------------------

    def _build_blocks(self, text: str, attribute_runs: List[AttributeRun],
                      tables: Mapping[str, TableRows]) -> Tuple[str, List[Any]]:
        raw = text.encode("utf-8")
        spans = _layout_spans(raw, attribute_runs)

        blocks: List[Any] = []
        title = ""
        line_start = 0
        for index, line_bytes in enumerate(raw.split(b"\n")):
            line_end = line_start + len(line_bytes)
            line_text = line_bytes.decode("utf-8")
            if index == 0:
                title = line_text
            else:
                style = _span_at(spans, line_start)
                runs = merge_runs(
                    attrs.to_run(raw[max(start, line_start):min(end, line_end)].decode("utf-8"))
                    for start, end, attrs in spans
                    if start < line_end and end > line_start
                )
                blocks.append(self._make_block(line_text, runs, style, tables))
            line_start = line_end + 1
        return title, blocks

    def _make_block(self, line_text: str, runs: Tuple[Run, ...],
                    style: Optional[AttributeRun], tables: Mapping[str, TableRows]) -> Any:
        if style is None:
            return Paragraph(runs=runs)

        if line_text == wire.OBJECT_REPLACEMENT and style.attachment_uti == wire.TABLE_UTI:
            attachment_id = style.attachment_id
            rows = tables.get(attachment_id) if attachment_id else None
            if rows is None:
                logging.debug(f"No contents supplied for table {attachment_id}")
                return Table(attachment_id=attachment_id)
            return table_from_cells(rows, attachment_id=attachment_id)

        style_type = style.style_type
        if style_type in HEADING_LEVELS:
            return Heading(level=HEADING_LEVELS[style_type], runs=runs)
        if style_type == StyleType.MONOSPACED:
            return CodeLine(text=line_text)
        if style_type in (StyleType.DOTTED_LIST, StyleType.DASHED_LIST):
            return ListItem(ordered=False, runs=runs)
        if style_type == StyleType.NUMBERED_LIST:
            return ListItem(ordered=True, runs=runs)
        if style_type == StyleType.CHECKLIST:
            return Checklist(checked=style.checked, runs=runs)
        return Paragraph(runs=runs)


def _layout_spans(raw: bytes, attribute_runs: List[AttributeRun]) -> List[Tuple[int, int, AttributeRun]]:
    """
    Position runs by byte offset and validate them.

    Text past the last run gets a default run, so the spans always cover the
    whole text exactly once.
    """
    spans: List[Tuple[int, int, AttributeRun]] = []
    position = 0
    for run in attribute_runs:
        end = position + run.length
        if end > len(raw):
            raise CorruptRunTable(
                f"Attribute run ending at byte {end} exceeds text length {len(raw)}"
            )
        if not wire.is_char_boundary(raw, end):
            raise CorruptRunTable(f"Attribute run boundary at byte {end} splits a character")
        if run.length:
            spans.append((position, end, run))
        position = end
    if position < len(raw):
        spans.append((position, len(raw), AttributeRun(length=len(raw) - position)))
    return spans


def _span_at(spans: List[Tuple[int, int, AttributeRun]], offset: int) -> Optional[AttributeRun]:
    for start, end, attrs in spans:
        if start <= offset < end:
            return attrs
    return None


def _text(field: WireField) -> str:
    try:
        return field.value.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedHeader(f"Field {field.number} is not valid UTF-8") from e


def _parse_color(data: bytes) -> Tuple[float, float, float, float]:
    channels: Dict[int, float] = {}
    for field in wire.iter_fields(data):
        value = wire.as_float(field)
        if value is not None:
            channels[field.number] = value
    return (
        channels.get(1, 0.0),
        channels.get(2, 0.0),
        channels.get(3, 0.0),
        channels.get(4, 1.0),
    )


def _extension(scope: str, field: WireField, offset: Optional[int] = None) -> WireExtension:
    logging.debug(f"Preserving unknown {scope} field {field.number} (wire type {field.wire_type})")
    return WireExtension(
        scope=scope,
        field_number=field.number,
        wire_type=field.wire_type,
        raw=field.raw,
        offset=offset,
    )


_decoder = NoteDecoder()


def decode(data: bytes, identifier: str = "",
           tables: Optional[Mapping[str, TableRows]] = None) -> Document:
    """Decode a note blob with the shared decoder."""
    return _decoder.decode(data, identifier=identifier, tables=tables)
