"""
Note blob encoder.

encode() writes the minimal blob the host accepts for a title and a plain
body. encode_document() re-emits everything the decoder reads: paragraph
styles, inline attributes, links, colours, table attachments and preserved
unknown fields, so decode(encode_document(decode(blob))) == decode(blob).
"""

import logging
import uuid
from typing import Iterable, List, Optional, Sequence, Tuple

from ..errors import EncodeError
from ..models.document import (
    Checklist,
    CodeLine,
    ColorTag,
    Document,
    Heading,
    ListItem,
    Paragraph,
    Run,
    RUN_SCOPES,
    Table,
    WireExtension,
)
from . import wire
from .palette import rgba_for_color_tag
from .wire import FontWeight, StyleType


OBJECT_NAMESPACE = uuid.UUID("6f1c2d3e-8a4b-5c6d-9e0f-112233445566")

HEADING_STYLES = {
    1: StyleType.TITLE,
    2: StyleType.HEADING,
    3: StyleType.SUBHEADING,
}

# Where preserved sub-fields of each scope live inside an attribute run
NESTED_PATHS = {
    "paragraph_style": (wire.RUN_FIELD_PARAGRAPH_STYLE,),
    "checklist": (wire.RUN_FIELD_PARAGRAPH_STYLE, wire.STYLE_FIELD_CHECKLIST),
    "font": (wire.RUN_FIELD_FONT,),
    "color": (wire.RUN_FIELD_COLOR,),
    "attachment": (wire.RUN_FIELD_ATTACHMENT,),
}

# (byte length, paragraph style field, inline attribute fields)
RunLayout = Tuple[int, bytes, bytes]


def encode(title: str, body: str = "",
           extensions: Sequence[WireExtension] = ()) -> bytes:
    """
    Encode a title and plain body into a note blob.

    Args:
        title: Single-line note title
        body: Plain body text; each line becomes an unstyled paragraph
        extensions: Preserved unknown fields to re-attach

    Returns:
        Gzipped blob bytes

    Raises:
        EncodeError: If the title spans more than one line
    """
    _check_title(title)
    text = f"{title}\n{body}" if body else title
    lines: List[Tuple[str, bytes]] = [(title, _paragraph_style(StyleType.TITLE))]
    if body:
        lines.extend((line, b"") for line in body.split("\n"))

    layout: List[RunLayout] = []
    for index, (line, style) in enumerate(lines):
        length = len(line.encode("utf-8"))
        if index < len(lines) - 1:
            length += 1
        if length:
            layout.append((length, style, b""))
    return _wrap(text, _run_table(text, layout, extensions), extensions)


def encode_document(document: Document) -> bytes:
    """
    Encode a Document into a note blob.

    Table contents live outside the blob; a table is written as an
    attachment placeholder line keyed by its attachment identifier.

    Raises:
        EncodeError: If the title spans more than one line or a block kind is unknown
    """
    _check_title(document.title)

    lines: List[List[Tuple[str, bytes]]] = []
    title_style = _paragraph_style(StyleType.TITLE)
    lines.append([(document.title, _inline_attributes(Run(text=document.title)))])
    styles: List[bytes] = [title_style]

    for index, block in enumerate(document.blocks):
        segments, style = _encode_block(block, document.identifier, index)
        lines.append(segments)
        styles.append(style)

    text_parts: List[str] = []
    layout: List[RunLayout] = []
    for index, (segments, style) in enumerate(zip(lines, styles)):
        last_line = index == len(lines) - 1
        for position, (segment_text, attributes) in enumerate(segments):
            length = len(segment_text.encode("utf-8"))
            if position == len(segments) - 1 and not last_line:
                # The line break belongs to the line's final run
                length += 1
            if length:
                layout.append((length, style, attributes))
            text_parts.append(segment_text)
        if not segments and not last_line:
            layout.append((1, style, b""))
        if not last_line:
            text_parts.append("\n")

    text = "".join(text_parts)
    return _wrap(text, _run_table(text, layout, document.extensions), document.extensions)


# -- blocks -----------------------------------------------------------------

def _encode_block(block, identifier: str, index: int) -> Tuple[List[Tuple[str, bytes]], bytes]:
    if isinstance(block, Paragraph):
        return _segments(block.runs), b""
    if isinstance(block, Heading):
        style_type = HEADING_STYLES.get(block.level, StyleType.SUBHEADING_2)
        return _segments(block.runs), _paragraph_style(style_type)
    if isinstance(block, ListItem):
        style_type = StyleType.NUMBERED_LIST if block.ordered else StyleType.DOTTED_LIST
        return _segments(block.runs), _paragraph_style(style_type)
    if isinstance(block, Checklist):
        checklist_id = uuid.uuid5(OBJECT_NAMESPACE, f"{identifier}:{index}")
        return _segments(block.runs), _paragraph_style(
            StyleType.CHECKLIST, checklist=(checklist_id, block.checked)
        )
    if isinstance(block, CodeLine):
        attributes = wire.bytes_field(wire.RUN_FIELD_FONT, wire.string_field(wire.FONT_FIELD_NAME, wire.MONOSPACE_FONT))
        segments = [(block.text, attributes)] if block.text else []
        return segments, _paragraph_style(StyleType.MONOSPACED)
    if isinstance(block, Table):
        attachment_id = block.attachment_id or str(uuid.uuid5(OBJECT_NAMESPACE, f"{identifier}:table:{index}"))
        if not block.attachment_id:
            logging.debug(f"Assigned attachment id {attachment_id} to table block {index}")
        attachment = wire.bytes_field(
            wire.RUN_FIELD_ATTACHMENT,
            wire.string_field(wire.ATTACHMENT_FIELD_IDENTIFIER, attachment_id)
            + wire.string_field(wire.ATTACHMENT_FIELD_UTI, wire.TABLE_UTI),
        )
        return [(wire.OBJECT_REPLACEMENT, attachment)], b""
    raise EncodeError(f"Unknown block kind: {getattr(block, 'kind', type(block).__name__)}")


def _segments(runs: Iterable[Run]) -> List[Tuple[str, bytes]]:
    return [(run.text, _inline_attributes(run)) for run in runs if run.text]


def _inline_attributes(run: Run) -> bytes:
    out = b""
    if run.monospace:
        out += wire.bytes_field(wire.RUN_FIELD_FONT, wire.string_field(wire.FONT_FIELD_NAME, wire.MONOSPACE_FONT))
    if run.bold and run.italic:
        out += wire.varint_field(wire.RUN_FIELD_FONT_WEIGHT, FontWeight.BOLD_ITALIC)
    elif run.bold:
        out += wire.varint_field(wire.RUN_FIELD_FONT_WEIGHT, FontWeight.BOLD)
    elif run.italic:
        out += wire.varint_field(wire.RUN_FIELD_FONT_WEIGHT, FontWeight.ITALIC)
    if run.underline:
        out += wire.varint_field(wire.RUN_FIELD_UNDERLINED, 1)
    if run.strikethrough:
        out += wire.varint_field(wire.RUN_FIELD_STRIKETHROUGH, 1)
    if run.link:
        out += wire.string_field(wire.RUN_FIELD_LINK, run.link)
    if run.color != ColorTag.DEFAULT:
        rgba = rgba_for_color_tag(run.color)
        color = b"".join(wire.float_field(number, channel) for number, channel in enumerate(rgba, start=1))
        out += wire.bytes_field(wire.RUN_FIELD_COLOR, color)
    return out


def _paragraph_style(style_type: StyleType,
                     checklist: Optional[Tuple[uuid.UUID, bool]] = None) -> bytes:
    style = wire.varint_field(wire.STYLE_FIELD_TYPE, style_type)
    if checklist is not None:
        checklist_id, done = checklist
        style += wire.bytes_field(
            wire.STYLE_FIELD_CHECKLIST,
            wire.bytes_field(wire.CHECKLIST_FIELD_UUID, checklist_id.bytes)
            + wire.varint_field(wire.CHECKLIST_FIELD_DONE, int(done)),
        )
    return wire.bytes_field(wire.RUN_FIELD_PARAGRAPH_STYLE, style)


def _attribute_run(length: int, style: bytes = b"", attributes: bytes = b"",
                   extensions: Sequence[WireExtension] = ()) -> bytes:
    run = wire.varint_field(wire.RUN_FIELD_LENGTH, length) + style + attributes
    for scope, path in NESTED_PATHS.items():
        run = _extend_message(run, path, _extension_bytes(extensions, scope))
    return run + _extension_bytes(extensions, "run")


def _extend_message(message: bytes, path: Sequence[int], extra: bytes) -> bytes:
    """Append extra inside the sub-message at path, creating it when absent."""
    if not extra:
        return message
    number, rest = path[0], path[1:]
    out = b""
    found = False
    for field in wire.iter_fields(message):
        if not found and field.number == number and field.wire_type == wire.WIRE_BYTES:
            inner = _extend_message(field.value, rest, extra) if rest else field.value + extra
            out += wire.bytes_field(number, inner)
            found = True
        else:
            out += field.raw
    if not found:
        out += wire.bytes_field(number, _extend_message(b"", rest, extra) if rest else extra)
    return out


def _run_table(text: str, layout: Sequence[RunLayout],
               extensions: Sequence[WireExtension]) -> List[bytes]:
    """
    Serialize the attribute runs and hang preserved run fields back on them.

    A run is split where a preserved field's offset falls inside it, so the
    field lands on a run starting at exactly that offset and a second
    decode reports the same offset. Fields past the end of the text go on
    a trailing zero-length run.
    """
    nested = [ext for ext in extensions if ext.scope in RUN_SCOPES]
    if not nested:
        return [_attribute_run(length, style, attributes) for length, style, attributes in layout]

    raw = text.encode("utf-8")
    cuts = sorted({
        ext.offset for ext in nested
        if 0 < ext.offset < len(raw) and wire.is_char_boundary(raw, ext.offset)
    })
    runs = []
    start = 0
    for length, style, attributes in layout:
        end = start + length
        bounds = [start] + [cut for cut in cuts if start < cut < end] + [end]
        for begin, finish in zip(bounds, bounds[1:]):
            owned = [ext for ext in nested if begin <= ext.offset < finish]
            runs.append(_attribute_run(finish - begin, style, attributes, owned))
        start = end

    trailing = [ext for ext in nested if ext.offset >= start]
    if trailing:
        runs.append(_attribute_run(0, extensions=trailing))
    return runs


# -- messages ---------------------------------------------------------------

def _wrap(text: str, runs: Sequence[bytes], extensions: Sequence[WireExtension]) -> bytes:
    note = wire.string_field(wire.NOTE_FIELD_TEXT, text)
    for run in runs:
        note += wire.bytes_field(wire.NOTE_FIELD_ATTRIBUTE_RUN, run)
    note += _extension_bytes(extensions, "note")

    document = (
        _header(extensions, "document", wire.DOCUMENT_FIELD_HEADER)
        + wire.varint_field(wire.DOCUMENT_FIELD_VERSION, 0)
        + wire.bytes_field(wire.DOCUMENT_FIELD_NOTE, note)
        + _extension_bytes(extensions, "document", skip=wire.DOCUMENT_FIELD_HEADER)
    )
    store = (
        _header(extensions, "store", wire.STORE_FIELD_HEADER)
        + wire.bytes_field(wire.STORE_FIELD_DOCUMENT, document)
        + _extension_bytes(extensions, "store", skip=wire.STORE_FIELD_HEADER)
    )
    return wire.wrap_envelope(store)


def _header(extensions: Sequence[WireExtension], scope: str, number: int) -> bytes:
    """The preserved header field of a message, or the default one."""
    return b"".join(
        ext.raw for ext in extensions if ext.scope == scope and ext.field_number == number
    ) or wire.DEFAULT_HEADER


def _extension_bytes(extensions: Sequence[WireExtension], scope: str,
                     skip: Optional[int] = None) -> bytes:
    return b"".join(
        ext.raw for ext in extensions if ext.scope == scope and ext.field_number != skip
    )


def _check_title(title: str) -> None:
    if "\n" in title:
        raise EncodeError("Title must be a single line")
