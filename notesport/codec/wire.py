"""
Wire primitives for the host note format.

A note blob is a gzip member wrapping a protobuf-style stream of
varint-tagged fields. This module holds the envelope handling, the low level
field reader/writers and the field numbers of the messages the codec
understands.
"""

import struct
import zlib
from enum import IntEnum
from typing import Iterator, NamedTuple, Optional, Tuple, Union

from ..errors import MalformedHeader, TruncatedStream, UnsupportedVersion


GZIP_MAGIC = b"\x1f\x8b"
GZIP_METHOD_DEFLATE = 8
GZIP_OS_MACOS = 0x13

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_BYTES = 2
WIRE_FIXED32 = 5

# Field 1 as varint 0, the header value every known blob carries
DEFAULT_HEADER = b"\x08\x00"

# NoteStore
STORE_FIELD_HEADER = 1
STORE_FIELD_DOCUMENT = 2
# Document
DOCUMENT_FIELD_HEADER = 1
DOCUMENT_FIELD_VERSION = 2
DOCUMENT_FIELD_NOTE = 3
# Note
NOTE_FIELD_TEXT = 2
NOTE_FIELD_ATTRIBUTE_RUN = 5
# AttributeRun
RUN_FIELD_LENGTH = 1
RUN_FIELD_PARAGRAPH_STYLE = 2
RUN_FIELD_FONT = 3
RUN_FIELD_FONT_WEIGHT = 5
RUN_FIELD_UNDERLINED = 6
RUN_FIELD_STRIKETHROUGH = 7
RUN_FIELD_LINK = 9
RUN_FIELD_COLOR = 10
RUN_FIELD_ATTACHMENT = 12
# ParagraphStyle
STYLE_FIELD_TYPE = 1
STYLE_FIELD_ALIGNMENT = 2
STYLE_FIELD_INDENT = 4
STYLE_FIELD_CHECKLIST = 5
# Checklist
CHECKLIST_FIELD_UUID = 1
CHECKLIST_FIELD_DONE = 2
# Font
FONT_FIELD_NAME = 1
FONT_FIELD_SIZE = 2
# Color: red, green, blue, alpha
COLOR_CHANNELS = (1, 2, 3, 4)
# AttachmentInfo
ATTACHMENT_FIELD_IDENTIFIER = 1
ATTACHMENT_FIELD_UTI = 2

SUPPORTED_DOCUMENT_VERSIONS = frozenset({0})

TABLE_UTI = "com.apple.notes.table"
OBJECT_REPLACEMENT = "\ufffc"
MONOSPACE_FONT = "Menlo-Regular"
MONOSPACE_FONT_HINTS = ("menlo", "monaco", "courier", "mono")


class StyleType(IntEnum):
    """Paragraph style types of the host format."""

    TITLE = 0
    HEADING = 1
    SUBHEADING = 2
    SUBHEADING_2 = 3
    MONOSPACED = 4
    DOTTED_LIST = 100
    DASHED_LIST = 101
    NUMBERED_LIST = 102
    CHECKLIST = 103


class FontWeight(IntEnum):
    REGULAR = 0
    BOLD = 1
    ITALIC = 2
    BOLD_ITALIC = 3


class WireField(NamedTuple):
    """One decoded field: value is an int for varints, bytes otherwise."""

    number: int
    wire_type: int
    value: Union[int, bytes]
    raw: bytes


# -- envelope ---------------------------------------------------------------

def unwrap_envelope(data: bytes) -> bytes:
    """
    Strip the gzip envelope.

    Raises:
        MalformedHeader: The magic bytes are missing or the deflate data is corrupt
        UnsupportedVersion: The member uses a compression method other than deflate
        TruncatedStream: The compressed stream ends early
    """
    if data[:2] != GZIP_MAGIC:
        raise MalformedHeader("Missing gzip magic bytes")
    if len(data) < 10:
        raise TruncatedStream(f"Gzip header needs 10 bytes, got {len(data)}")
    if data[2] != GZIP_METHOD_DEFLATE:
        raise UnsupportedVersion(f"Unsupported gzip compression method: {data[2]}")

    inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        payload = inflater.decompress(data)
    except zlib.error as e:
        raise MalformedHeader(f"Corrupt compressed payload: {e}") from e
    if not inflater.eof:
        raise TruncatedStream("Compressed payload ends before the end of stream marker")
    return payload


def wrap_envelope(payload: bytes) -> bytes:
    """Wrap a payload in a gzip member with a fixed header (no mtime, macOS OS byte)."""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    deflated = compressor.compress(payload) + compressor.flush()
    header = GZIP_MAGIC + bytes([GZIP_METHOD_DEFLATE, 0, 0, 0, 0, 0, 0, GZIP_OS_MACOS])
    trailer = struct.pack("<II", zlib.crc32(payload) & 0xFFFFFFFF, len(payload) & 0xFFFFFFFF)
    return header + deflated + trailer


# -- reading ----------------------------------------------------------------

def read_varint(data: bytes, offset: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while offset < len(data):
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift >= 64:
            raise MalformedHeader("Varint too long")
    raise TruncatedStream("Unexpected end of data while reading a varint")


def _take(data: bytes, offset: int, length: int) -> Tuple[bytes, int]:
    end = offset + length
    if end > len(data):
        raise TruncatedStream(
            f"Field declares {length} bytes at offset {offset} but only {len(data) - offset} remain"
        )
    return data[offset:end], end


def iter_fields(data: bytes) -> Iterator[WireField]:
    """
    Walk a message's fields in order.

    Every field carries its complete raw bytes so unknown fields can be
    re-emitted untouched.
    """
    offset = 0
    while offset < len(data):
        start = offset
        key, offset = read_varint(data, offset)
        number, wire_type = key >> 3, key & 0x7
        if number == 0:
            raise MalformedHeader(f"Invalid field number 0 at offset {start}")

        value: Union[int, bytes]
        if wire_type == WIRE_VARINT:
            value, offset = read_varint(data, offset)
        elif wire_type == WIRE_BYTES:
            length, offset = read_varint(data, offset)
            value, offset = _take(data, offset, length)
        elif wire_type == WIRE_FIXED64:
            value, offset = _take(data, offset, 8)
        elif wire_type == WIRE_FIXED32:
            value, offset = _take(data, offset, 4)
        else:
            raise MalformedHeader(f"Unknown wire type {wire_type} at offset {start}")
        yield WireField(number, wire_type, value, data[start:offset])


def is_char_boundary(raw: bytes, offset: int) -> bool:
    """True if offset does not fall inside a multi-byte UTF-8 character."""
    return offset >= len(raw) or (raw[offset] & 0xC0) != 0x80


def as_float(field: WireField) -> Optional[float]:
    if field.wire_type == WIRE_FIXED32:
        return struct.unpack("<f", field.value)[0]
    if field.wire_type == WIRE_FIXED64:
        return struct.unpack("<d", field.value)[0]
    return None


# -- writing ----------------------------------------------------------------

def encode_varint(value: int) -> bytes:
    if value < 0:
        value &= (1 << 64) - 1
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def encode_tag(number: int, wire_type: int) -> bytes:
    return encode_varint((number << 3) | wire_type)


def varint_field(number: int, value: int) -> bytes:
    return encode_tag(number, WIRE_VARINT) + encode_varint(value)


def bytes_field(number: int, value: bytes) -> bytes:
    return encode_tag(number, WIRE_BYTES) + encode_varint(len(value)) + value


def string_field(number: int, value: str) -> bytes:
    return bytes_field(number, value.encode("utf-8"))


def float_field(number: int, value: float) -> bytes:
    return encode_tag(number, WIRE_FIXED32) + struct.pack("<f", value)
