"""
Codec for host note blobs.

Blobs are gzip-wrapped protobuf streams; decode() turns one into a Document
and encode()/encode_document() produce blobs the decoder reads back.
"""

from .decoder import NoteDecoder, decode
from .encoder import encode, encode_document

__all__ = ["NoteDecoder", "decode", "encode", "encode_document"]
