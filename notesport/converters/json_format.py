"""
JSON converter for notesport.

Two shapes are written. Minimal carries the identity, title, plain content,
folder and timestamps. Full adds attachments, hashtags, internal links, the
markup rendering and the complete block structure. Every minimal key appears
in full output with the same value.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from ..errors import ConversionError
from ..models.document import AttachmentRef, Block, Document, Paragraph, plain_runs
from ..models.transfer import JsonMode
from .markdown import format_date, parse_date
from .markup import to_markup


_BLOCKS = TypeAdapter(Tuple[Block, ...])


def to_json_dict(document: Document, mode: JsonMode = JsonMode.MINIMAL) -> Dict[str, Any]:
    """
    Build the JSON object for a Document.

    Args:
        document: The document to serialise
        mode: MINIMAL or FULL; chosen by the caller for every call

    Returns:
        A JSON-compatible dictionary
    """
    mode = JsonMode(mode)
    data: Dict[str, Any] = {
        "id": document.identifier,
        "title": document.title,
        "content": document.body_text,
        "folder": document.folder,
        "createdAt": _date(document.created_at),
        "modifiedAt": _date(document.modified_at),
    }
    if mode is JsonMode.FULL:
        data["attachments"] = [_attachment_dict(ref) for ref in document.attachments]
        data["hashtags"] = list(document.hashtags)
        data["internalLinks"] = [
            {"text": link.text, "targetId": link.target_id} for link in document.internal_links
        ]
        data["markup"] = to_markup(document)
        data["blocks"] = _BLOCKS.dump_python(document.blocks, mode="json")
    return data


def to_json(document: Document, mode: JsonMode = JsonMode.MINIMAL) -> str:
    """Serialise a Document as indented UTF-8 JSON text."""
    return json.dumps(to_json_dict(document, mode), indent=2, ensure_ascii=False) + "\n"


def from_json(text: Union[str, bytes], source_name: str = "",
              folder: Optional[str] = None) -> Document:
    """
    Rebuild a Document from JSON written by to_json.

    Full output restores the blocks exactly; minimal output yields one plain
    paragraph per content line.

    Raises:
        ConversionError: If the text is not a JSON object of the expected shape
    """
    try:
        data = json.loads(text)
    except (ValueError, UnicodeDecodeError) as e:
        raise ConversionError(f"Invalid JSON in {source_name or 'input'}: {e}") from e
    if not isinstance(data, dict):
        raise ConversionError(f"Expected a JSON object in {source_name or 'input'}")

    try:
        if data.get("blocks") is not None:
            blocks = _BLOCKS.validate_python(data["blocks"])
        else:
            content = data.get("content") or ""
            blocks = tuple(Paragraph(runs=plain_runs(line)) for line in content.split("\n")) if content else ()

        attachments = tuple(
            AttachmentRef(
                identifier=item["identifier"],
                name=item.get("name"),
                type_uti=item.get("typeUti") or "public.data",
                file_size=item.get("fileSize") or 0,
                created_at=parse_date(item.get("createdAt")),
                modified_at=parse_date(item.get("modifiedAt")),
            )
            for item in data.get("attachments") or ()
        )

        return Document(
            identifier=str(data.get("id") or ""),
            title=str(data.get("title") or Path(source_name).stem),
            folder=data.get("folder") or folder,
            blocks=blocks,
            attachments=attachments,
            created_at=parse_date(data.get("createdAt")),
            modified_at=parse_date(data.get("modifiedAt")),
        )
    except (ValidationError, KeyError, TypeError, AttributeError) as e:
        raise ConversionError(f"Unexpected JSON structure in {source_name or 'input'}: {e}") from e


def _attachment_dict(ref: AttachmentRef) -> Dict[str, Any]:
    return {
        "identifier": ref.identifier,
        "name": ref.name,
        "typeUti": ref.type_uti,
        "fileSize": ref.file_size,
        "createdAt": _date(ref.created_at),
        "modifiedAt": _date(ref.modified_at),
    }


def _date(value: Optional[datetime]) -> Optional[str]:
    return format_date(value) if value else None
