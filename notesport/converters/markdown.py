"""
Markdown converter for notesport.

Documents are written as a metadata header followed by a Markdown body: the
title as a level-1 heading, a blank line, then exactly one line per block
(code fences and tables span several lines). Reading accepts arbitrary
Markdown and degrades anything it does not recognise to paragraphs.

Known limitation: plain Markdown has no underline, so underlined runs are
written as <u>...</u>; inline colours other than the quote and inline-code
colours are not written at all.
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml

from ..errors import ConversionError
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
    merge_runs,
)


HEADER_MARKER = "---"
HEADER_END_MARKERS = ("---", "...")
DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Characters escaped with a backslash wherever they appear in text
INLINE_ESCAPE = re.compile(r"([\\`*~\[\]<])")
# Characters a backslash may escape on the way back in
ESCAPABLE = set("\\`*_~[](){}<>#|!+-.")

HEADING_LINE = re.compile(r"^(#{1,6})(?: (.*))?$")
CHECKLIST_LINE = re.compile(r"^[-*+] \[([ xX])\](?: (.*))?$")
BULLET_LINE = re.compile(r"^[-*+] (.*)$")
ORDERED_LINE = re.compile(r"^(\d+)[.)] (.*)$")
QUOTE_LINE = re.compile(r"^> ?(.*)$")
FENCE_LINE = re.compile(r"^(`{3,}|~{3,})(.*)$")
TABLE_SEPARATOR = re.compile(r"^\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$")
CELL_BREAK = re.compile(r"(?<!\\)<br\s*/?>")

# Paragraph openings that would otherwise read back as another construct
LEADING_MARKER = re.compile(r"^(#|[-+] |>|\||```|~~~)")
LEADING_ORDINAL = re.compile(r"^(\d+)([.)])( |$)")


def _span(name: str) -> str:
    return rf"(?P<{name}>(?:\\.|[^\\])+?)"


INLINE_PATTERN = re.compile(
    r"(?P<escape>\\(?P<escaped>.))"
    r"|(?P<code>(?P<ticks>`+)(?P<code_text>.+?)(?<!`)(?P=ticks)(?!`))"
    r"|(?P<link>\[(?P<link_text>(?:\\.|[^\]\\])*)\]\((?P<url>[^)\s]+)\))"
    r"|(?P<underline><u>" + _span("underline_text") + r"</u>)"
    r"|(?P<strong_em>\*\*\*" + _span("strong_em_text") + r"\*\*\*)"
    r"|(?P<strong>\*\*" + _span("strong_text") + r"\*\*)"
    r"|(?P<em>\*(?!\*)" + _span("em_text") + r"\*)"
    r"|(?P<strike>~~" + _span("strike_text") + r"~~)"
)


# -- writing ----------------------------------------------------------------

def to_markdown(document: Document, include_header: bool = True) -> str:
    """
    Render a Document as Markdown.

    Args:
        document: The document to render
        include_header: Whether to write the metadata header

    Returns:
        Markdown text ending with a newline
    """
    lines: List[str] = []
    if include_header:
        lines.extend(_render_header(document))
    if document.title:
        lines.append(f"# {_escape_inline(document.title)}")
        lines.append("")
    lines.extend(render_blocks(document.blocks))
    return "\n".join(lines) + "\n"


def render_blocks(blocks: Sequence[Any]) -> List[str]:
    """Render blocks to Markdown lines; consecutive code lines share one fence."""
    lines: List[str] = []
    ordinal = 0
    index = 0
    while index < len(blocks):
        block = blocks[index]
        if isinstance(block, ListItem) and block.ordered:
            ordinal += 1
        else:
            ordinal = 0

        if isinstance(block, CodeLine):
            group = []
            while index < len(blocks) and isinstance(blocks[index], CodeLine):
                group.append(blocks[index].text)
                index += 1
            fence = _fence_for(group)
            lines.append(fence)
            lines.extend(group)
            lines.append(fence)
            continue

        if isinstance(block, Heading):
            lines.append(f"{'#' * block.level} {render_runs(block.runs)}")
        elif isinstance(block, Checklist):
            mark = "x" if block.checked else " "
            lines.append(f"- [{mark}] {render_runs(block.runs)}")
        elif isinstance(block, ListItem):
            prefix = f"{ordinal}." if block.ordered else "-"
            lines.append(f"{prefix} {render_runs(block.runs)}")
        elif isinstance(block, Table):
            lines.extend(_render_table(block))
        else:
            lines.append(_render_paragraph(block))
        index += 1
    return lines


def render_runs(runs: Sequence[Run]) -> str:
    return "".join(_render_run(run) for run in runs)


def _render_paragraph(paragraph: Paragraph) -> str:
    runs = paragraph.runs
    if runs and all(run.color == ColorTag.QUOTE for run in runs):
        return f"> {render_runs(runs)}"
    rendered = render_runs(runs)
    if LEADING_MARKER.match(rendered):
        return "\\" + rendered
    ordinal = LEADING_ORDINAL.match(rendered)
    if ordinal:
        return f"{ordinal.group(1)}\\{rendered[len(ordinal.group(1)):]}"
    return rendered


def _render_run(run: Run) -> str:
    text = run.text
    core = text.strip()
    if not core:
        return _escape_inline(text)
    lead = text[:len(text) - len(text.lstrip())]
    trail = text[len(text.rstrip()):]

    rendered = _code_span(core) if run.monospace else _escape_inline(core)
    if run.strikethrough:
        rendered = f"~~{rendered}~~"
    if run.bold and run.italic:
        rendered = f"***{rendered}***"
    elif run.bold:
        rendered = f"**{rendered}**"
    elif run.italic:
        rendered = f"*{rendered}*"
    if run.underline:
        rendered = f"<u>{rendered}</u>"
    if run.link:
        url = run.link.replace(" ", "%20").replace("(", "%28").replace(")", "%29")
        rendered = f"[{rendered}]({url})"
    return f"{_escape_inline(lead)}{rendered}{_escape_inline(trail)}"


def _escape_inline(text: str) -> str:
    return INLINE_ESCAPE.sub(r"\\\1", text)


def _code_span(text: str) -> str:
    longest = max((len(m) for m in re.findall(r"`+", text)), default=0)
    ticks = "`" * (longest + 1)
    if text.startswith("`") or text.endswith("`"):
        text = f" {text} "
    return f"{ticks}{text}{ticks}"


def _fence_for(lines: Sequence[str]) -> str:
    longest = max((len(m) for line in lines for m in re.findall(r"^`+", line)), default=0)
    return "`" * max(3, longest + 1)


def _render_table(table: Table) -> List[str]:
    if not table.rows:
        return [""]
    width = max(len(row) for row in table.rows)
    rendered_rows = []
    for row in table.rows:
        cells = [_render_cell(cell) for cell in row]
        cells.extend([""] * (width - len(cells)))
        rendered_rows.append("| " + " | ".join(cells) + " |")
    separator = "|" + "|".join(["---"] * width) + "|"
    return [rendered_rows[0], separator] + rendered_rows[1:]


def _render_cell(cell: Sequence[Any]) -> str:
    parts = []
    for block in cell:
        if isinstance(block, Table):
            # Nested tables flatten to text
            text = _escape_inline(block.text.replace("\t", " ").replace("\n", " "))
        elif isinstance(block, CodeLine):
            text = _code_span(block.text) if block.text.strip() else _escape_inline(block.text)
        else:
            text = render_runs(block.runs)
        parts.append(text.replace("|", "\\|"))
    return "<br>".join(parts)


def _render_header(document: Document) -> List[str]:
    lines = [HEADER_MARKER, f"title: {_header_value(document.title)}"]
    if document.folder:
        lines.append(f"folder: {_header_value(document.folder)}")
    if document.created_at:
        lines.append(f"created: {format_date(document.created_at)}")
    if document.modified_at:
        lines.append(f"modified: {format_date(document.modified_at)}")
    if document.hashtags:
        tags = ", ".join(_header_value(tag.lstrip("#")) for tag in document.hashtags)
        lines.append(f"tags: [{tags}]")
    lines.append(HEADER_MARKER)
    return lines


def _header_value(value: str) -> str:
    """Quote a header value unless YAML reads it back as the identical string."""
    if value and value == value.strip() and "\n" not in value:
        try:
            if yaml.safe_load(value) == value:
                return value
        except yaml.YAMLError:
            pass
    return json.dumps(value, ensure_ascii=False)


def format_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(DATE_FORMAT)


# -- reading ----------------------------------------------------------------

def from_markdown(text: Union[str, bytes], source_name: str,
                  folder: Optional[str] = None) -> Document:
    """
    Parse Markdown with an optional metadata header into a Document.

    The title comes from the header, then the first level-1 heading, then
    the stem of source_name. Header tags are informational; hashtags are
    always derived from the parsed blocks.

    Args:
        text: Markdown text or raw UTF-8 bytes
        source_name: File name the text came from
        folder: Folder to use when the header does not name one

    Returns:
        The parsed Document

    Raises:
        ConversionError: If the bytes are not UTF-8 or the header is malformed
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConversionError(f"{source_name} is not valid UTF-8: {e}") from e

    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    header, lines = _split_header(lines, source_name)

    header_title = header.get("title")
    header_title = str(header_title) if header_title not in (None, "") else None
    title, lines = _resolve_title(lines, header_title)
    if title is None:
        title = Path(source_name).stem

    header_folder = header.get("folder")
    return Document(
        title=title,
        folder=str(header_folder) if header_folder not in (None, "") else folder,
        blocks=tuple(parse_blocks(lines)),
        created_at=parse_date(header.get("created")),
        modified_at=parse_date(header.get("modified")),
    )


def _split_header(lines: List[str], source_name: str) -> Tuple[Dict[str, Any], List[str]]:
    if not lines or lines[0].strip() != HEADER_MARKER:
        return {}, lines

    for index in range(1, len(lines)):
        if lines[index].strip() in HEADER_END_MARKERS:
            break
    else:
        raise ConversionError(f"Unterminated metadata header in {source_name}")

    try:
        header = yaml.safe_load("\n".join(lines[1:index]))
    except yaml.YAMLError as e:
        raise ConversionError(f"Malformed metadata header in {source_name}: {e}") from e
    if header is None:
        header = {}
    if not isinstance(header, dict):
        raise ConversionError(f"Metadata header in {source_name} is not a key/value mapping")
    return header, lines[index + 1:]


def _resolve_title(lines: List[str], header_title: Optional[str]) -> Tuple[Optional[str], List[str]]:
    """
    Find and consume the title heading.

    A level-1 heading at the top of the body is the title line and is
    consumed together with the blank line after it. Without a header title
    the first level-1 heading anywhere in the body is consumed.
    """
    first = next((i for i, line in enumerate(lines) if line.strip()), None)
    if first is None:
        return header_title, lines

    top = _title_heading(lines[first])
    if top is not None and (header_title is None or top == header_title):
        rest = lines[first + 1:]
        if rest and not rest[0].strip():
            rest = rest[1:]
        return top, rest
    if header_title is not None:
        return header_title, lines[first:]

    in_fence = False
    for index, line in enumerate(lines):
        if FENCE_LINE.match(line):
            in_fence = not in_fence
            continue
        heading = None if in_fence else _title_heading(line)
        if heading is not None:
            return heading, lines[:index] + lines[index + 1:]
    return None, lines


def _title_heading(line: str) -> Optional[str]:
    match = HEADING_LINE.match(line)
    if match and len(match.group(1)) == 1 and match.group(2):
        return "".join(run.text for run in parse_inline(match.group(2)))
    return None


def parse_blocks(lines: Sequence[str]) -> List[Any]:
    """Parse body lines into blocks; one block per line outside fences and tables."""
    blocks: List[Any] = []
    index = 0
    while index < len(lines):
        line = lines[index]

        fence = FENCE_LINE.match(line)
        if fence:
            marker = fence.group(1)
            index += 1
            while index < len(lines):
                closing = lines[index].strip()
                if closing.startswith(marker[0] * len(marker)) and not closing.strip(marker[0]):
                    index += 1
                    break
                blocks.append(CodeLine(text=lines[index]))
                index += 1
            continue

        if line.startswith("|") and index + 1 < len(lines) and TABLE_SEPARATOR.match(lines[index + 1]):
            rows = [_split_row(line)]
            index += 2
            while index < len(lines) and lines[index].startswith("|"):
                rows.append(_split_row(lines[index]))
                index += 1
            blocks.append(_build_table(rows))
            continue

        blocks.append(_parse_line(line))
        index += 1
    return blocks


def _parse_line(line: str) -> Any:
    heading = HEADING_LINE.match(line)
    if heading:
        return Heading(level=len(heading.group(1)), runs=parse_inline(heading.group(2) or ""))
    checklist = CHECKLIST_LINE.match(line)
    if checklist:
        return Checklist(
            checked=checklist.group(1).lower() == "x",
            runs=parse_inline(checklist.group(2) or ""),
        )
    bullet = BULLET_LINE.match(line)
    if bullet:
        return ListItem(ordered=False, runs=parse_inline(bullet.group(1)))
    ordered = ORDERED_LINE.match(line)
    if ordered:
        return ListItem(ordered=True, runs=parse_inline(ordered.group(2)))
    quote = QUOTE_LINE.match(line)
    if quote:
        runs = tuple(
            run if run.color != ColorTag.DEFAULT else run.model_copy(update={"color": ColorTag.QUOTE})
            for run in parse_inline(quote.group(1))
        )
        return Paragraph(runs=runs)
    return Paragraph(runs=parse_inline(line))


def _split_row(line: str) -> List[str]:
    """Split a table row on unescaped pipes."""
    cells: List[str] = []
    current = ""
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\" and index + 1 < len(line):
            current += line[index:index + 2]
            index += 2
            continue
        if char == "|":
            cells.append(current)
            current = ""
        else:
            current += char
        index += 1
    cells.append(current)
    # Drop the empty edges produced by leading and trailing pipes
    if line.startswith("|"):
        cells = cells[1:]
    if line.rstrip().endswith("|") and not line.rstrip().endswith("\\|") and cells:
        cells = cells[:-1]
    return [cell.strip() for cell in cells]


def _build_table(rows: List[List[str]]) -> Table:
    built = []
    for row in rows:
        cells = []
        for cell in row:
            cells.append(tuple(Paragraph(runs=parse_inline(part)) for part in CELL_BREAK.split(cell)))
        built.append(tuple(cells))
    return Table(rows=tuple(built))


def parse_inline(text: str) -> Tuple[Run, ...]:
    """Parse inline Markdown into runs."""
    return merge_runs(_parse_inline(text, {}))


def _parse_inline(text: str, style: Dict[str, Any]) -> List[Run]:
    runs: List[Run] = []
    position = 0
    for match in INLINE_PATTERN.finditer(text):
        if match.start() > position:
            runs.append(Run(text=text[position:match.start()], **style))
        position = match.end()

        if match.group("escape"):
            escaped = match.group("escaped")
            literal = escaped if escaped in ESCAPABLE else "\\" + escaped
            runs.append(Run(text=literal, **style))
        elif match.group("code"):
            code_text = match.group("code_text")
            if len(code_text) > 2 and code_text.startswith(" ") and code_text.endswith(" ") and code_text.strip():
                code_text = code_text[1:-1]
            runs.append(Run(text=code_text, **{**style, "monospace": True, "color": ColorTag.CODE_INLINE}))
        elif match.group("link"):
            runs.extend(_parse_inline(match.group("link_text"), {**style, "link": match.group("url")}))
        elif match.group("underline"):
            runs.extend(_parse_inline(match.group("underline_text"), {**style, "underline": True}))
        elif match.group("strong_em"):
            runs.extend(_parse_inline(match.group("strong_em_text"), {**style, "bold": True, "italic": True}))
        elif match.group("strong"):
            runs.extend(_parse_inline(match.group("strong_text"), {**style, "bold": True}))
        elif match.group("em"):
            runs.extend(_parse_inline(match.group("em_text"), {**style, "italic": True}))
        elif match.group("strike"):
            runs.extend(_parse_inline(match.group("strike_text"), {**style, "strikethrough": True}))
    if position < len(text):
        runs.append(Run(text=text[position:], **style))
    return runs


def parse_date(value: Any) -> Optional[datetime]:
    """
    Read a header date.

    PyYAML already turns ISO timestamps into datetimes; strings are parsed
    with fromisoformat. Naive values are taken as UTC.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            logging.warning(f"Ignoring unparseable date in metadata header: {value}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
