"""
HTML markup converter for notesport.

to_markup() renders the small HTML dialect the automation bridge hands to
the host application on create and update. from_markup() reads the same
dialect back, and tolerates other HTML, by walking a BeautifulSoup tree.
Anything the host cannot express, such as a table inside a table cell, is
flattened to plain text rather than rejected.
"""

import html
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag

from ..codec.palette import HEX_COLORS, color_tag_for_hex
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


MONOSPACE_FACE = "Menlo"
CHECKBOX_EMPTY = "☐"
CHECKBOX_DONE = "☑"


# -- writing ----------------------------------------------------------------

def to_markup(document: Document) -> str:
    """Render a Document as an HTML fragment: the title as <h1>, then the body."""
    title = f"<h1>{_escape(document.title)}</h1>"
    return title + body_markup(document)


def body_markup(document: Document) -> str:
    """Render only the body blocks of a Document."""
    return render_blocks(document.blocks)


def render_blocks(blocks: Sequence[Any]) -> str:
    parts: List[str] = []
    index = 0
    while index < len(blocks):
        block = blocks[index]
        if isinstance(block, ListItem):
            tag = "ol" if block.ordered else "ul"
            items = []
            while (index < len(blocks) and isinstance(blocks[index], ListItem)
                   and blocks[index].ordered == block.ordered):
                items.append(f"<li>{_runs_or_break(blocks[index].runs)}</li>")
                index += 1
            parts.append(f"<{tag}>{''.join(items)}</{tag}>")
            continue
        if isinstance(block, CodeLine):
            lines = []
            while index < len(blocks) and isinstance(blocks[index], CodeLine):
                lines.append(_escape(blocks[index].text))
                index += 1
            parts.append(f"<pre>{chr(10).join(lines)}</pre>")
            continue

        if isinstance(block, Heading):
            level = max(2, min(block.level, 3))
            parts.append(f"<h{level}>{render_runs(block.runs)}</h{level}>")
        elif isinstance(block, Checklist):
            box = CHECKBOX_DONE if block.checked else CHECKBOX_EMPTY
            parts.append(f"<div>{box} {render_runs(block.runs)}</div>")
        elif isinstance(block, Table):
            parts.append(_render_table(block))
        else:
            parts.append(f"<div>{_runs_or_break(block.runs)}</div>")
        index += 1
    return "".join(parts)


def render_runs(runs: Sequence[Run]) -> str:
    return "".join(_render_run(run) for run in runs)


def _runs_or_break(runs: Sequence[Run]) -> str:
    return render_runs(runs) or "<br>"


def _render_run(run: Run) -> str:
    rendered = _escape(run.text)
    if run.strikethrough:
        rendered = f"<strike>{rendered}</strike>"
    if run.underline:
        rendered = f"<u>{rendered}</u>"
    if run.italic:
        rendered = f"<i>{rendered}</i>"
    if run.bold:
        rendered = f"<b>{rendered}</b>"

    font_attributes = []
    if run.monospace:
        font_attributes.append(f'face="{MONOSPACE_FACE}"')
    if run.color in (ColorTag.CODE_INLINE, ColorTag.QUOTE):
        font_attributes.append(f'color="{HEX_COLORS[run.color]}"')
    if font_attributes:
        rendered = f"<font {' '.join(font_attributes)}>{rendered}</font>"

    if run.link:
        rendered = f'<a href="{html.escape(run.link, quote=True)}">{rendered}</a>'
    return rendered


def _render_table(table: Table) -> str:
    rows = []
    for row in table.rows:
        cells = "".join(f"<td>{_render_cell(cell)}</td>" for cell in row)
        rows.append(f"<tr>{cells}</tr>")
    return f"<table>{''.join(rows)}</table>"


def _render_cell(cell: Sequence[Any]) -> str:
    parts = []
    for block in cell:
        if isinstance(block, Table):
            parts.append(_escape(block.text.replace("\t", " ").replace("\n", " ")))
        elif isinstance(block, CodeLine):
            parts.append(_escape(block.text))
        else:
            parts.append(render_runs(block.runs))
    return "<br>".join(parts)


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


# -- reading ----------------------------------------------------------------

INLINE_TAGS = {
    "b": {"bold": True},
    "strong": {"bold": True},
    "i": {"italic": True},
    "em": {"italic": True},
    "u": {"underline": True},
    "strike": {"strikethrough": True},
    "s": {"strikethrough": True},
    "del": {"strikethrough": True},
    "code": {"monospace": True, "color": ColorTag.CODE_INLINE},
    "tt": {"monospace": True},
}
BLOCK_TAGS = {"div", "p", "li", "h1", "h2", "h3", "h4", "h5", "h6"}


def _is_text(node: PageElement) -> bool:
    """Character data, leaving out comments, doctypes and the like."""
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def _inline_style(node: PageElement) -> Dict[str, Any]:
    """Run attributes implied by the inline elements enclosing node."""
    style: Dict[str, Any] = {}
    for parent in reversed(list(node.parents)):
        name = parent.name
        if name in INLINE_TAGS:
            style.update(INLINE_TAGS[name])
        elif name == "a":
            style["link"] = parent.get("href") or None
        elif name == "font":
            face = (parent.get("face") or "").lower()
            if any(hint in face for hint in ("menlo", "monaco", "courier", "mono")):
                style["monospace"] = True
            color = color_tag_for_hex(parent.get("color") or "")
            if color != ColorTag.DEFAULT:
                style["color"] = color
    return style


class _MarkupReader:
    """Collects blocks from a parsed HTML fragment."""

    def __init__(self):
        self.blocks: List[Any] = []
        self.title: Optional[str] = None
        self.list_stack: List[bool] = []
        self.block_tag: Optional[str] = None
        self.block_depth = 0
        self.runs: List[Run] = []
        self.emitted = False

    def read(self, node: Tag) -> None:
        for child in node.children:
            if isinstance(child, Tag):
                self._element(child)
            elif _is_text(child):
                self._text(child)

    def finish(self) -> None:
        self._flush(force=False)

    def _element(self, element: Tag) -> None:
        name = element.name
        if name == "br":
            self._flush(force=True)
            self.emitted = True
        elif name == "pre":
            self._flush(force=False)
            text = _preformatted_text(element)
            self.blocks.extend(CodeLine(text=line) for line in text.split("\n"))
        elif name == "table":
            self._flush(force=False)
            self.blocks.append(_read_table(element))
        elif name in ("ul", "ol"):
            self._flush(force=False)
            self.list_stack.append(name == "ol")
            self.read(element)
            self._flush(force=False)
            self.list_stack.pop()
        elif name in BLOCK_TAGS:
            self._flush(force=False)
            outer = self.block_tag if self.block_depth else None
            # a plain container inside a list item or heading keeps its kind
            self.block_tag = outer if outer and name in ("div", "p") else name
            self.block_depth += 1
            self.emitted = False
            self.read(element)
            self._flush(force=not self.emitted)
            self.block_depth -= 1
            self.block_tag = outer
            self.emitted = True
        else:
            self.read(element)

    def _text(self, node: NavigableString) -> None:
        text = str(node)
        if self.block_tag is None:
            if not text.strip():
                return
            self.block_tag = "div"
            self.emitted = False
        self.runs.append(Run(text=text, **_inline_style(node)))

    def _flush(self, force: bool) -> None:
        runs = merge_runs(self.runs)
        self.runs = []
        if not runs and not force:
            return
        tag = self.block_tag or "div"

        if tag == "h1" and self.title is None and not self.blocks:
            self.title = "".join(run.text for run in runs)
            return
        if tag.startswith("h") and tag[1:].isdigit():
            self.blocks.append(Heading(level=int(tag[1:]), runs=runs))
        elif tag == "li":
            ordered = self.list_stack[-1] if self.list_stack else False
            self.blocks.append(ListItem(ordered=ordered, runs=runs))
        else:
            self.blocks.append(_paragraph_or_checklist(runs))


def _preformatted_text(element: Tag) -> str:
    parts = []
    for node in element.descendants:
        if isinstance(node, Tag) and node.name == "br":
            parts.append("\n")
        elif _is_text(node):
            parts.append(str(node))
    return "".join(parts)


def _read_table(table: Tag) -> Table:
    """Read one table; tables nested in a cell are flattened into its text."""
    rows = []
    for row in table.find_all("tr"):
        if row.find_parent("table") is not table:
            continue
        cells = tuple(_read_cell(cell) for cell in row.find_all(["td", "th"], recursive=False))
        if cells:
            rows.append(cells)
    return Table(rows=tuple(rows))


def _read_cell(cell: Tag) -> Tuple[Any, ...]:
    paragraphs = []
    runs: List[Run] = []
    for node in cell.descendants:
        if isinstance(node, Tag):
            if node.name == "br":
                paragraphs.append(Paragraph(runs=merge_runs(runs)))
                runs = []
        elif _is_text(node):
            runs.append(Run(text=str(node), **_inline_style(node)))
    paragraphs.append(Paragraph(runs=merge_runs(runs)))
    return tuple(paragraphs)


def _paragraph_or_checklist(runs: Tuple[Run, ...]) -> Any:
    text = "".join(run.text for run in runs)
    for box, checked in ((CHECKBOX_EMPTY, False), (CHECKBOX_DONE, True)):
        if text.startswith(box):
            strip = len(box) + (1 if text[len(box):].startswith(" ") else 0)
            return Checklist(checked=checked, runs=_drop_prefix(runs, strip))
    return Paragraph(runs=runs)


def _drop_prefix(runs: Sequence[Run], count: int) -> Tuple[Run, ...]:
    remaining: List[Run] = []
    for run in runs:
        if count >= len(run.text):
            count -= len(run.text)
            continue
        remaining.append(run.with_text(run.text[count:]) if count else run)
        count = 0
    return tuple(remaining)


def from_markup(markup: str, title: Optional[str] = None) -> Document:
    """
    Parse an HTML fragment into a Document.

    Args:
        markup: HTML as produced by to_markup or returned by the host
        title: Known title; when given, a leading block repeating it is dropped.
            When omitted, a leading <h1> supplies the title.

    Returns:
        The parsed Document
    """
    reader = _MarkupReader()
    reader.read(BeautifulSoup(markup, "html.parser"))
    reader.finish()

    blocks = list(reader.blocks)
    if title is None:
        title = reader.title or ""
    elif reader.title is not None and reader.title != title:
        blocks.insert(0, Heading(level=1, runs=(Run(text=reader.title),)))
    elif reader.title is None and blocks and getattr(blocks[0], "text", None) == title:
        blocks.pop(0)
    return Document(title=title, blocks=tuple(blocks))


def split_title_and_body(text: str, known_title: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Split note text into the old title line and the body for a partial update.

    The host only exposes the whole note text, so a title-only or body-only
    update has to rebuild the other half. The first line is treated as the
    old title only when it equals known_title; otherwise the whole text is
    returned as the body. A body whose first line merely happens to equal
    the title is still stripped.

    Returns:
        (title line or None, body)
    """
    first, _, rest = text.partition("\n")
    if known_title is not None and first.strip() == known_title.strip():
        return first, rest
    return None, text
