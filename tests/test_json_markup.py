"""
Unit tests for the JSON and HTML markup converters.
"""

import json
import unittest
from datetime import datetime, timezone

from notesport.converters import (
    body_markup,
    from_json,
    from_markup,
    split_title_and_body,
    to_json,
    to_json_dict,
    to_markup,
)
from notesport.errors import ConversionError
from notesport.models import (
    AttachmentRef,
    Checklist,
    CodeLine,
    ColorTag,
    Document,
    Heading,
    JsonMode,
    ListItem,
    Paragraph,
    Run,
    table_from_cells,
)


def sample_document():
    return Document(
        identifier="NOTE-1",
        title="Weekly #plan",
        folder="Work",
        created_at=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
        modified_at=datetime(2024, 3, 2, 17, 30, tzinfo=timezone.utc),
        attachments=(AttachmentRef(identifier="ATT-1", name="chart.png", type_uti="public.png", file_size=2048),),
        blocks=(
            Heading(level=2, runs=(Run(text="Goals"),)),
            Paragraph(runs=(
                Run(text="Ship "),
                Run(text="v2", bold=True),
                Run(text=" see "),
                Run(text="brief", link="applenotes:note/abc-42"),
                Run(text=" #work"),
            )),
            ListItem(ordered=True, runs=(Run(text="Review"),)),
            Checklist(checked=True, runs=(Run(text="Email"),)),
            CodeLine(text="make release"),
            table_from_cells([["Owner", "Task"], ["Ana", "Docs"]], attachment_id="TABLE-7"),
        ),
    )


class TestJsonConverter(unittest.TestCase):
    """Test minimal and full JSON output."""

    def test_minimal_shape(self):
        data = to_json_dict(sample_document(), JsonMode.MINIMAL)
        self.assertEqual(data, {
            "id": "NOTE-1",
            "title": "Weekly #plan",
            "content": sample_document().body_text,
            "folder": "Work",
            "createdAt": "2024-03-01T09:00:00Z",
            "modifiedAt": "2024-03-02T17:30:00Z",
        })

    def test_minimal_is_contained_in_full(self):
        document = sample_document()
        minimal = to_json_dict(document, JsonMode.MINIMAL)
        full = to_json_dict(document, JsonMode.FULL)
        for key, value in minimal.items():
            self.assertIn(key, full)
            self.assertEqual(full[key], value)

    def test_full_extras(self):
        full = to_json_dict(sample_document(), JsonMode.FULL)
        self.assertEqual(full["hashtags"], ["#work"])
        self.assertEqual(full["internalLinks"], [{"text": "brief", "targetId": "ABC-42"}])
        self.assertEqual(full["attachments"][0]["typeUti"], "public.png")
        self.assertEqual(full["attachments"][0]["fileSize"], 2048)
        self.assertTrue(full["markup"].startswith("<h1>Weekly #plan</h1>"))

    def test_output_is_indented_utf8(self):
        document = Document(title="Café ☕")
        text = to_json(document, JsonMode.MINIMAL)
        self.assertIn('"title": "Café ☕"', text)
        self.assertTrue(text.endswith("}\n"))
        self.assertEqual(json.loads(text)["title"], "Café ☕")

    def test_full_round_trip(self):
        document = sample_document()
        parsed = from_json(to_json(document, JsonMode.FULL), source_name="weekly.json")
        self.assertEqual(parsed.identifier, document.identifier)
        self.assertEqual(parsed.title, document.title)
        self.assertEqual(parsed.folder, document.folder)
        self.assertEqual(parsed.blocks, document.blocks)
        self.assertEqual(parsed.attachments, document.attachments)
        self.assertEqual(parsed.created_at, document.created_at)
        self.assertEqual(parsed.modified_at, document.modified_at)

    def test_minimal_round_trip_keeps_text(self):
        document = sample_document()
        parsed = from_json(to_json(document, JsonMode.MINIMAL).encode("utf-8"))
        self.assertEqual(parsed.title, document.title)
        self.assertEqual(parsed.body_text, document.body_text)
        self.assertTrue(all(isinstance(block, Paragraph) for block in parsed.blocks))

    def test_title_falls_back_to_source_name(self):
        parsed = from_json('{"content": "x"}', source_name="loose.json", folder="Inbox")
        self.assertEqual(parsed.title, "loose")
        self.assertEqual(parsed.folder, "Inbox")

    def test_invalid_json(self):
        with self.assertRaises(ConversionError):
            from_json("{not json", source_name="bad.json")

    def test_json_must_be_an_object(self):
        with self.assertRaises(ConversionError):
            from_json("[1, 2]", source_name="bad.json")

    def test_bad_block_structure(self):
        with self.assertRaises(ConversionError):
            from_json('{"title": "T", "blocks": [{"kind": "mystery"}]}', source_name="bad.json")


class TestMarkupConverter(unittest.TestCase):
    """Test HTML markup rendering and parsing."""

    def test_render(self):
        document = Document(title="T & C", blocks=(
            Paragraph(runs=(Run(text="x < y"),)),
            ListItem(runs=(Run(text="a"),)),
            ListItem(runs=(Run(text="b", bold=True),)),
            Checklist(checked=True, runs=(Run(text="done"),)),
            CodeLine(text="line 1"),
            CodeLine(text="line 2"),
            Paragraph(),
        ))
        self.assertEqual(to_markup(document), (
            "<h1>T &amp; C</h1>"
            "<div>x &lt; y</div>"
            "<ul><li>a</li><li><b>b</b></li></ul>"
            "<div>☑ done</div>"
            "<pre>line 1\nline 2</pre>"
            "<div><br></div>"
        ))
        self.assertEqual(body_markup(document), to_markup(document)[len("<h1>T &amp; C</h1>"):])

    def test_inline_rendering(self):
        document = Document(title="T", blocks=(Paragraph(runs=(
            Run(text="code", monospace=True, color=ColorTag.CODE_INLINE),
            Run(text="site", link="https://example.com/?a=1&b=2"),
        )),))
        self.assertEqual(body_markup(document), (
            '<div><font face="Menlo" color="#c7254e">code</font>'
            '<a href="https://example.com/?a=1&amp;b=2">site</a></div>'
        ))

    def test_round_trip(self):
        document = Document(title="Plan", blocks=(
            Heading(level=2, runs=(Run(text="Goals"),)),
            Paragraph(runs=(Run(text="plain "), Run(text="bold", bold=True), Run(text=" "),
                            Run(text="under", underline=True, strikethrough=True))),
            ListItem(ordered=True, runs=(Run(text="one"),)),
            ListItem(ordered=True, runs=(Run(text="two"),)),
            Checklist(checked=False, runs=(Run(text="open"),)),
            CodeLine(text=""),
            CodeLine(text="  indented"),
            Paragraph(),
            Paragraph(runs=(Run(text="quote", color=ColorTag.QUOTE),)),
            table_from_cells([["a", "b"], ["1", "2"]]),
        ))
        parsed = from_markup(to_markup(document))
        self.assertEqual(parsed.title, "Plan")
        self.assertEqual(parsed.blocks, document.blocks)

    def test_known_title_drops_repeated_first_line(self):
        parsed = from_markup("<div>Plan</div><div>body</div>", title="Plan")
        self.assertEqual(parsed.title, "Plan")
        self.assertEqual([block.text for block in parsed.blocks], ["body"])

    def test_tolerates_foreign_html(self):
        parsed = from_markup("<p>Hello <strong>world</strong></p><p><em>bye</em></p>", title="X")
        self.assertEqual(parsed.blocks, (
            Paragraph(runs=(Run(text="Hello "), Run(text="world", bold=True))),
            Paragraph(runs=(Run(text="bye", italic=True),)),
        ))

    def test_reads_nested_markup(self):
        parsed = from_markup(
            "<!-- exported --><h1>Trip</h1>"
            '<div><a href="https://example.com"><b>bold link</b></a></div>'
            "<table><tbody><tr><th>a</th><td>b<br>c</td></tr></tbody></table>"
            "<ul><li><div>nested</div></li></ul>"
        )
        self.assertEqual(parsed.title, "Trip")
        self.assertEqual(parsed.blocks, (
            Paragraph(runs=(Run(text="bold link", bold=True, link="https://example.com"),)),
            table_from_cells([["a", "b\nc"]]),
            ListItem(ordered=False, runs=(Run(text="nested"),)),
        ))


class TestSplitTitleAndBody(unittest.TestCase):
    """Test the partial update heuristic."""

    def test_first_line_matching_title_is_split_off(self):
        self.assertEqual(split_title_and_body("Title\nbody\nmore", "Title"), ("Title", "body\nmore"))

    def test_first_line_not_matching_title_is_kept(self):
        self.assertEqual(split_title_and_body("Other\nbody", "Title"), (None, "Other\nbody"))

    def test_unknown_title_keeps_everything(self):
        self.assertEqual(split_title_and_body("Title\nbody", None), (None, "Title\nbody"))

    def test_body_starting_with_title_text_loses_one_line(self):
        # A note whose first body line repeats the title: only the title line goes
        self.assertEqual(split_title_and_body("Agenda\nAgenda\nitems", "Agenda"), ("Agenda", "Agenda\nitems"))

    def test_title_only_note(self):
        self.assertEqual(split_title_and_body("Agenda", "Agenda"), ("Agenda", ""))


if __name__ == "__main__":
    unittest.main()
