import json
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from notesport.bridge import MockBridge
from notesport.codec import encode
from notesport.config import ConfigManager
from notesport.errors import ConfigurationError, ConflictUnresolved, NoteNotFound
from notesport.models import (
    AttachmentRef,
    Checklist,
    ConflictStrategy,
    ExportFormat,
    ExportOptions,
    ImportOptions,
    ItemState,
    JsonMode,
    Run,
)
from notesport.store import NoteStore, RowSummary, StoreRow
from notesport.transfer import TransferOrchestrator, derive_folder, discover_files, parse_file


EXISTING_ID = "x-coredata://mock/ICNote/p100"


class InMemoryStore(NoteStore):
    """Dictionary-backed store for orchestrator tests."""

    def __init__(self):
        self.rows = {}
        self.titles = {}

    def add(self, row, title):
        self.rows[row.identifier] = row
        self.titles[row.identifier] = title

    def fetch_row(self, identifier):
        if identifier not in self.rows:
            raise NoteNotFound(identifier)
        return self.rows[identifier]

    def list_rows(self, folder=None, limit=None):
        summaries = [
            RowSummary(identifier=row.identifier, title=self.titles[row.identifier],
                       folder=row.folder, modified_at=row.modified_at)
            for row in self.rows.values()
            if folder is None or row.folder == folder
        ]
        return summaries[:limit] if limit is not None else summaries


@pytest.fixture
def config(tmp_path):
    return ConfigManager(str(tmp_path / "missing-config.yaml"))


@pytest.fixture
def store():
    store = InMemoryStore()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for index in range(1, 6):
        store.add(StoreRow(
            identifier=f"n{index}",
            data=encode(f"Note {index}", f"Body {index} #tag{index}"),
            folder="Work" if index % 2 else None,
            created_at=base,
            modified_at=base + timedelta(days=index),
        ), title=f"Note {index}")
    return store


@pytest.fixture
def out(tmp_path):
    return tmp_path / "export"


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# -- export -------------------------------------------------------------------

def test_export_markdown_files(store, config, out):
    orchestrator = TransferOrchestrator(store=store, config=config)
    result = orchestrator.export_notes(["n1", "n2"], ExportOptions(output_dir=out))

    assert result.exported_count == 2
    assert result.failures == []
    first = (out / "Work" / "Note 1.md").read_text(encoding="utf-8")
    assert first.startswith("---\ntitle: Note 1\nfolder: Work\ncreated: 2024-01-01T00:00:00Z\n")
    assert "# Note 1\n\nBody 1 #tag1\n" in first
    assert (out / "Note 2.md").exists()
    assert [item.target for item in result.succeeded] == [str(out / "Work" / "Note 1.md"), str(out / "Note 2.md")]


def test_export_full_json(store, config, out):
    orchestrator = TransferOrchestrator(store=store, config=config)
    options = ExportOptions(output_dir=out, format=ExportFormat.JSON, json_mode=JsonMode.FULL)
    result = orchestrator.export_notes(["n3"], options)

    assert result.exported_count == 1
    data = json.loads((out / "Work" / "Note 3.json").read_text(encoding="utf-8"))
    assert data["id"] == "n3"
    assert data["title"] == "Note 3"
    assert data["hashtags"] == ["#tag3"]
    assert data["modifiedAt"] == "2024-01-04T00:00:00Z"


@pytest.mark.parametrize("workers", [1, 3])
def test_export_keeps_input_order(store, config, out, workers):
    config.set("transfer.decode_workers", workers)
    progress = []
    identifiers = ["n5", "n2", "n4", "n1", "n3"]
    result = TransferOrchestrator(store=store, config=config).export_notes(
        identifiers, ExportOptions(output_dir=out), progress=lambda done, total: progress.append((done, total))
    )

    assert [item.source for item in result.succeeded] == identifiers
    assert progress == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]


def test_export_failures_do_not_stop_the_batch(store, config, out):
    store.add(StoreRow(identifier="bad", data=b"garbage"), title="Bad")
    result = TransferOrchestrator(store=store, config=config).export_notes(
        ["n1", "bad", "missing", "n2"], ExportOptions(output_dir=out)
    )

    assert [item.source for item in result.succeeded] == ["n1", "n2"]
    assert [(item.source, message) for item, message in result.failures] == [
        ("bad", "Missing gzip magic bytes"),
        ("missing", "Note not found: missing"),
    ]
    assert all(item.state == ItemState.FAILED for item, _ in result.failures)
    assert result.completed == 4


@pytest.mark.parametrize("workers", [1, 2])
def test_cancel_after_first_export(store, config, out, workers):
    config.set("transfer.decode_workers", workers)
    cancel = threading.Event()

    def progress(done, total):
        if done == 1:
            cancel.set()

    result = TransferOrchestrator(store=store, config=config).export_notes(
        ["n1", "n2", "n3", "n4", "n5"], ExportOptions(output_dir=out), progress=progress, cancel=cancel
    )

    assert result.cancelled
    assert result.total == 5
    assert result.completed == 1
    assert result.exported_count == 1
    assert result.summary() == {"succeeded": 1, "skipped": 0, "conflicts": 0, "failures": 0}
    assert len(list(out.rglob("*.md"))) == 1


def test_export_dry_run_writes_nothing(store, config, out):
    result = TransferOrchestrator(store=store, config=config).export_notes(
        ["n1", "n2"], ExportOptions(output_dir=out, dry_run=True)
    )
    assert result.dry_run
    assert result.exported_count == 2
    assert not out.exists()


def test_export_same_titles_get_distinct_paths(config, out):
    store = InMemoryStore()
    store.add(StoreRow(identifier="a", data=encode("Same", "one")), title="Same")
    store.add(StoreRow(identifier="b", data=encode("same", "two")), title="same")
    result = TransferOrchestrator(store=store, config=config).export_notes(["a", "b"], ExportOptions(output_dir=out))

    targets = [Path(item.target).name for item in result.succeeded]
    assert targets == ["Same.md", "same (b).md"]


def test_export_copies_attachments(config, out):
    store = InMemoryStore()
    store.add(StoreRow(
        identifier="trip",
        data=encode("Lisbon", "Photos below"),
        folder="Trips",
        attachments=(AttachmentRef(identifier="ATT-1", name="photo.jpg", type_uti="public.jpeg"),),
    ), title="Lisbon")
    store.add(StoreRow(
        identifier="lost",
        data=encode("Lost", ""),
        attachments=(AttachmentRef(identifier="ATT-2", name="gone.pdf"),),
    ), title="Lost")
    bridge = MockBridge(attachments={"ATT-1": b"jpeg-bytes"})

    result = TransferOrchestrator(store=store, bridge=bridge, config=config).export_notes(
        ["trip", "lost"], ExportOptions(output_dir=out, copy_attachments=True)
    )

    assert (out / "attachments" / "Trips" / "Lisbon" / "photo.jpg").read_bytes() == b"jpeg-bytes"
    assert [item.source for item in result.succeeded] == ["trip"]
    assert result.failures[0][1] == "Attachment not found: ATT-2"
    assert not (out / "Lost.md").exists()


def test_failed_attachment_leaves_nothing_to_commit(config, out):
    config.set("versioning.auto_commit", True)
    store = InMemoryStore()
    store.add(StoreRow(
        identifier="lost",
        data=encode("Lost", "body"),
        attachments=(AttachmentRef(identifier="ATT-1", name="a.png"), AttachmentRef(identifier="ATT-2", name="b.png")),
    ), title="Lost")
    bridge = MockBridge(attachments={"ATT-1": b"png"})

    result = TransferOrchestrator(store=store, bridge=bridge, config=config).export_notes(
        ["lost"], ExportOptions(output_dir=out, copy_attachments=True)
    )

    assert [item.state for item, _ in result.failures] == [ItemState.FAILED]
    assert not (out / "Lost.md").exists()
    assert not (out / "attachments" / "Lost" / "a.png").exists()
    assert not (out / ".git").exists()


def test_same_titles_get_separate_attachment_directories(config, out):
    store = InMemoryStore()
    for identifier in ("a", "b"):
        store.add(StoreRow(
            identifier=identifier,
            data=encode("Trip", identifier),
            folder="F",
            attachments=(AttachmentRef(identifier=f"IMG-{identifier}", name="photo.jpg"),),
        ), title="Trip")
    bridge = MockBridge(attachments={"IMG-a": b"from a", "IMG-b": b"from b"})

    result = TransferOrchestrator(store=store, bridge=bridge, config=config).export_notes(
        ["a", "b"], ExportOptions(output_dir=out, copy_attachments=True)
    )

    assert result.exported_count == 2
    assert (out / "attachments" / "F" / "Trip" / "photo.jpg").read_bytes() == b"from a"
    assert (out / "attachments" / "F" / "Trip (b)" / "photo.jpg").read_bytes() == b"from b"


def test_export_preconditions(store, config, out):
    progress = []
    with pytest.raises(ConfigurationError):
        TransferOrchestrator(store=store, config=config).export_notes(
            ["n1"], ExportOptions(output_dir=None), progress=lambda *args: progress.append(args)
        )
    with pytest.raises(ConfigurationError):
        TransferOrchestrator(store=None, config=config).export_notes(["n1"], ExportOptions(output_dir=out))
    with pytest.raises(ConfigurationError):
        TransferOrchestrator(store=store, config=config).export_notes(
            ["n1"], ExportOptions(output_dir=out, copy_attachments=True)
        )
    assert progress == []
    assert not out.exists()


def test_export_defaults_come_from_config(store, config, tmp_path):
    config.set("paths.export_dir", str(tmp_path / "configured"))
    config.set("export.format", "json")
    result = TransferOrchestrator(store=store, config=config).export_notes(["n2"])
    assert result.exported_count == 1
    assert (tmp_path / "configured" / "Note 2.json").exists()


# -- import -------------------------------------------------------------------

def test_import_second_of_three_fails(tmp_path, config):
    files = [
        write(tmp_path / "a.md", "# A\n\nalpha\n"),
        write(tmp_path / "b.md", "---\ntitle: broken\n"),
        write(tmp_path / "c.md", "# C\n\ngamma\n"),
    ]
    bridge = MockBridge()
    result = TransferOrchestrator(bridge=bridge, config=config).import_files(files)

    assert result.imported_count == 2
    assert [item.source for item, _ in result.failures] == [str(files[1])]
    assert [call.args[0] for call in bridge.calls_to("create")] == ["A", "C"]
    assert all(call.args[2] == "Notes" for call in bridge.calls_to("create"))


def test_import_groceries(tmp_path, config):
    path = write(tmp_path / "groceries.md", '---\ntitle: "Groceries"\n---\n- [ ] Milk\n- [x] Eggs\n')
    assert parse_file(path).blocks == (
        Checklist(checked=False, runs=(Run(text="Milk"),)),
        Checklist(checked=True, runs=(Run(text="Eggs"),)),
    )

    bridge = MockBridge()
    result = TransferOrchestrator(store=InMemoryStore(), bridge=bridge, config=config).import_files([path])

    assert result.conflicts == []
    assert result.imported_count == 1
    assert bridge.calls_to("create")[0].args == (
        "Groceries", "<h1>Groceries</h1><div>☐ Milk</div><div>☑ Eggs</div>", "Notes"
    )


def test_import_json_file(tmp_path, config):
    path = write(tmp_path / "note.json", json.dumps({"title": "From JSON", "content": "line", "folder": "Inbox"}))
    bridge = MockBridge()
    result = TransferOrchestrator(bridge=bridge, config=config).import_files([path])
    assert result.imported_count == 1
    assert bridge.calls_to("create")[0].args == ("From JSON", "<h1>From JSON</h1><div>line</div>", "Inbox")


def test_import_html_file(tmp_path, config):
    titled = write(tmp_path / "page.html", "<h1>From HTML</h1><div><b>bold</b> text</div><ul><li>one</li></ul>")
    untitled = write(tmp_path / "Loose Page.htm", "<p>just a body</p>")
    assert discover_files(tmp_path) == [untitled, titled]

    bridge = MockBridge()
    result = TransferOrchestrator(bridge=bridge, config=config).import_directory(tmp_path)

    assert result.imported_count == 2
    assert [call.args for call in bridge.calls_to("create")] == [
        ("Loose Page", "<h1>Loose Page</h1><div>just a body</div>", "Notes"),
        ("From HTML", "<h1>From HTML</h1><div><b>bold</b> text</div><ul><li>one</li></ul>", "Notes"),
    ]


@pytest.mark.parametrize("reverse", [False, True])
def test_conflicts_within_a_batch_are_deterministic(tmp_path, config, reverse):
    files = [
        write(tmp_path / "x.md", "---\ntitle: Dup\nfolder: F\n---\nfirst\n"),
        write(tmp_path / "y.md", "---\ntitle: Dup\nfolder: F\n---\nsecond\n"),
    ]
    if reverse:
        files.reverse()
    result = TransferOrchestrator(bridge=MockBridge(), config=config).import_files(
        files, ImportOptions(conflict_strategy=ConflictStrategy.SKIP)
    )

    assert [item.source for item in result.succeeded] == [str(files[0])]
    assert [(item.source, reason) for item, reason in result.skipped] == [
        (str(files[1]), "Conflict with existing note")
    ]


def test_ask_without_resolver_leaves_conflict(tmp_path, config):
    files = [
        write(tmp_path / "x.md", "# Dup\n\nfirst\n"),
        write(tmp_path / "y.md", "# Dup\n\nsecond\n"),
    ]
    bridge = MockBridge()
    result = TransferOrchestrator(bridge=bridge, config=config).import_files(files)

    created_id = result.succeeded[0].target
    assert len(result.conflicts) == 1
    conflict = result.conflicts[0]
    assert (conflict.title, conflict.folder, conflict.existing_id, conflict.source) == (
        "Dup", "Notes", created_id, str(files[1])
    )
    assert len(bridge.calls_to("create")) == 1


@pytest.fixture
def existing():
    store = InMemoryStore()
    store.add(StoreRow(identifier=EXISTING_ID, data=encode("Existing", "old body")), title="Existing")
    return store


def seeded_bridge(**kwargs):
    bridge = MockBridge(**kwargs)
    bridge.add_existing("Existing", "Notes", "<h1>Existing</h1><div>old body</div>", external_id=EXISTING_ID)
    return bridge


def import_existing(tmp_path, existing, config, bridge, strategy, resolver=None):
    path = write(tmp_path / "existing.md", "# Existing\n\nnew body\n")
    orchestrator = TransferOrchestrator(store=existing, bridge=bridge, config=config)
    return orchestrator.import_files([path], ImportOptions(conflict_strategy=strategy), resolver=resolver)


def test_conflict_skip(tmp_path, existing, config):
    bridge = seeded_bridge()
    result = import_existing(tmp_path, existing, config, bridge, ConflictStrategy.SKIP)
    assert len(result.skipped) == 1
    assert result.skipped[0][0].state == ItemState.SKIPPED
    assert bridge.calls == []


def test_conflict_replace_updates_in_place(tmp_path, existing, config):
    bridge = seeded_bridge()
    result = import_existing(tmp_path, existing, config, bridge, ConflictStrategy.REPLACE)

    assert result.succeeded[0].target == EXISTING_ID
    assert [call.args for call in bridge.calls] == [(EXISTING_ID, "Existing", "<div>new body</div>")]
    assert bridge.notes[EXISTING_ID]["markup"] == "<div>new body</div>"


def test_conflict_replace_without_update_support(tmp_path, existing, config):
    bridge = seeded_bridge(supports_update=False)
    result = import_existing(tmp_path, existing, config, bridge, ConflictStrategy.REPLACE)

    assert [call.method for call in bridge.calls] == ["delete", "create"]
    assert EXISTING_ID not in bridge.notes
    assert result.succeeded[0].target in bridge.notes


def test_conflict_duplicate(tmp_path, existing, config):
    bridge = seeded_bridge()
    result = import_existing(tmp_path, existing, config, bridge, ConflictStrategy.DUPLICATE)

    assert result.imported_count == 1
    assert len(bridge.notes) == 2
    assert [note["title"] for note in bridge.notes.values()] == ["Existing", "Existing"]


def test_conflict_ask_uses_resolver(tmp_path, existing, config):
    seen = []

    def resolver(conflict):
        seen.append(conflict)
        return ConflictStrategy.REPLACE

    bridge = seeded_bridge()
    result = import_existing(tmp_path, existing, config, bridge, ConflictStrategy.ASK, resolver=resolver)

    assert result.imported_count == 1
    assert seen[0].existing_id == EXISTING_ID
    assert seen[0].folder == "Notes"
    assert bridge.calls_to("update")


@pytest.mark.parametrize("answer", [None, ConflictStrategy.ASK, "raise"])
def test_conflict_ask_declined(tmp_path, existing, config, answer):
    def resolver(conflict):
        if answer == "raise":
            raise ConflictUnresolved("user closed the prompt")
        return answer

    bridge = seeded_bridge()
    result = import_existing(tmp_path, existing, config, bridge, ConflictStrategy.ASK, resolver=resolver)

    assert len(result.conflicts) == 1
    assert result.succeeded == []
    assert bridge.calls == []


def test_import_folder_priority(tmp_path, config):
    root = tmp_path / "notes"
    write(root / "Projects" / "plain.md", "# Plain\n")
    write(root / "Projects" / "headed.md", "---\nfolder: Work\n---\n# Headed\n")
    write(root / "top.md", "# Top\n")
    bridge = MockBridge()

    TransferOrchestrator(bridge=bridge, config=config).import_directory(
        root, ImportOptions(conflict_strategy=ConflictStrategy.DUPLICATE)
    )
    folders = {call.args[0]: call.args[2] for call in bridge.calls_to("create")}
    assert folders == {"Headed": "Work", "Plain": "Projects", "Top": "Notes"}

    overridden = MockBridge()
    TransferOrchestrator(bridge=overridden, config=config).import_directory(
        root, ImportOptions(target_folder="Archive")
    )
    assert {call.args[2] for call in overridden.calls_to("create")} == {"Archive"}


def test_import_dry_run(tmp_path, config):
    files = [
        write(tmp_path / "x.md", "# Dup\n"),
        write(tmp_path / "y.md", "# Dup\n"),
    ]
    result = TransferOrchestrator(config=config).import_files(
        files, ImportOptions(conflict_strategy=ConflictStrategy.SKIP, dry_run=True)
    )
    assert result.dry_run
    assert [item.target for item in result.succeeded] == ["dry-run"]
    assert len(result.skipped) == 1


def test_import_zero_items(config):
    progress = []
    result = TransferOrchestrator(bridge=MockBridge(), config=config).import_files(
        [], progress=lambda *args: progress.append(args)
    )
    assert result.total == 0
    assert result.summary() == {"succeeded": 0, "skipped": 0, "conflicts": 0, "failures": 0}
    assert progress == []


def test_import_requires_bridge(tmp_path, config):
    path = write(tmp_path / "a.md", "# A\n")
    with pytest.raises(ConfigurationError):
        TransferOrchestrator(config=config).import_files([path])


def test_import_bridge_error_is_verbatim(tmp_path, config):
    path = write(tmp_path / "a.md", "# A\n")
    bridge = MockBridge()
    bridge.fail_on("create", "A", "Notes got an error: folder is locked (-10000)")
    result = TransferOrchestrator(bridge=bridge, config=config).import_files([path])
    assert result.failures[0][1] == "Notes got an error: folder is locked (-10000)"


def test_import_cancelled_before_start(tmp_path, config):
    path = write(tmp_path / "a.md", "# A\n")
    cancel = threading.Event()
    cancel.set()
    bridge = MockBridge()
    result = TransferOrchestrator(bridge=bridge, config=config).import_files([path], cancel=cancel)
    assert result.cancelled
    assert result.completed == 0
    assert bridge.calls == []


def test_discover_files(tmp_path):
    root = tmp_path / "notes"
    for name in ("a.md", "c.json", "sub/b.markdown", ".hidden.md", ".git/x.md", "skip.txt"):
        write(root / name, "# x\n")

    assert [p.relative_to(root).as_posix() for p in discover_files(root)] == ["a.md", "c.json", "sub/b.markdown"]
    assert [p.relative_to(root).as_posix() for p in discover_files(root, recursive=False)] == ["a.md", "c.json"]


def test_import_directory_must_exist(tmp_path, config):
    with pytest.raises(ConfigurationError):
        TransferOrchestrator(bridge=MockBridge(), config=config).import_directory(tmp_path / "nope")


def test_derive_folder_restores_escaped_names(tmp_path):
    assert derive_folder(tmp_path / "a%2Fb" / "n.md", tmp_path) == "a/b"
    assert derive_folder(tmp_path / "n.md", tmp_path) is None
    assert derive_folder(tmp_path / "n.md", None) is None
