"""
Tests for the command line entry point.
"""

from unittest.mock import patch

import pytest

import main
from notesport.codec import encode
from notesport.models import ConflictStrategy, ImportConflict
from notesport.store import DuckDBNoteStore, StoreRow


@pytest.fixture(autouse=True)
def no_log_files():
    with patch("main.setup_logging"):
        yield


@pytest.fixture
def database(tmp_path):
    path = tmp_path / "snapshot.db"
    with DuckDBNoteStore(str(path)) as store:
        store.initialize_database()
        store.add_row(StoreRow(identifier="n1", data=encode("Plan", "step one"), folder="Work"))
        store.add_row(StoreRow(identifier="n2", data=encode("Ideas", "")))
    return path


def test_parse_export_arguments():
    args = main.parse_arguments(["--database", "x.db", "export", "a", "b", "--format", "json"])
    assert args.command == "export"
    assert args.database == "x.db"
    assert args.ids == ["a", "b"]
    assert args.format == "json"
    assert not args.dry_run


def test_parse_rejects_unknown_strategy():
    with pytest.raises(SystemExit):
        main.parse_arguments(["import", "notes", "--conflict", "merge"])


@pytest.mark.parametrize("answer, expected", [
    ("r", ConflictStrategy.REPLACE),
    ("Skip", ConflictStrategy.SKIP),
    ("d", ConflictStrategy.DUPLICATE),
    ("u", None),
    ("", None),
])
def test_ask_on_console(answer, expected):
    conflict = ImportConflict(title="T", folder="Notes", existing_id="id", source="t.md")
    with patch("builtins.input", return_value=answer):
        assert main.ask_on_console(conflict) == expected


def test_ask_on_console_without_input():
    conflict = ImportConflict(title="T", folder="Notes", existing_id="id", source="t.md")
    with patch("builtins.input", side_effect=EOFError):
        assert main.ask_on_console(conflict) is None


def test_list(database, capsys):
    main.main(["--database", str(database), "list", "--folder", "Work"])
    output = capsys.readouterr().out
    assert "n1\tWork\t-\tPlan" in output
    assert "Ideas" not in output


def test_export(database, tmp_path, capsys):
    out = tmp_path / "out"
    main.main(["--database", str(database), "export", "--output", str(out), "--format", "json"])

    assert (out / "Work" / "Plan.json").exists()
    assert (out / "Ideas.json").exists()
    assert "EXPORT COMPLETED" in capsys.readouterr().out


def test_import_dry_run(tmp_path, capsys):
    source = tmp_path / "note.md"
    source.write_text("# Fresh\n\nbody\n", encoding="utf-8")

    main.main(["--database", str(tmp_path / "none.db"), "import", str(source), "--dry-run"])

    output = capsys.readouterr().out
    assert "IMPORT COMPLETED (DRY RUN)" in output
    assert "- succeeded: 1" in output


def test_import_unresolved_conflict_exits_non_zero(database, tmp_path, capsys):
    source = tmp_path / "plan.md"
    source.write_text("---\nfolder: Work\n---\n# Plan\n", encoding="utf-8")

    with patch("builtins.input", return_value="u"), pytest.raises(SystemExit) as exit_info:
        main.main(["--database", str(database), "import", str(source), "--dry-run", "--conflict", "ask"])

    assert exit_info.value.code == 1
    assert "CONFLICT" in capsys.readouterr().out


def test_missing_import_source_is_a_configuration_error(tmp_path):
    with pytest.raises(SystemExit) as exit_info:
        main.main(["import", str(tmp_path / "nowhere"), "--dry-run"])
    assert exit_info.value.code == 2


def test_ingest_fills_snapshot(tmp_path, capsys):
    blobs = tmp_path / "blobs"
    (blobs / "Work").mkdir(parents=True)
    (blobs / "Work" / "n1.blob").write_bytes(encode("Plan", "step one"))
    (blobs / "n2.blob").write_bytes(encode("Ideas"))
    (blobs / "broken.blob").write_bytes(b"not a blob")
    (blobs / ".hidden").write_bytes(encode("Secret"))
    database = tmp_path / "snapshot.db"

    main.main(["--database", str(database), "ingest", str(blobs)])
    output = capsys.readouterr().out
    assert "Ingested 2 notes" in output
    assert "(1 skipped)" in output

    main.main(["--database", str(database), "list"])
    output = capsys.readouterr().out
    assert "n1\tWork\t" in output
    assert "Plan" in output
    assert "n2\t-\t" in output
    assert "Secret" not in output


def test_ingest_folder_override(tmp_path, capsys):
    blobs = tmp_path / "blobs"
    blobs.mkdir()
    (blobs / "n1.blob").write_bytes(encode("Plan"))
    database = tmp_path / "snapshot.db"

    main.main(["--database", str(database), "ingest", str(blobs), "--folder", "Inbox"])
    main.main(["--database", str(database), "list", "--folder", "Inbox"])
    assert "n1\tInbox\t" in capsys.readouterr().out
