#!/usr/bin/env python3
"""
notesport - note export and import

Main entry point for notesport. Ingests raw note blobs into a DuckDB
snapshot, exports notes from that snapshot to Markdown or JSON files, and
imports Markdown, JSON or HTML files into the host application through
AppleScript.
"""

import logging
import sys
import argparse
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from notesport import __version__
from notesport.bridge import OsaScriptBridge
from notesport.codec import decode
from notesport.config import config
from notesport.errors import ConfigurationError, DecodeError, NotesportError
from notesport.models import (
    ConflictStrategy,
    ExportFormat,
    ExportOptions,
    ImportConflict,
    ImportOptions,
    JsonMode,
    TransferResult,
)
from notesport.store import DuckDBNoteStore, StoreRow
from notesport.transfer import TransferOrchestrator, derive_folder, discover_files


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, str(config.get("logging.level", "INFO")).upper(), logging.INFO)
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def print_progress(completed: int, total: int):
    print(f"\r{completed}/{total}", end="", flush=True)
    if completed == total:
        print()


def ask_on_console(conflict: ImportConflict) -> Optional[ConflictStrategy]:
    """
    Ask the user how to resolve one import conflict.

    Args:
        conflict: The conflict to resolve

    Returns:
        The chosen strategy, or None to leave the conflict unresolved
    """
    prompt = (
        f"\n'{conflict.title}' already exists in '{conflict.folder}' "
        f"(from {conflict.source}).\n[s]kip, [r]eplace, [d]uplicate, or leave [u]nresolved? "
    )
    choices = {"s": ConflictStrategy.SKIP, "r": ConflictStrategy.REPLACE, "d": ConflictStrategy.DUPLICATE}
    try:
        answer = input(prompt).strip().lower()[:1]
    except EOFError:
        return None
    return choices.get(answer)


def print_result(result: TransferResult):
    """Print a summary of one batch."""
    print("\n" + "=" * 60)
    label = "EXPORT" if result.direction == "export" else "IMPORT"
    suffix = " (DRY RUN)" if result.dry_run else ""
    state = "CANCELLED" if result.cancelled else "COMPLETED"
    print(f"{label} {state}{suffix}")
    print("=" * 60)
    for outcome, count in result.summary().items():
        print(f"- {outcome}: {count}")
    for item, message in result.failures:
        print(f"  FAILED  {item.source}: {message}")
    for item, reason in result.skipped:
        print(f"  SKIPPED {item.source}: {reason}")
    for conflict in result.conflicts:
        print(f"  CONFLICT {conflict.source}: '{conflict.title}' in '{conflict.folder}'")


def run_export(args) -> TransferResult:
    """Export notes from the snapshot database."""
    with DuckDBNoteStore(args.database or config.database_filename) as store:
        store.initialize_database()
        identifiers: List[str] = args.ids or [
            row.identifier for row in store.list_rows(folder=args.folder, limit=args.limit)
        ]
        options = ExportOptions(
            output_dir=Path(args.output or config.export_directory),
            format=args.format or config.export_format,
            json_mode=args.json_mode or config.json_mode,
            include_frontmatter=not args.no_frontmatter and config.include_frontmatter,
            copy_attachments=args.attachments or config.copy_attachments,
            dry_run=args.dry_run,
        )
        bridge = OsaScriptBridge(account=config.bridge_account, timeout=config.bridge_timeout) if options.copy_attachments else None
        orchestrator = TransferOrchestrator(store=store, bridge=bridge, config=config)
        return run_batch(lambda cancel: orchestrator.export_notes(
            identifiers, options, progress=print_progress, cancel=cancel
        ))


def run_import(args) -> TransferResult:
    """Import files into the host application."""
    paths: List[Path] = []
    base_dir = None
    for source in args.paths:
        path = Path(source)
        if path.is_dir():
            paths.extend(discover_files(path, recursive=not args.no_recursive))
            if len(args.paths) == 1:
                base_dir = path
        elif path.is_file():
            paths.append(path)
        else:
            raise ConfigurationError(f"Import source not found: {path}")

    options = ImportOptions(
        target_folder=args.folder,
        conflict_strategy=args.conflict or config.conflict_strategy,
        dry_run=args.dry_run,
        recursive=not args.no_recursive,
    )
    bridge = None if args.dry_run else OsaScriptBridge(account=config.bridge_account, timeout=config.bridge_timeout)
    database = Path(args.database or config.database_filename)
    store = DuckDBNoteStore(str(database)) if database.exists() else None
    if store is None:
        logging.warning(f"Snapshot database {database} not found; conflicts cannot be detected")
        return _import(None, bridge, paths, options, base_dir)
    with store:
        store.initialize_database()
        return _import(store, bridge, paths, options, base_dir)


def _import(store, bridge, paths, options, base_dir) -> TransferResult:
    orchestrator = TransferOrchestrator(store=store, bridge=bridge, config=config)
    return run_batch(lambda cancel: orchestrator.import_files(
        paths, options, resolver=ask_on_console, progress=print_progress,
        cancel=cancel, base_dir=base_dir
    ))


def run_batch(batch) -> TransferResult:
    """Run a batch, turning Ctrl-C into a cancellation between items."""
    cancel = threading.Event()
    outcome = {}

    def work():
        try:
            outcome["result"] = batch(cancel)
        except BaseException as e:
            outcome["error"] = e

    worker = threading.Thread(target=work, name="notesport-batch")
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.2)
    except KeyboardInterrupt:
        logging.info("Batch interrupted by user")
        print("\nInterrupted; finishing the current item.")
        cancel.set()
        worker.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def run_ingest(args):
    """
    Load raw note blobs from a directory into the snapshot database.

    Every non-hidden file under the directory is read as one gzipped note
    blob. The file stem becomes the note identifier and the sub-directory
    the folder, unless --folder names one. Files that do not decode are
    skipped.
    """
    root = Path(args.source)
    if not root.is_dir():
        raise ConfigurationError(f"Blob directory not found: {root}")

    database = args.database or config.database_filename
    stored = skipped = 0
    seen = set()
    with DuckDBNoteStore(database) as store:
        store.initialize_database()
        for path in sorted(root.rglob("*")):
            relative = path.relative_to(root)
            if not path.is_file() or any(part.startswith(".") for part in relative.parts):
                continue
            data = path.read_bytes()
            try:
                title = decode(data, identifier=path.stem).title
            except DecodeError as e:
                logging.warning(f"Skipping {path}: {e}")
                skipped += 1
                continue
            if path.stem in seen:
                logging.warning(f"Identifier {path.stem} appears twice; {path} replaces the earlier blob")
            seen.add(path.stem)
            row = StoreRow(
                identifier=path.stem,
                data=data,
                folder=args.folder or derive_folder(path, root),
                modified_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
            )
            store.add_row(row, title=title)
            stored += 1

    logging.info(f"Ingested {stored} blobs from {root} into {database}, skipped {skipped}")
    print(f"Ingested {stored} notes into {database} ({skipped} skipped)")


def run_list(args):
    """List notes held by the snapshot database."""
    with DuckDBNoteStore(args.database or config.database_filename) as store:
        store.initialize_database()
        rows = store.list_rows(folder=args.folder, limit=args.limit)
        for row in rows:
            modified = row.modified_at.strftime("%Y-%m-%d %H:%M") if row.modified_at else "-"
            print(f"{row.identifier}\t{row.folder or '-'}\t{modified}\t{row.title}")
        logging.info(f"Listed {len(rows)} notes")


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="notesport - export and import notes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py ingest blobs/                     # Load raw note blobs into the snapshot
  python main.py list                              # List notes in the snapshot database
  python main.py export                            # Export every note as Markdown
  python main.py export --format json --json-mode full --output out
  python main.py import notes/ --conflict skip     # Import a directory, skipping conflicts
  python main.py import note.md --dry-run          # Show what would be imported
        """
    )

    parser.add_argument(
        "--database",
        type=str,
        help="Snapshot database file, filled by the ingest command (default from config.yaml)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"notesport {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Export notes to files")
    export_parser.add_argument("ids", nargs="*", help="Note identifiers (default: all notes)")
    export_parser.add_argument("--output", type=str, help="Output directory")
    export_parser.add_argument("--format", choices=[f.value for f in ExportFormat], help="Output format")
    export_parser.add_argument("--json-mode", choices=[m.value for m in JsonMode], help="JSON shape")
    export_parser.add_argument("--folder", type=str, help="Only export notes in this folder")
    export_parser.add_argument("--limit", type=int, help="Export at most this many notes")
    export_parser.add_argument("--no-frontmatter", action="store_true", help="Omit the Markdown header")
    export_parser.add_argument("--attachments", action="store_true", help="Copy attachment files")
    export_parser.add_argument("--dry-run", action="store_true", help="Convert without writing files")

    import_parser = subparsers.add_parser("import", help="Import Markdown, JSON or HTML files")
    import_parser.add_argument("paths", nargs="+", help="Files or directories to import")
    import_parser.add_argument("--folder", type=str, help="Target folder for every note")
    import_parser.add_argument(
        "--conflict",
        choices=[s.value for s in ConflictStrategy],
        help="How to handle notes that already exist (default from config.yaml)"
    )
    import_parser.add_argument("--no-recursive", action="store_true", help="Do not descend into sub-directories")
    import_parser.add_argument("--dry-run", action="store_true", help="Parse and check without creating notes")

    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Load raw note blobs into the snapshot database",
        description="Fill the snapshot database that export and list read from. Each file "
                    "under SOURCE is one gzipped note blob copied from the host store; its "
                    "stem becomes the note identifier and its sub-directory the folder."
    )
    ingest_parser.add_argument("source", help="Directory of note blob files")
    ingest_parser.add_argument("--folder", type=str, help="Folder for every ingested note")

    list_parser = subparsers.add_parser("list", help="List notes in the snapshot database")
    list_parser.add_argument("--folder", type=str, help="Only list notes in this folder")
    list_parser.add_argument("--limit", type=int, help="List at most this many notes")

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging()

    logging.info(f"notesport {__version__}: {args.command}")

    try:
        if args.command == "list":
            run_list(args)
            return
        if args.command == "ingest":
            run_ingest(args)
            return
        if args.command == "export":
            result = run_export(args)
        else:
            result = run_import(args)
        print_result(result)

    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        print(f"\nConfiguration error: {e}")
        sys.exit(2)

    except NotesportError as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}")
        sys.exit(1)

    if result.failures or result.conflicts:
        sys.exit(1)


if __name__ == "__main__":
    main()
