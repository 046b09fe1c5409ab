"""
Batch transfer orchestrator for notesport.

Exports move notes from a store to Markdown or JSON files; imports move
text files through the automation bridge into the host application. Items
are handled one at a time in input order and every per-item error is
recorded in the batch result instead of aborting the batch. Only invalid
configuration stops a batch, and it does so before the first item.
"""

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from threading import Event
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..bridge import AutomationBridge
from ..codec import NoteDecoder
from ..config import ConfigManager, get_config
from ..converters import (
    body_markup,
    from_json,
    from_markdown,
    from_markup,
    to_json,
    to_markdown,
    to_markup,
)
from ..errors import ConfigurationError, ConflictUnresolved, ConversionError
from ..models import (
    ConflictStrategy,
    Document,
    ExportFormat,
    ExportOptions,
    ImportConflict,
    ImportOptions,
    ItemState,
    TransferItem,
    TransferResult,
)
from ..store import NoteStore, StoreRow
from ..versioning import VersionManager
from .paths import PathAllocator, attachment_path, restore_name


MARKDOWN_SUFFIXES = (".md", ".markdown")
JSON_SUFFIXES = (".json",)
HTML_SUFFIXES = (".html", ".htm")
IMPORT_SUFFIXES = MARKDOWN_SUFFIXES + JSON_SUFFIXES + HTML_SUFFIXES
DRY_RUN_ID = "dry-run"
SKIP_REASON = "Conflict with existing note"

ProgressCallback = Callable[[int, int], None]
ConflictResolver = Callable[[ImportConflict], Optional[ConflictStrategy]]


class TransferOrchestrator:
    """
    Drives export and import batches.

    The store and bridge are injected; an export needs a store, an import
    needs a bridge unless it is a dry run.
    """

    def __init__(self, store: Optional[NoteStore] = None,
                 bridge: Optional[AutomationBridge] = None,
                 config: Optional[ConfigManager] = None):
        """
        Initialize the orchestrator.

        Args:
            store: Source of note blobs for exports and of existing titles for imports
            bridge: Automation bridge for imports and attachment copies
            config: Configuration; the global configuration when omitted
        """
        self.store = store
        self.bridge = bridge
        self.config = config or get_config()
        self.decoder = NoteDecoder()

    # -- options --------------------------------------------------------------

    def default_export_options(self) -> ExportOptions:
        """Export options taken from configuration."""
        return ExportOptions(
            output_dir=Path(self.config.export_directory),
            format=self.config.export_format,
            json_mode=self.config.json_mode,
            include_frontmatter=self.config.include_frontmatter,
            copy_attachments=self.config.copy_attachments,
        )

    def default_import_options(self) -> ImportOptions:
        """Import options taken from configuration."""
        return ImportOptions(conflict_strategy=self.config.conflict_strategy)

    # -- export ---------------------------------------------------------------

    def export_notes(self, identifiers: Sequence[str],
                     options: Optional[ExportOptions] = None,
                     progress: Optional[ProgressCallback] = None,
                     cancel: Optional[Event] = None) -> TransferResult:
        """
        Export notes from the store to text files.

        Args:
            identifiers: Store identifiers, exported in this order
            options: Export options; configuration defaults when omitted
            progress: Called with (completed, total) after every finished item
            cancel: Checked between items; stops the batch once set

        Returns:
            The batch result, including items finished before a cancellation

        Raises:
            ConfigurationError: If the batch cannot start
        """
        options = options or self.default_export_options()
        if self.store is None:
            raise ConfigurationError("Export requires a note store")
        if options.output_dir is None and not options.dry_run:
            raise ConfigurationError("Export requires an output directory")
        if options.copy_attachments and self.bridge is None and not options.dry_run:
            raise ConfigurationError("Copying attachments requires an automation bridge")
        workers = self.config.decode_workers

        output_dir = Path(options.output_dir or ".")
        allocator = PathAllocator(output_dir, options.format.extension)
        items = [TransferItem(source=identifier) for identifier in identifiers]
        result = TransferResult(direction="export", total=len(items), dry_run=options.dry_run)
        written: List[Path] = []

        logging.info(
            f"Exporting {len(items)} notes to {output_dir} as {options.format.value}"
            f"{' (dry run)' if options.dry_run else ''}"
        )

        for item, loaded in self._prefetch(items, workers, cancel):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            try:
                item.transition(ItemState.CONVERTING)
                row, document = loaded()
                item.title = document.title
                item.folder = document.folder

                text = self._render(document, options)
                path = allocator.allocate(document.folder, document.title, document.identifier)
                item.target = str(path)
                if not options.dry_run:
                    files = [(path, text.encode("utf-8"))]
                    if options.copy_attachments:
                        files.extend(self._fetch_attachments(row, output_dir, path))
                    written.extend(_write_files(files))

                item.transition(ItemState.SUCCEEDED)
                result.succeeded.append(item)
                logging.info(f"Exported {item.source} -> {path}")
            except Exception as e:
                item.transition(ItemState.FAILED)
                result.failures.append((item, str(e)))
                logging.error(f"Failed to export {item.source}: {e}")
            self._report(progress, result)

        if result.cancelled:
            logging.warning(f"Export cancelled after {result.completed} of {result.total} notes")
        if written and self.config.auto_commit:
            self._commit_export(output_dir, written)

        logging.info(f"Export finished: {result.summary()}")
        return result

    def _load(self, identifier: str) -> Tuple[StoreRow, Document]:
        row = self.store.fetch_row(identifier)
        document = self.decoder.decode(row.data, identifier=row.identifier, tables=row.tables)
        document = document.model_copy(update={
            "folder": row.folder,
            "created_at": row.created_at,
            "modified_at": row.modified_at,
            "attachments": row.attachments,
        })
        return row, document

    def _prefetch(self, items: List[TransferItem], workers: int,
                  cancel: Optional[Event]) -> Iterable[Tuple[TransferItem, Callable[[], Tuple[StoreRow, Document]]]]:
        """
        Pair each item with a loader, in input order.

        With more than one worker, fetch and decode run ahead on a thread
        pool, at most 2 * workers items beyond the current one.
        """
        if workers <= 1:
            for item in items:
                yield item, (lambda identifier=item.source: self._load(identifier))
            return

        window = 2 * workers
        pending: Deque[Tuple[TransferItem, Future]] = deque()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notesport-decode") as executor:
            upcoming = iter(items)
            try:
                for item in upcoming:
                    pending.append((item, executor.submit(self._load, item.source)))
                    if len(pending) >= window:
                        break
                while pending:
                    item, future = pending.popleft()
                    if not (cancel is not None and cancel.is_set()):
                        for next_item in upcoming:
                            pending.append((next_item, executor.submit(self._load, next_item.source)))
                            break
                    yield item, future.result
            finally:
                for _, future in pending:
                    future.cancel()

    def _render(self, document: Document, options: ExportOptions) -> str:
        if options.format is ExportFormat.JSON:
            return to_json(document, options.json_mode)
        return to_markdown(document, include_header=options.include_frontmatter)

    def _fetch_attachments(self, row: StoreRow, output_dir: Path,
                           note_path: Path) -> List[Tuple[Path, bytes]]:
        """Fetch every attachment of a note before anything is written."""
        return [
            (attachment_path(output_dir, note_path, ref.name or ref.identifier),
             self.bridge.fetch_attachment_bytes(ref))
            for ref in row.attachments
        ]

    def _commit_export(self, output_dir: Path, written: List[Path]) -> None:
        manager = VersionManager(str(output_dir))
        relative = [path.relative_to(output_dir).as_posix() for path in written]
        if not manager.create_export_commit(relative, self.config.commit_message):
            logging.warning(f"Export written but not committed in {output_dir}")

    # -- import ---------------------------------------------------------------

    def import_files(self, paths: Sequence[Union[str, Path]],
                     options: Optional[ImportOptions] = None,
                     resolver: Optional[ConflictResolver] = None,
                     progress: Optional[ProgressCallback] = None,
                     cancel: Optional[Event] = None,
                     base_dir: Optional[Path] = None) -> TransferResult:
        """
        Import Markdown, JSON or HTML files into the host application.

        Args:
            paths: Source files, imported in this order
            options: Import options; configuration defaults when omitted
            resolver: Decides each conflict under the "ask" strategy
            progress: Called with (completed, total) after every finished item
            cancel: Checked between items; stops the batch once set
            base_dir: Directory the paths were discovered under, used to
                derive folders from sub-directories

        Returns:
            The batch result

        Raises:
            ConfigurationError: If the batch cannot start
        """
        options = options or self.default_import_options()
        if self.bridge is None and not options.dry_run:
            raise ConfigurationError("Import requires an automation bridge")

        default_folder = self.config.default_folder
        index = self._conflict_index(default_folder)
        items = [TransferItem(source=str(path)) for path in paths]
        result = TransferResult(direction="import", total=len(items), dry_run=options.dry_run)

        logging.info(
            f"Importing {len(items)} files with conflict strategy {options.conflict_strategy.value}"
            f"{' (dry run)' if options.dry_run else ''}"
        )

        for item in items:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            try:
                self._import_one(item, options, resolver, index, default_folder, base_dir, result)
            except Exception as e:
                item.transition(ItemState.FAILED)
                result.failures.append((item, str(e)))
                logging.error(f"Failed to import {item.source}: {e}")
            self._report(progress, result)

        if result.cancelled:
            logging.warning(f"Import cancelled after {result.completed} of {result.total} files")
        logging.info(f"Import finished: {result.summary()}")
        return result

    def import_directory(self, root: Union[str, Path],
                         options: Optional[ImportOptions] = None,
                         resolver: Optional[ConflictResolver] = None,
                         progress: Optional[ProgressCallback] = None,
                         cancel: Optional[Event] = None) -> TransferResult:
        """
        Import every Markdown, JSON and HTML file under a directory.

        Files are taken in sorted order; hidden files and directories are
        skipped. Sub-directories name the target folder when neither the
        options nor the file header do.

        Raises:
            ConfigurationError: If root is not a directory
        """
        root = Path(root)
        if not root.is_dir():
            raise ConfigurationError(f"Import directory not found: {root}")
        options = options or self.default_import_options()
        return self.import_files(
            discover_files(root, recursive=options.recursive),
            options,
            resolver=resolver,
            progress=progress,
            cancel=cancel,
            base_dir=root,
        )

    def _conflict_index(self, default_folder: str) -> Dict[Tuple[str, str], str]:
        index: Dict[Tuple[str, str], str] = {}
        if self.store is None:
            return index
        for row in self.store.list_rows():
            index.setdefault((row.title, row.folder or default_folder), row.identifier)
        logging.debug(f"Conflict index holds {len(index)} existing notes")
        return index

    def _import_one(self, item: TransferItem, options: ImportOptions,
                    resolver: Optional[ConflictResolver],
                    index: Dict[Tuple[str, str], str], default_folder: str,
                    base_dir: Optional[Path], result: TransferResult) -> None:
        item.transition(ItemState.CONVERTING)
        path = Path(item.source)
        document = parse_file(path)

        folder = (
            options.target_folder
            or document.folder
            or derive_folder(path, base_dir)
            or default_folder
        )
        document = document.model_copy(update={"folder": folder})
        item.title = document.title
        item.folder = folder
        key = (document.title, folder)

        item.transition(ItemState.CONFLICT_CHECK)
        existing_id = index.get(key)
        strategy = None
        if existing_id is not None:
            conflict = ImportConflict(
                title=document.title,
                folder=folder,
                existing_id=existing_id,
                source=item.source,
            )
            strategy = self._decide(conflict, options.conflict_strategy, resolver)
            if strategy is None:
                item.transition(ItemState.CONFLICT_UNRESOLVED)
                result.conflicts.append(conflict)
                logging.warning(f"Unresolved conflict: '{document.title}' already exists in '{folder}'")
                return
            if strategy is ConflictStrategy.SKIP:
                item.transition(ItemState.SKIPPED)
                result.skipped.append((item, SKIP_REASON))
                logging.info(f"Skipped {item.source}: {SKIP_REASON}")
                return

        item.transition(ItemState.CONVERTING)
        if options.dry_run:
            target = DRY_RUN_ID
        elif strategy is ConflictStrategy.REPLACE:
            target = self._replace(existing_id, document)
        else:
            target = self.bridge.create(document.title, to_markup(document), folder)

        if strategy is not ConflictStrategy.DUPLICATE:
            index[key] = target
        item.target = target
        item.transition(ItemState.SUCCEEDED)
        result.succeeded.append(item)
        logging.info(f"Imported {item.source} as '{document.title}' in '{folder}'")

    def _decide(self, conflict: ImportConflict, strategy: ConflictStrategy,
                resolver: Optional[ConflictResolver]) -> Optional[ConflictStrategy]:
        """Return the strategy for one conflict, or None if it stays unresolved."""
        if strategy is not ConflictStrategy.ASK:
            return strategy
        if resolver is None:
            return None
        try:
            decision = resolver(conflict)
        except ConflictUnresolved as e:
            logging.info(f"Resolver declined conflict for '{conflict.title}': {e}")
            return None
        if decision is None:
            return None
        decision = ConflictStrategy(decision)
        return None if decision is ConflictStrategy.ASK else decision

    def _replace(self, existing_id: str, document: Document) -> str:
        if self.bridge.supports_update:
            self.bridge.update(existing_id, title=document.title, markup=body_markup(document))
            return existing_id
        self.bridge.delete(existing_id)
        return self.bridge.create(document.title, to_markup(document), document.folder)

    @staticmethod
    def _report(progress: Optional[ProgressCallback], result: TransferResult) -> None:
        if progress is not None:
            progress(result.completed, result.total)


def parse_file(path: Path) -> Document:
    """
    Read and parse one import file by its suffix.

    HTML files take their title from a leading <h1>, or from the file
    stem when there is none.
    """
    data = path.read_bytes()
    suffix = path.suffix.lower()
    if suffix in JSON_SUFFIXES:
        return from_json(data, source_name=path.name)
    if suffix in HTML_SUFFIXES:
        try:
            markup = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConversionError(f"{path.name} is not valid UTF-8: {e}") from e
        document = from_markup(markup)
        if not document.title:
            document = document.model_copy(update={"title": path.stem})
        return document
    return from_markdown(data, path.name)


def _write_files(files: Sequence[Tuple[Path, bytes]]) -> List[Path]:
    """Write one item's files; on failure remove the ones already written."""
    written: List[Path] = []
    try:
        for path, payload in files:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)
            written.append(path)
    except OSError:
        for path in written:
            path.unlink(missing_ok=True)
        raise
    return written


def derive_folder(path: Path, base_dir: Optional[Path]) -> Optional[str]:
    """Folder named by the sub-directory of path below base_dir, if any."""
    if base_dir is None:
        return None
    try:
        relative = path.parent.relative_to(base_dir)
    except ValueError:
        return None
    if not relative.parts:
        return None
    return "/".join(restore_name(part) for part in relative.parts)


def discover_files(root: Path, recursive: bool = True) -> List[Path]:
    """Find importable files under root, sorted, skipping hidden entries."""
    candidates = root.rglob("*") if recursive else root.glob("*")
    found = []
    for path in candidates:
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts):
            continue
        if path.is_file() and path.suffix.lower() in IMPORT_SUFFIXES:
            found.append(path)
    return sorted(found, key=lambda p: p.relative_to(root).as_posix())
