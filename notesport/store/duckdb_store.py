"""
DuckDB snapshot store for notesport.

This module keeps a local snapshot of note blobs and their metadata in a
DuckDB file so exports can run without the live host database.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import duckdb

from ..codec import decode
from ..errors import DecodeError, NoteNotFound
from ..models import AttachmentRef
from .base import NoteStore, RowSummary, StoreRow


class DuckDBNoteStore(NoteStore):
    """
    Note store backed by a DuckDB database file.

    Timestamps are stored as naive UTC and returned timezone-aware.
    """

    def __init__(self, db_path: str = "notesport.db"):
        """
        Initialize the store.

        Args:
            db_path: Path to the DuckDB database file
        """
        self.db_path = db_path
        self.connection = None

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                identifier VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                folder VARCHAR,
                data BLOB NOT NULL,
                created_at TIMESTAMP,
                modified_at TIMESTAMP,
                tables_json TEXT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS attachments (
                identifier VARCHAR NOT NULL,
                note_identifier VARCHAR NOT NULL,
                name VARCHAR,
                type_uti VARCHAR NOT NULL,
                file_size BIGINT NOT NULL,
                created_at TIMESTAMP,
                modified_at TIMESTAMP,
                PRIMARY KEY (note_identifier, identifier)
            )
        """)

    def add_row(self, row: StoreRow, title: Optional[str] = None) -> None:
        """
        Insert or replace a note in the snapshot.

        Args:
            row: The row to store
            title: Listing title; decoded from the blob when omitted
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        if title is None:
            try:
                title = decode(row.data, identifier=row.identifier).title
            except DecodeError as e:
                logging.warning(f"Could not decode title of note {row.identifier}: {e}")
                title = ""

        self.connection.execute("""
            INSERT OR REPLACE INTO notes
                (identifier, title, folder, data, created_at, modified_at, tables_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            row.identifier,
            title,
            row.folder,
            row.data,
            _to_db(row.created_at),
            _to_db(row.modified_at),
            json.dumps(row.tables) if row.tables else None,
        ])

        self.connection.execute("DELETE FROM attachments WHERE note_identifier = ?", [row.identifier])
        for ref in row.attachments:
            self.connection.execute("""
                INSERT INTO attachments
                    (identifier, note_identifier, name, type_uti, file_size, created_at, modified_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                ref.identifier,
                row.identifier,
                ref.name,
                ref.type_uti,
                ref.file_size,
                _to_db(ref.created_at),
                _to_db(ref.modified_at),
            ])
        logging.debug(f"Stored note {row.identifier} ({title!r})")

    def add_rows(self, rows: Sequence[StoreRow]) -> int:
        """Store several rows; returns how many were written."""
        for row in rows:
            self.add_row(row)
        return len(rows)

    def fetch_row(self, identifier: str) -> StoreRow:
        if not self.connection:
            raise RuntimeError("Database connection not established")

        # A cursor per call lets prefetch threads read concurrently
        cursor = self.connection.cursor()
        try:
            result = cursor.execute("""
                SELECT identifier, folder, data, created_at, modified_at, tables_json
                FROM notes
                WHERE identifier = ?
            """, [identifier]).fetchone()
            if not result:
                raise NoteNotFound(identifier)

            attachment_rows = cursor.execute("""
                SELECT identifier, name, type_uti, file_size, created_at, modified_at
                FROM attachments
                WHERE note_identifier = ?
                ORDER BY identifier
            """, [identifier]).fetchall()
        finally:
            cursor.close()

        attachments = tuple(
            AttachmentRef(
                identifier=ref[0],
                name=ref[1],
                type_uti=ref[2],
                file_size=ref[3],
                created_at=_from_db(ref[4]),
                modified_at=_from_db(ref[5]),
            )
            for ref in attachment_rows
        )
        tables: Dict[str, List[List[str]]] = json.loads(result[5]) if result[5] else {}
        return StoreRow(
            identifier=result[0],
            folder=result[1],
            data=bytes(result[2]),
            created_at=_from_db(result[3]),
            modified_at=_from_db(result[4]),
            attachments=attachments,
            tables=tables,
        )

    def list_rows(self, folder: Optional[str] = None, limit: Optional[int] = None) -> List[RowSummary]:
        if not self.connection:
            raise RuntimeError("Database connection not established")

        query = """
            SELECT identifier, title, folder, modified_at
            FROM notes
            WHERE 1=1
        """
        params: List = []
        if folder is not None:
            query += " AND folder = ?"
            params.append(folder)
        query += " ORDER BY modified_at DESC NULLS LAST, identifier"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        cursor = self.connection.cursor()
        try:
            results = cursor.execute(query, params).fetchall()
        finally:
            cursor.close()

        return [
            RowSummary(identifier=row[0], title=row[1], folder=row[2], modified_at=_from_db(row[3]))
            for row in results
        ]

    def count_rows(self) -> int:
        if not self.connection:
            raise RuntimeError("Database connection not established")
        result = self.connection.execute("SELECT COUNT(*) FROM notes").fetchone()
        return result[0] if result else 0


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)
