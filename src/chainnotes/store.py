"""
Note persistence.

One contract (get/put/delete/list) with two implementations:
- SqliteNoteStore: durable storage in a single SQLite file
- MemoryNoteStore: process-local dict, used by tests and simulation runs

Stores hand out copies; mutating a returned Note has no effect until it is
put() back.
"""

from __future__ import annotations

import sqlite3
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from chainnotes.models import Note, NoteStatus


def new_note_id() -> str:
    return uuid.uuid4().hex


class NoteStore(ABC):
    @abstractmethod
    def get(self, note_id: str) -> Note | None:
        """Get a note by id"""

    @abstractmethod
    def put(self, note: Note) -> None:
        """Insert or replace a note"""

    @abstractmethod
    def delete(self, note_id: str) -> bool:
        """Delete a note, returns False if it did not exist"""

    @abstractmethod
    def list(self, status: NoteStatus | None = None) -> list[Note]:
        """List notes, newest first, optionally filtered by status"""

    def close(self) -> None:
        pass


class MemoryNoteStore(NoteStore):
    def __init__(self) -> None:
        self._notes: dict[str, Note] = {}

    def get(self, note_id: str) -> Note | None:
        note = self._notes.get(note_id)
        return note.model_copy(deep=True) if note else None

    def put(self, note: Note) -> None:
        self._notes[note.id] = note.model_copy(deep=True)

    def delete(self, note_id: str) -> bool:
        return self._notes.pop(note_id, None) is not None

    def list(self, status: NoteStatus | None = None) -> list[Note]:
        notes = [
            n.model_copy(deep=True)
            for n in self._notes.values()
            if status is None or n.status == status
        ]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    wallet_address TEXT,
    tx_hash TEXT,
    status TEXT
);
CREATE INDEX IF NOT EXISTS idx_notes_status ON notes(status);
"""


def _parse_timestamp(value: str) -> datetime:
    # Older rows may carry SQLite's "YYYY-MM-DD HH:MM:SS" without a zone
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00").replace(" ", "T"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
        wallet_address=row["wallet_address"],
        tx_hash=row["tx_hash"],
        status=NoteStatus(row["status"]) if row["status"] else None,
    )


class SqliteNoteStore(NoteStore):
    """
    SQLite-backed note store.

    Thread-safe via SQLite's built-in locking.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self._db_path = str(db_path)
        # A single connection; ":memory:" databases vanish with their connection
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self._db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)
        logger.debug(f"Note store ready at {self._db_path}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for a database transaction."""
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def get(self, note_id: str) -> Note | None:
        row = self._conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
        return _row_to_note(row) if row else None

    def put(self, note: Note) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO notes
                    (id, title, content, created_at, updated_at, wallet_address, tx_hash, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    content = excluded.content,
                    updated_at = excluded.updated_at,
                    wallet_address = excluded.wallet_address,
                    tx_hash = excluded.tx_hash,
                    status = excluded.status
                """,
                (
                    note.id,
                    note.title,
                    note.content,
                    note.created_at.isoformat(),
                    note.updated_at.isoformat(),
                    note.wallet_address,
                    note.tx_hash,
                    note.status.value if note.status else None,
                ),
            )

    def delete(self, note_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        return cursor.rowcount > 0

    def list(self, status: NoteStatus | None = None) -> list[Note]:
        if status is None:
            rows = self._conn.execute("SELECT * FROM notes ORDER BY created_at DESC").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM notes WHERE status = ? ORDER BY created_at DESC",
                (status.value,),
            ).fetchall()
        return [_row_to_note(row) for row in rows]

    def close(self) -> None:
        self._conn.close()
