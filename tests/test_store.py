"""
Tests for the note stores.

Both implementations run through the same contract tests.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from chainnotes.models import Note, NoteStatus
from chainnotes.store import MemoryNoteStore, NoteStore, SqliteNoteStore, new_note_id


def _note(note_id: str, minutes: int = 0) -> Note:
    created = datetime(2024, 1, 1, tzinfo=UTC) + timedelta(minutes=minutes)
    return Note(
        id=note_id, title=f"title {note_id}", content="body", created_at=created, updated_at=created
    )


@pytest.fixture(params=["memory", "sqlite"])
def note_store(request: pytest.FixtureRequest) -> Iterator[NoteStore]:
    store: NoteStore = MemoryNoteStore() if request.param == "memory" else SqliteNoteStore()
    yield store
    store.close()


class TestNoteStoreContract:
    def test_get_missing(self, note_store: NoteStore) -> None:
        assert note_store.get("missing") is None

    def test_put_and_get(self, note_store: NoteStore) -> None:
        note = _note("a")
        note_store.put(note)
        loaded = note_store.get("a")
        assert loaded.to_api() == note.to_api()
        assert loaded.created_at.tzinfo is not None

    def test_put_replaces(self, note_store: NoteStore) -> None:
        note = _note("a")
        note_store.put(note)
        note.mark_pending("aa" * 32, "addr_test1xyz")
        note_store.put(note)

        loaded = note_store.get("a")
        assert loaded.status == NoteStatus.PENDING
        assert loaded.tx_hash == "aa" * 32
        assert loaded.wallet_address == "addr_test1xyz"

    def test_returned_notes_are_copies(self, note_store: NoteStore) -> None:
        """Mutating a loaded note does nothing until it is put back."""
        note_store.put(_note("a"))
        loaded = note_store.get("a")
        loaded.title = "changed"
        assert note_store.get("a").title == "title a"

    def test_delete(self, note_store: NoteStore) -> None:
        note_store.put(_note("a"))
        assert note_store.delete("a") is True
        assert note_store.get("a") is None
        assert note_store.delete("a") is False

    def test_list_newest_first(self, note_store: NoteStore) -> None:
        note_store.put(_note("old", minutes=0))
        note_store.put(_note("new", minutes=10))
        note_store.put(_note("mid", minutes=5))
        assert [n.id for n in note_store.list()] == ["new", "mid", "old"]

    def test_list_by_status(self, note_store: NoteStore) -> None:
        pending = _note("pending")
        pending.mark_pending("aa" * 32)
        confirmed = _note("confirmed", minutes=1)
        confirmed.mark_pending("bb" * 32)
        confirmed.mark_confirmed()
        for note in (pending, confirmed, _note("plain", minutes=2)):
            note_store.put(note)

        assert [n.id for n in note_store.list(status=NoteStatus.PENDING)] == ["pending"]
        assert [n.id for n in note_store.list(status=NoteStatus.CONFIRMED)] == ["confirmed"]
        assert len(note_store.list()) == 3


class TestSqliteNoteStore:
    def test_persists_across_instances(self, tmp_path: Path) -> None:
        db_path = tmp_path / "notes.db"
        store = SqliteNoteStore(db_path)
        store.put(_note("a"))
        store.close()

        reopened = SqliteNoteStore(db_path)
        assert reopened.get("a") is not None
        reopened.close()

    def test_reads_zoneless_timestamps(self) -> None:
        """Rows written as SQLite CURRENT_TIMESTAMP text are read as UTC."""
        store = SqliteNoteStore()
        store._conn.execute(
            "INSERT INTO notes (id, title, content, created_at, updated_at) "
            "VALUES ('x', 't', 'c', '2024-01-01 10:00:00', '2024-01-01 10:00:00')"
        )
        note = store.get("x")
        assert note.created_at == datetime(2024, 1, 1, 10, tzinfo=UTC)
        assert note.status is None
        store.close()


def test_new_note_ids_are_unique() -> None:
    assert len({new_note_id() for _ in range(100)}) == 100
