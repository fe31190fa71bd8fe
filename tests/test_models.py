"""
Tests for note models and metadata truncation.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from chainnotes.errors import ProofConflictError
from chainnotes.models import (
    AttachProofRequest,
    BuildTxRequest,
    Note,
    NoteAction,
    NoteCreateRequest,
    NoteMetadata,
    NoteStatus,
    clamp_utf8,
    format_timestamp,
)


class TestTimestamps:
    def test_format_utc_with_z(self) -> None:
        """Timestamps are rendered as ISO-8601 UTC with a trailing Z."""
        value = datetime(2024, 1, 1, 12, 30, 45, 123456, tzinfo=UTC)
        assert format_timestamp(value) == "2024-01-01T12:30:45Z"

    def test_format_naive_as_utc(self) -> None:
        assert format_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00Z"

    def test_format_converts_offset(self) -> None:
        value = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-01-01T12:00:00Z"


class TestClampUtf8:
    def test_short_text_unchanged(self) -> None:
        assert clamp_utf8("Hello", 50) == "Hello"

    def test_char_limit(self) -> None:
        assert clamp_utf8("x" * 80, 50) == "x" * 50

    def test_byte_limit_never_splits_characters(self) -> None:
        """Multi-byte characters are dropped whole to stay within 64 bytes."""
        text = "é" * 40  # 80 bytes
        result = clamp_utf8(text, 50)
        assert len(result.encode("utf-8")) <= 64
        assert result == "é" * 32


class TestNote:
    def test_api_shape(self, sample_note: Note) -> None:
        """API output uses camelCase aliases and Z timestamps."""
        data = sample_note.to_api()
        assert data["id"] == "note-1"
        assert data["createdAt"] == "2024-01-01T12:00:00Z"
        assert data["walletAddress"] is None
        assert data["txHash"] is None
        assert data["status"] is None

    def test_content_hash_is_stable(self, sample_note: Note) -> None:
        assert sample_note.content_hash() == sample_note.model_copy().content_hash()
        assert len(sample_note.content_hash()) == 64

    def test_content_hash_changes_with_content(self, sample_note: Note) -> None:
        before = sample_note.content_hash()
        sample_note.edit("Hello", "Changed")
        assert sample_note.content_hash() != before

    def test_edit_updated_at_monotonic(self, sample_note: Note) -> None:
        """updated_at never moves backwards, even with a skewed clock."""
        earlier = sample_note.updated_at - timedelta(hours=1)
        sample_note.edit("New", "Body", now=earlier)
        assert sample_note.updated_at == datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert sample_note.title == "New"

        later = sample_note.updated_at + timedelta(minutes=5)
        sample_note.edit("Newer", "Body", now=later)
        assert sample_note.updated_at == later

    def test_mark_pending(self, sample_note: Note) -> None:
        assert sample_note.mark_pending("aa" * 32, "addr_test1xyz")
        assert sample_note.status == NoteStatus.PENDING
        assert sample_note.tx_hash == "aa" * 32
        assert sample_note.wallet_address == "addr_test1xyz"

    def test_mark_pending_same_hash_is_noop(self, sample_note: Note) -> None:
        sample_note.mark_pending("aa" * 32)
        assert sample_note.mark_pending("aa" * 32) is False

    def test_mark_pending_replaces_pending_hash(self, sample_note: Note) -> None:
        """A resubmission replaces the single outstanding pending hash."""
        sample_note.mark_pending("aa" * 32)
        assert sample_note.mark_pending("bb" * 32)
        assert sample_note.tx_hash == "bb" * 32

    def test_confirmed_hash_is_immutable(self, sample_note: Note) -> None:
        sample_note.mark_pending("aa" * 32)
        sample_note.mark_confirmed()
        with pytest.raises(ProofConflictError):
            sample_note.mark_pending("bb" * 32)
        assert sample_note.tx_hash == "aa" * 32
        assert sample_note.is_confirmed

    def test_mark_confirmed_idempotent(self, sample_note: Note) -> None:
        sample_note.mark_pending("aa" * 32)
        assert sample_note.mark_confirmed() is True
        assert sample_note.mark_confirmed() is False
        assert sample_note.status == NoteStatus.CONFIRMED

    def test_mark_confirmed_requires_pending(self, sample_note: Note) -> None:
        with pytest.raises(ProofConflictError):
            sample_note.mark_confirmed()


class TestNoteMetadata:
    def test_truncates_title_and_preview(self, sample_note: Note) -> None:
        """Title is cut to 50 and the content preview to 60 characters."""
        sample_note.edit("T" * 120, "C" * 500)
        metadata = NoteMetadata.for_note(sample_note, NoteAction.CREATE)
        assert metadata.title == "T" * 50
        assert metadata.content_preview == "C" * 60

    def test_metadatum_payload(self, sample_note: Note) -> None:
        timestamp = datetime(2024, 1, 2, tzinfo=UTC)
        metadata = NoteMetadata(
            action=NoteAction.CREATE,
            note_id=sample_note.id,
            title=sample_note.title,
            content_preview=sample_note.content,
            hash="ff" * 32,
            timestamp=timestamp,
        )
        assert metadata.to_metadatum() == {
            "action": "CREATE_NOTE",
            "noteId": "note-1",
            "title": "Hello",
            "contentPreview": "My first note on chain",
            "hash": "ff" * 32,
            "timestamp": "2024-01-02T00:00:00Z",
        }

    def test_default_hash_is_content_hash(self, sample_note: Note) -> None:
        metadata = NoteMetadata.for_note(sample_note, NoteAction.UPDATE)
        assert metadata.hash == sample_note.content_hash()
        assert metadata.to_metadatum()["action"] == "UPDATE_NOTE"

    def test_explicit_hash_wins(self, sample_note: Note) -> None:
        metadata = NoteMetadata.for_note(sample_note, NoteAction.DELETE, note_hash="abc")
        assert metadata.hash == "abc"

    def test_every_value_fits_metadata_string_limit(self, sample_note: Note) -> None:
        sample_note.edit("日本語" * 30, "ü" * 200)
        payload = NoteMetadata.for_note(sample_note, NoteAction.CREATE).to_metadatum()
        for value in payload.values():
            assert len(value.encode("utf-8")) <= 64


class TestRequests:
    def test_create_requires_title_and_content(self) -> None:
        with pytest.raises(ValidationError):
            NoteCreateRequest.model_validate({"title": "", "content": "x"})
        with pytest.raises(ValidationError):
            NoteCreateRequest.model_validate({"title": "x", "content": "   "})

    def test_create_accepts_wallet_alias(self) -> None:
        req = NoteCreateRequest.model_validate(
            {"title": "t", "content": "c", "walletAddress": "addr_test1"}
        )
        assert req.wallet_address == "addr_test1"

    def test_build_request_defaults(self) -> None:
        req = BuildTxRequest.model_validate({"noteId": "n", "walletAddress": "addr_test1"})
        assert req.action == NoteAction.CREATE
        assert req.hash is None

    def test_build_request_missing_fields(self) -> None:
        with pytest.raises(ValidationError):
            BuildTxRequest.model_validate({"noteId": "n"})

    def test_attach_proof_requires_hex(self) -> None:
        with pytest.raises(ValidationError):
            AttachProofRequest.model_validate({"noteId": "n", "txHash": "not-hex"})
        req = AttachProofRequest.model_validate({"noteId": "n", "txHash": "DEADBEEF"})
        assert req.tx_hash == "DEADBEEF"
