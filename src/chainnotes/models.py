"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from chainnotes.constants import (
    CONTENT_PREVIEW_MAX_CHARS,
    METADATA_MAX_STRING_BYTES,
    TITLE_MAX_CHARS,
)
from chainnotes.errors import ProofConflictError


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with a trailing ``Z`` (``2024-01-01T12:00:00Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def clamp_utf8(text: str, max_chars: int, max_bytes: int = METADATA_MAX_STRING_BYTES) -> str:
    """
    Truncate text to at most max_chars characters and max_bytes UTF-8 bytes.

    Multi-byte characters are never split.
    """
    text = text[:max_chars]
    while len(text.encode("utf-8")) > max_bytes:
        text = text[:-1]
    return text


class NoteStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class NoteAction(str, Enum):
    CREATE = "CREATE_NOTE"
    UPDATE = "UPDATE_NOTE"
    DELETE = "DELETE_NOTE"


class Note(BaseModel):
    """
    A note and its optional on-chain proof.

    ``status`` is None until a transaction has been submitted for the note.
    A note carries at most one pending transaction hash; once confirmed the
    hash never changes.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str
    title: str
    content: str
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    wallet_address: str | None = Field(default=None, alias="walletAddress")
    tx_hash: str | None = Field(default=None, alias="txHash")
    status: NoteStatus | None = None

    @field_serializer("created_at", "updated_at")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)

    @property
    def is_pending(self) -> bool:
        return self.status == NoteStatus.PENDING

    @property
    def is_confirmed(self) -> bool:
        return self.status == NoteStatus.CONFIRMED

    def content_hash(self) -> str:
        """SHA-256 hex digest of the note's title and content."""
        return hashlib.sha256(f"{self.title}\n{self.content}".encode()).hexdigest()

    def edit(self, title: str, content: str, now: datetime | None = None) -> None:
        """Replace title/content; updated_at never moves backwards."""
        now = now or utcnow()
        self.title = title
        self.content = content
        self.updated_at = max(now, self.updated_at)

    def mark_pending(self, tx_hash: str, wallet_address: str | None = None) -> bool:
        """
        Record a submitted transaction for this note.

        Returns False when the same hash is already pending (no write needed).

        Raises:
            ProofConflictError: If the note already has a confirmed transaction
        """
        if self.is_confirmed:
            raise ProofConflictError(
                f"Note {self.id} is already confirmed in transaction {self.tx_hash}"
            )
        if self.is_pending and self.tx_hash == tx_hash:
            return False
        self.tx_hash = tx_hash
        self.status = NoteStatus.PENDING
        if wallet_address:
            self.wallet_address = wallet_address
        return True

    def mark_confirmed(self) -> bool:
        """
        Flip pending -> confirmed. Returns False if already confirmed.

        Raises:
            ProofConflictError: If no transaction was ever submitted
        """
        if self.is_confirmed:
            return False
        if not self.is_pending or not self.tx_hash:
            raise ProofConflictError(f"Note {self.id} has no pending transaction")
        self.status = NoteStatus.CONFIRMED
        return True

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class NoteMetadata(BaseModel):
    """
    Transaction metadata describing a note action.

    Free-text fields are truncated on construction so the serialized payload
    always fits the ledger's metadata string limit.
    """

    model_config = ConfigDict(populate_by_name=True)

    action: NoteAction
    note_id: str = Field(alias="noteId")
    title: str = ""
    content_preview: str = Field(default="", alias="contentPreview")
    hash: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("title")
    @classmethod
    def truncate_title(cls, v: str) -> str:
        return clamp_utf8(v, TITLE_MAX_CHARS)

    @field_validator("content_preview")
    @classmethod
    def truncate_content(cls, v: str) -> str:
        return clamp_utf8(v, CONTENT_PREVIEW_MAX_CHARS)

    @field_validator("note_id", "hash")
    @classmethod
    def clamp_identifier(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return clamp_utf8(v, METADATA_MAX_STRING_BYTES)

    @classmethod
    def for_note(
        cls, note: Note, action: NoteAction, note_hash: str | None = None
    ) -> NoteMetadata:
        return cls(
            action=action,
            note_id=note.id,
            title=note.title,
            content_preview=note.content,
            hash=note_hash or note.content_hash(),
        )

    def to_metadatum(self) -> dict[str, str]:
        """JSON-compatible payload attached under the note metadata label."""
        payload = {
            "action": self.action.value,
            "noteId": self.note_id,
            "title": self.title,
            "contentPreview": self.content_preview,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.hash:
            payload["hash"] = self.hash
        return payload


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    wallet_address: str | None = Field(default=None, alias="walletAddress")

    @field_validator("title", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class NoteUpdateRequest(NoteCreateRequest):
    pass


class BuildTxRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    note_id: str = Field(..., alias="noteId", min_length=1)
    wallet_address: str = Field(..., alias="walletAddress", min_length=1)
    hash: str | None = None
    action: NoteAction = NoteAction.CREATE


class SubmitTxRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signed_tx_hex: str = Field(..., alias="signedTxHex", min_length=2)
    note_id: str | None = Field(default=None, alias="noteId")
    wallet_address: str | None = Field(default=None, alias="walletAddress")


class AttachProofRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    note_id: str = Field(..., alias="noteId", min_length=1)
    tx_hash: str = Field(..., alias="txHash", pattern=r"^[0-9a-fA-F]+$")
