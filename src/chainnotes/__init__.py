"""
chainnotes - Notes with on-chain proofs on Cardano

The server builds unsigned transactions carrying note metadata, the user's
wallet signs them, and the server assembles, submits and tracks them until
they are confirmed.
"""

__version__ = "0.1.0"

from chainnotes.errors import (
    ChainIndexerError,
    ChainNotesError,
    MalformedTransactionError,
    NoSpendableInputError,
    NoteNotFoundError,
    ParameterFetchError,
    ProofConflictError,
    SigningRejectedError,
    SubmissionError,
)
from chainnotes.models import Note, NoteAction, NoteMetadata, NoteStatus
from chainnotes.poller import ConfirmationPoller
from chainnotes.publisher import KeyedLock, NotePublisher
from chainnotes.store import MemoryNoteStore, NoteStore, SqliteNoteStore
from chainnotes.tx_assembler import SignedTransaction, assemble_transaction
from chainnotes.tx_builder import UnsignedTransaction, UnsignedTxBuilder

__all__ = [
    "ChainIndexerError",
    "ChainNotesError",
    "ConfirmationPoller",
    "KeyedLock",
    "MalformedTransactionError",
    "MemoryNoteStore",
    "NoSpendableInputError",
    "Note",
    "NoteAction",
    "NoteMetadata",
    "NoteNotFoundError",
    "NotePublisher",
    "NoteStatus",
    "NoteStore",
    "ParameterFetchError",
    "ProofConflictError",
    "SignedTransaction",
    "SigningRejectedError",
    "SqliteNoteStore",
    "SubmissionError",
    "UnsignedTransaction",
    "UnsignedTxBuilder",
    "assemble_transaction",
]
