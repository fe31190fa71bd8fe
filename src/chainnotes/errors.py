"""
Error taxonomy for the note-transaction pipeline.

Every error carries a stable ``code`` that the HTTP layer returns as the
``error`` field of a structured error object, next to the human-readable
message.
"""

from __future__ import annotations


class ChainNotesError(Exception):
    """Base class for all chainnotes errors."""

    code = "chainnotes_error"

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": str(self)}


class ParameterFetchError(ChainNotesError):
    """Protocol parameters or chain tip could not be fetched. Safe to retry."""

    code = "parameter_fetch_failed"


class NoSpendableInputError(ChainNotesError):
    """No UTXO can fund the transaction. The user needs to fund the wallet."""

    code = "no_spendable_input"


class MalformedTransactionError(ChainNotesError):
    """Transaction body or witness set failed to parse. Rebuild required."""

    code = "malformed_transaction"


class SigningRejectedError(ChainNotesError):
    """The wallet declined to sign (user rejection or wallet error)."""

    code = "signing_rejected"


class SubmissionError(ChainNotesError):
    """The indexer rejected the signed transaction."""

    code = "submission_failed"


class ChainIndexerError(ChainNotesError):
    """Network or protocol failure talking to the chain indexer."""

    code = "indexer_error"


class NoteNotFoundError(ChainNotesError):
    code = "note_not_found"


class ProofConflictError(ChainNotesError):
    """Attaching a proof would violate the note's transaction invariants."""

    code = "proof_conflict"
