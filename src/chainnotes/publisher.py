"""
Note publisher: the build -> sign -> assemble -> submit pipeline.

Two ways in:
- publish(): the whole pipeline in one call, signing through a
  WalletSession (CLI, simulation, server-side wallets)
- build_for_note() / submit_signed(): the same steps split across two HTTP
  requests, for wallets that live in the browser

Concurrency rules:
- At most one pipeline per wallet address runs at a time (address lock).
  Between a browser build and its submission the chosen input is reserved
  so a second build from the same address picks a different UTXO when
  the wallet has one.
- Writes to a note's proof fields are serialized per note (note lock), the
  same lock the ConfirmationPoller takes.
- A note is only written after the indexer accepted the transaction, and
  only ever as pending.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from loguru import logger

from chainnotes.backends.base import UTXO, ChainIndexer
from chainnotes.constants import TTL_SLOTS
from chainnotes.errors import (
    ChainNotesError,
    MalformedTransactionError,
    NoteNotFoundError,
    SigningRejectedError,
)
from chainnotes.models import Note, NoteAction, NoteMetadata
from chainnotes.store import NoteStore
from chainnotes.tx_assembler import (
    SignedTransaction,
    assemble_transaction,
    decode_hex,
    input_refs,
    split_transaction,
    transaction_hash,
)
from chainnotes.tx_builder import UnsignedTransaction, UnsignedTxBuilder, parse_address
from chainnotes.wallet.bridge import WalletSession


def normalize_address(address: str) -> str:
    """Bech32 form of an address, so hex and bech32 share locks and indexer queries."""
    return str(parse_address(address))


class KeyedLock:
    """
    A set of asyncio locks keyed by string (address or note id).

    Locks are created on first use and dropped once nobody holds or waits
    for them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class UtxoReservations:
    """
    Inputs picked by a build that has not been submitted yet.

    A reservation lapses after ``timeout`` seconds; with one slot per
    second that matches the transaction's TTL.
    """

    def __init__(self, timeout: float = float(TTL_SLOTS)):
        self.timeout = timeout
        self._reserved: dict[str, dict[str, float]] = {}

    def _prune(self, address: str) -> dict[str, float]:
        now = time.monotonic()
        refs = {
            ref: expiry for ref, expiry in self._reserved.get(address, {}).items() if expiry > now
        }
        if refs:
            self._reserved[address] = refs
        else:
            self._reserved.pop(address, None)
        return refs

    def reserve(self, address: str, utxo: UTXO) -> None:
        self._prune(address)
        self._reserved.setdefault(address, {})[utxo.ref] = time.monotonic() + self.timeout

    def release(self, refs: Iterable[str]) -> None:
        """Drop reservations on inputs that have been spent."""
        spent = set(refs)
        for address in list(self._reserved):
            refs_left = {
                ref: expiry for ref, expiry in self._reserved[address].items() if ref not in spent
            }
            if refs_left:
                self._reserved[address] = refs_left
            else:
                del self._reserved[address]

    def available(self, address: str, utxos: list[UTXO]) -> list[UTXO]:
        """
        UTXOs not reserved by an earlier build.

        When every UTXO is reserved the full list is returned: a build the
        user abandoned must not lock a single-UTXO wallet out until expiry.
        """
        reserved = self._prune(address)
        free = [u for u in utxos if u.ref not in reserved]
        return free or list(utxos)


class NotePublisher:
    def __init__(
        self,
        store: NoteStore,
        indexer: ChainIndexer,
        builder: UnsignedTxBuilder | None = None,
        note_locks: KeyedLock | None = None,
        reservations: UtxoReservations | None = None,
    ):
        self.store = store
        self.indexer = indexer
        self.builder = builder or UnsignedTxBuilder(indexer)
        self.address_locks = KeyedLock()
        self.note_locks = note_locks or KeyedLock()
        self.reservations = reservations or UtxoReservations(float(self.builder.ttl_slots))

    def _require_note(self, note_id: str) -> Note:
        note = self.store.get(note_id)
        if note is None:
            raise NoteNotFoundError(f"Note {note_id} not found")
        return note

    async def build_for_note(
        self,
        note_id: str,
        wallet_address: str,
        action: NoteAction = NoteAction.CREATE,
        note_hash: str | None = None,
        utxos: list[UTXO] | None = None,
    ) -> UnsignedTransaction:
        """
        Build the unsigned transaction for a note; the caller signs it.

        The address may be bech32 or the hex form CIP-30 wallets return.
        The selected input stays reserved for the address until the
        transaction is submitted or the reservation times out.
        """
        note = self._require_note(note_id)
        metadata = NoteMetadata.for_note(note, action, note_hash)
        wallet_address = normalize_address(wallet_address)

        async with self.address_locks.hold(wallet_address):
            if utxos is None:
                utxos = await self.indexer.get_address_utxos(wallet_address)
            candidates = self.reservations.available(wallet_address, utxos)
            unsigned = await self.builder.build(wallet_address, metadata, utxos=candidates)
            self.reservations.reserve(wallet_address, unsigned.tx_input)

        logger.info(
            f"Built {action.value} transaction {unsigned.tx_hash} for note {note_id} "
            f"(fee {unsigned.fee}, ttl {unsigned.ttl})"
        )
        return unsigned

    async def submit_signed(
        self,
        signed_tx_hex: str,
        note_id: str | None = None,
        wallet_address: str | None = None,
    ) -> tuple[str, Note | None]:
        """
        Submit a signed transaction and, if note_id is given, record it as
        the note's pending proof.

        Raises:
            MalformedTransactionError: The hex is not a transaction
            NoteNotFoundError: note_id is unknown (checked before submitting)
            SubmissionError: The indexer rejected the transaction
        """
        tx_bytes = decode_hex(signed_tx_hex, "Signed transaction")
        body = split_transaction(tx_bytes).body
        expected_hash = transaction_hash(body)
        spent = input_refs(body)
        if note_id is not None:
            self._require_note(note_id)

        tx_hash = await self.indexer.submit_transaction(tx_bytes)
        if tx_hash != expected_hash:
            logger.warning(f"Indexer returned hash {tx_hash}, computed {expected_hash}")
        self.reservations.release(spent)

        note = None
        if note_id is not None:
            note = await self.attach_proof(note_id, tx_hash, wallet_address)
        return tx_hash, note

    async def attach_proof(
        self, note_id: str, tx_hash: str, wallet_address: str | None = None
    ) -> Note:
        """
        Record tx_hash as the note's pending transaction.

        Raises:
            NoteNotFoundError: Unknown note
            ProofConflictError: The note is already confirmed
        """
        async with self.note_locks.hold(note_id):
            note = self._require_note(note_id)
            if note.mark_pending(tx_hash, wallet_address):
                self.store.put(note)
                logger.info(f"Note {note_id} pending on transaction {tx_hash}")
            return note

    async def publish(
        self,
        session: WalletSession,
        note_id: str,
        action: NoteAction = NoteAction.CREATE,
        note_hash: str | None = None,
    ) -> Note:
        """
        Run the full pipeline for a note through a connected wallet session.

        Any failure before the indexer accepts the transaction leaves the
        note untouched.

        Raises:
            ParameterFetchError, NoSpendableInputError, SigningRejectedError,
            MalformedTransactionError, SubmissionError
        """
        note = self._require_note(note_id)
        metadata = NoteMetadata.for_note(note, action, note_hash)
        address = normalize_address(await session.get_change_address())

        async with self.address_locks.hold(address):
            utxos = self.reservations.available(address, await session.get_utxos())
            unsigned = await self.builder.build(address, metadata, utxos=utxos)

            witness_set_hex = await self._sign(session, unsigned)
            signed = assemble_transaction(unsigned.cbor_hex, witness_set_hex)

            tx_hash = await self.indexer.submit_transaction(signed.tx_bytes)
            self._check_hash(signed, tx_hash)

        return await self.attach_proof(note_id, tx_hash, address)

    async def _sign(self, session: WalletSession, unsigned: UnsignedTransaction) -> str:
        logger.debug(f"Waiting for wallet signature on {unsigned.tx_hash}")
        try:
            return await session.sign_tx(unsigned.cbor_hex, partial=True)
        except ChainNotesError:
            raise
        except Exception as e:
            logger.warning(f"Wallet failed to sign {unsigned.tx_hash}: {e}")
            raise SigningRejectedError(f"Wallet error during signing: {e}") from e

    def _check_hash(self, signed: SignedTransaction, tx_hash: str) -> None:
        if tx_hash != signed.tx_hash:
            logger.warning(f"Indexer returned hash {tx_hash}, computed {signed.tx_hash}")
        if not tx_hash:
            raise MalformedTransactionError("Indexer returned an empty transaction hash")
