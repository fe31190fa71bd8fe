"""
Unsigned transaction builder for note proofs.

Builds a single-input transaction that sends a minimal output back to the
sender, returns any change to the sender and carries the note metadata as
auxiliary data:

- Input: first UTXO with positive lovelace
- Outputs: min-value self output + change output (when above the minimum)
- TTL: chain tip slot + horizon
- Fee: linear fee (min_fee_a * size + min_fee_b) on the size with one
  placeholder vkey witness

The builder never signs and never touches keys; the returned CBOR carries
an empty witness set for the wallet to fill in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import cbor2
from loguru import logger
from pycardano import (
    Address,
    AuxiliaryData,
    Metadata,
    Transaction,
    TransactionBody,
    TransactionInput,
    TransactionOutput,
    TransactionWitnessSet,
    VerificationKey,
    VerificationKeyWitness,
)
from pycardano.exception import PyCardanoException

from chainnotes.backends.base import UTXO, ChainIndexer, ProtocolParameters
from chainnotes.constants import (
    DUMMY_SIGNATURE_SIZE,
    DUMMY_VKEY_SIZE,
    MIN_OUTPUT_BASE_RESERVE,
    MIN_OUTPUT_FIXED_OVERHEAD,
    NOTE_METADATA_LABEL,
    TTL_SLOTS,
)
from chainnotes.errors import MalformedTransactionError, NoSpendableInputError
from chainnotes.models import NoteMetadata
from chainnotes.tx_assembler import split_transaction, transaction_hash

# Fee/change balancing converges in 2-3 rounds; the cap guards against oscillation
MAX_BALANCE_ROUNDS = 10

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


@dataclass
class UnsignedTransaction:
    """Result of a build: the CBOR to hand to the wallet plus a summary."""

    cbor_hex: str
    tx_hash: str
    tx_input: UTXO
    outputs: list[tuple[str, int]]
    fee: int
    ttl: int
    metadata: dict[int, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.cbor_hex) // 2


def parse_address(address: str) -> Address:
    """
    Parse a bech32 address or the raw hex form returned by CIP-30 wallets.
    """
    try:
        if _HEX_RE.match(address):
            return Address.from_primitive(bytes.fromhex(address))
        return Address.from_primitive(address)
    except (PyCardanoException, ValueError, TypeError) as e:
        raise MalformedTransactionError(f"Invalid address: {address[:20]}...") from e


def select_input(utxos: list[UTXO]) -> UTXO:
    """
    Select the first UTXO with strictly positive lovelace.

    Raises:
        NoSpendableInputError: If the list is empty or has no positive entry
    """
    for utxo in utxos:
        if utxo.lovelace > 0:
            return utxo
    if not utxos:
        raise NoSpendableInputError("Wallet has no UTXOs. Fund your wallet and try again.")
    raise NoSpendableInputError(
        f"None of the {len(utxos)} UTXO(s) holds spendable ADA. Fund your wallet and try again."
    )


def min_output_value(
    params: ProtocolParameters,
    fixed_overhead: int = MIN_OUTPUT_FIXED_OVERHEAD,
    base_reserve: int = MIN_OUTPUT_BASE_RESERVE,
) -> int:
    """Minimal self-addressed output value in lovelace."""
    return params.coins_per_utxo_byte * fixed_overhead + base_reserve


def linear_fee(params: ProtocolParameters, size: int) -> int:
    return params.min_fee_a * size + params.min_fee_b


def _to_input(utxo: UTXO) -> TransactionInput:
    try:
        return TransactionInput.from_primitive([utxo.tx_hash, utxo.output_index])
    except (PyCardanoException, ValueError, TypeError) as e:
        raise MalformedTransactionError(f"Invalid UTXO reference: {utxo.ref}") from e


def _estimated_size(body: TransactionBody, aux: AuxiliaryData) -> int:
    """Serialized size once a single vkey witness is attached."""
    placeholder = TransactionWitnessSet(
        vkey_witnesses=[
            VerificationKeyWitness(
                VerificationKey(bytes(DUMMY_VKEY_SIZE)), bytes(DUMMY_SIGNATURE_SIZE)
            )
        ]
    )
    return len(Transaction(body, placeholder, auxiliary_data=aux).to_cbor())


def build_unsigned_tx(
    params: ProtocolParameters,
    tip_slot: int,
    sender_address: str,
    utxos: list[UTXO],
    metadata: NoteMetadata,
    metadata_label: int = NOTE_METADATA_LABEL,
    ttl_slots: int = TTL_SLOTS,
    min_output_fixed_overhead: int = MIN_OUTPUT_FIXED_OVERHEAD,
    min_output_base_reserve: int = MIN_OUTPUT_BASE_RESERVE,
) -> UnsignedTransaction:
    """
    Build an unsigned note transaction from already-fetched chain data.

    Args:
        params: Current protocol parameters
        tip_slot: Slot of the current chain tip
        sender_address: Address paying for and receiving the outputs
        utxos: UTXOs owned by sender_address, in wallet/indexer order
        metadata: Note metadata (already truncated)
        metadata_label: Auxiliary metadata label

    Returns:
        UnsignedTransaction with the hex CBOR and build summary

    Raises:
        NoSpendableInputError: No UTXO can cover the outputs and fee
        MalformedTransactionError: Invalid address/UTXO reference or oversized tx
    """
    utxo = select_input(utxos)
    address = parse_address(sender_address)
    tx_input = _to_input(utxo)

    min_output = min_output_value(params, min_output_fixed_overhead, min_output_base_reserve)
    payload = metadata.to_metadatum()
    try:
        aux = AuxiliaryData(data=Metadata({metadata_label: payload}))
    except (PyCardanoException, ValueError, TypeError) as e:
        raise MalformedTransactionError(f"Metadata rejected: {e}") from e

    ttl = tip_slot + ttl_slots

    fee = 0
    body: TransactionBody | None = None
    outputs: list[tuple[str, int]] = []
    for _ in range(MAX_BALANCE_ROUNDS):
        leftover = utxo.lovelace - min_output - fee
        if leftover < 0:
            raise NoSpendableInputError(
                f"UTXO {utxo.ref} holds {utxo.lovelace} lovelace, needs at least "
                f"{min_output + fee}. Fund your wallet and try again."
            )

        outputs = [(sender_address, min_output)]
        body_fee = fee
        if leftover >= min_output:
            outputs.append((sender_address, leftover))
        else:
            # Change below the minimum output value goes to the fee
            body_fee += leftover

        body = TransactionBody(
            inputs=[tx_input],
            outputs=[TransactionOutput(address, value) for _, value in outputs],
            fee=body_fee,
            ttl=ttl,
            auxiliary_data_hash=aux.hash(),
        )
        required = linear_fee(params, _estimated_size(body, aux))
        if fee >= required:
            fee = body_fee
            break
        fee = required
    else:
        raise MalformedTransactionError("Fee balancing did not converge")

    tx = Transaction(body, TransactionWitnessSet(), auxiliary_data=aux)
    tx_bytes = tx.to_cbor()
    if len(tx_bytes) > params.max_tx_size:
        raise MalformedTransactionError(
            f"Transaction size {len(tx_bytes)} exceeds max_tx_size {params.max_tx_size}"
        )
    for _, value in outputs:
        value_size = len(cbor2.dumps(value))
        if value_size > params.max_val_size:
            raise MalformedTransactionError(
                f"Output value size {value_size} exceeds max_val_size {params.max_val_size}"
            )

    unsigned = UnsignedTransaction(
        cbor_hex=tx_bytes.hex(),
        tx_hash=transaction_hash(split_transaction(tx_bytes).body),
        tx_input=utxo,
        outputs=outputs,
        fee=fee,
        ttl=ttl,
        metadata={metadata_label: payload},
    )
    logger.debug(
        f"Built unsigned tx {unsigned.tx_hash}: input {utxo.ref}, "
        f"{len(outputs)} output(s), fee {fee}, ttl {ttl}, {unsigned.size} bytes"
    )
    return unsigned


class UnsignedTxBuilder:
    """
    Builds unsigned note transactions with fresh chain data.

    Protocol parameters and the chain tip are fetched anew for every build.
    """

    def __init__(
        self,
        indexer: ChainIndexer,
        metadata_label: int = NOTE_METADATA_LABEL,
        ttl_slots: int = TTL_SLOTS,
        min_output_fixed_overhead: int = MIN_OUTPUT_FIXED_OVERHEAD,
        min_output_base_reserve: int = MIN_OUTPUT_BASE_RESERVE,
    ):
        self.indexer = indexer
        self.metadata_label = metadata_label
        self.ttl_slots = ttl_slots
        self.min_output_fixed_overhead = min_output_fixed_overhead
        self.min_output_base_reserve = min_output_base_reserve

    async def build(
        self,
        sender_address: str,
        metadata: NoteMetadata,
        utxos: list[UTXO] | None = None,
    ) -> UnsignedTransaction:
        """
        Build an unsigned transaction for sender_address.

        Args:
            sender_address: Paying address (bech32 or hex)
            metadata: Note metadata to attach
            utxos: UTXOs supplied by the wallet; fetched from the indexer if None

        Raises:
            ParameterFetchError: Protocol parameters or chain tip unavailable
            NoSpendableInputError: No UTXO can fund the transaction
        """
        params = await self.indexer.get_latest_epoch_parameters()
        if utxos is None:
            utxos = await self.indexer.get_address_utxos(sender_address)
        # Fail on funding before spending another indexer call on the tip
        select_input(utxos)
        tip = await self.indexer.get_latest_block()

        return build_unsigned_tx(
            params=params,
            tip_slot=tip.slot,
            sender_address=sender_address,
            utxos=utxos,
            metadata=metadata,
            metadata_label=self.metadata_label,
            ttl_slots=self.ttl_slots,
            min_output_fixed_overhead=self.min_output_fixed_overhead,
            min_output_base_reserve=self.min_output_base_reserve,
        )
