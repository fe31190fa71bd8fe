"""
Transaction assembler.

Merges an unsigned transaction (as built by the builder) with the witness
set returned by the wallet's signTx into a submittable transaction.

The transaction body is never decoded and re-encoded: signatures cover the
exact body bytes, so the top-level CBOR array is walked item by item and
the original body and auxiliary data slices are copied through verbatim.

Transaction layout (CBOR array):
    [body, witness_set, is_valid, auxiliary_data]   (Alonzo and later)
    [body, witness_set, auxiliary_data]             (Shelley-Mary)
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Any

import cbor2
from loguru import logger

from chainnotes.errors import MalformedTransactionError

# CBOR major types
MAJOR_UINT = 0
MAJOR_NEGINT = 1
MAJOR_BYTES = 2
MAJOR_TEXT = 3
MAJOR_ARRAY = 4
MAJOR_MAP = 5
MAJOR_TAG = 6
MAJOR_SIMPLE = 7

CBOR_BREAK = 0xFF
CBOR_TRUE = b"\xf5"
EMPTY_WITNESS_SET = b"\xa0"

# Deepest CBOR nesting accepted when walking items
MAX_NESTING_DEPTH = 64

# Witness set key holding vkey witnesses
VKEY_WITNESSES = 0

# Transaction body key holding the spent inputs
BODY_INPUTS = 0


@dataclass
class TransactionParts:
    """Raw CBOR slices of a serialized transaction."""

    header: bytes
    body: bytes
    witness_set: bytes
    is_valid: bytes | None
    auxiliary_data: bytes

    def serialize(self, witness_set: bytes | None = None) -> bytes:
        result = self.header + self.body + (witness_set or self.witness_set)
        if self.is_valid is not None:
            result += self.is_valid
        result += self.auxiliary_data
        return result


@dataclass
class SignedTransaction:
    tx_bytes: bytes
    tx_hash: str

    @property
    def cbor_hex(self) -> str:
        return self.tx_bytes.hex()


def read_head(data: bytes, offset: int) -> tuple[int, int | None, int]:
    """
    Read a CBOR item head.

    Returns:
        (major_type, argument, new_offset); argument is None for
        indefinite-length items
    """
    initial = data[offset]
    major = initial >> 5
    info = initial & 0x1F
    offset += 1

    if info < 24:
        return major, info, offset
    elif info == 24:
        return major, data[offset], offset + 1
    elif info == 25:
        return major, struct.unpack(">H", data[offset : offset + 2])[0], offset + 2
    elif info == 26:
        return major, struct.unpack(">I", data[offset : offset + 4])[0], offset + 4
    elif info == 27:
        return major, struct.unpack(">Q", data[offset : offset + 8])[0], offset + 8
    elif info == 31 and major in (MAJOR_BYTES, MAJOR_TEXT, MAJOR_ARRAY, MAJOR_MAP):
        return major, None, offset

    raise MalformedTransactionError(f"Invalid CBOR head 0x{initial:02x} at offset {offset - 1}")


def skip_item(data: bytes, offset: int, depth: int = 0) -> int:
    """Return the offset just past the CBOR item starting at offset."""
    if depth > MAX_NESTING_DEPTH:
        raise MalformedTransactionError(f"CBOR nested deeper than {MAX_NESTING_DEPTH} levels")
    major, arg, offset = read_head(data, offset)

    if major in (MAJOR_UINT, MAJOR_NEGINT, MAJOR_SIMPLE):
        return offset

    if major in (MAJOR_BYTES, MAJOR_TEXT):
        if arg is None:
            while data[offset] != CBOR_BREAK:
                offset = skip_item(data, offset, depth + 1)
            return offset + 1
        end = offset + arg
        if end > len(data):
            raise MalformedTransactionError("CBOR string runs past end of data")
        return end

    if major == MAJOR_TAG:
        return skip_item(data, offset, depth + 1)

    # Arrays and maps
    if arg is None:
        while data[offset] != CBOR_BREAK:
            offset = skip_item(data, offset, depth + 1)
        return offset + 1

    count = arg * 2 if major == MAJOR_MAP else arg
    for _ in range(count):
        offset = skip_item(data, offset, depth + 1)
    return offset


def _split(tx_bytes: bytes) -> TransactionParts:
    major, count, offset = read_head(tx_bytes, 0)
    if major != MAJOR_ARRAY or count not in (3, 4):
        raise MalformedTransactionError("Transaction must be a CBOR array of 3 or 4 items")
    header = tx_bytes[:offset]

    slices: list[bytes] = []
    for _ in range(count):
        end = skip_item(tx_bytes, offset)
        slices.append(tx_bytes[offset:end])
        offset = end

    if offset != len(tx_bytes):
        trailing = len(tx_bytes) - offset
        raise MalformedTransactionError(f"{trailing} trailing bytes after transaction")

    if count == 4:
        body, witness_set, is_valid, aux = slices
    else:
        body, witness_set, aux = slices
        is_valid = None

    if body[0] >> 5 != MAJOR_MAP:
        raise MalformedTransactionError("Transaction body is not a CBOR map")
    if witness_set[0] >> 5 != MAJOR_MAP:
        raise MalformedTransactionError("Witness set is not a CBOR map")

    # Full decode validates well-formedness of every item
    for part in slices:
        cbor2.loads(part)

    return TransactionParts(
        header=header, body=body, witness_set=witness_set, is_valid=is_valid, auxiliary_data=aux
    )


def split_transaction(tx_bytes: bytes) -> TransactionParts:
    """
    Split a serialized transaction into its raw CBOR parts.

    Raises:
        MalformedTransactionError: If the bytes are not a well-formed transaction
    """
    if not tx_bytes:
        raise MalformedTransactionError("Empty transaction")
    try:
        return _split(tx_bytes)
    except MalformedTransactionError:
        raise
    except (cbor2.CBORDecodeError, IndexError, struct.error, ValueError) as e:
        raise MalformedTransactionError(f"Malformed transaction CBOR: {e}") from e


def transaction_hash(body: bytes) -> str:
    """Transaction id: blake2b-256 of the exact body bytes."""
    return hashlib.blake2b(body, digest_size=32).hexdigest()


def input_refs(body: bytes) -> list[str]:
    """``tx_hash#index`` of every input spent by a transaction body."""
    try:
        inputs = cbor2.loads(body).get(BODY_INPUTS, [])
        if isinstance(inputs, cbor2.CBORTag):
            inputs = inputs.value
        return [f"{bytes(tx_id).hex()}#{int(index)}" for tx_id, index in inputs]
    except (cbor2.CBORDecodeError, AttributeError, TypeError, ValueError) as e:
        raise MalformedTransactionError(f"Malformed transaction inputs: {e}") from e


def decode_hex(value: str, what: str) -> bytes:
    try:
        data = bytes.fromhex(value.strip())
    except (ValueError, AttributeError) as e:
        raise MalformedTransactionError(f"{what} is not valid hex") from e
    if not data:
        raise MalformedTransactionError(f"{what} is empty")
    return data


def _parse_witness_set(data: bytes) -> tuple[bytes, dict[Any, Any]]:
    """
    Accept either a bare witness set or a full transaction from the wallet.

    Some wallets return the whole signed transaction from signTx instead of
    the witness set; only its witness set is taken, never its body.
    """
    try:
        if data[0] >> 5 == MAJOR_ARRAY:
            data = _split(data).witness_set
        if skip_item(data, 0) != len(data):
            raise MalformedTransactionError("Trailing bytes after witness set")
        witness = cbor2.loads(data)
    except MalformedTransactionError:
        raise
    except (cbor2.CBORDecodeError, IndexError, struct.error, ValueError) as e:
        raise MalformedTransactionError(f"Malformed witness set CBOR: {e}") from e

    if not isinstance(witness, dict):
        raise MalformedTransactionError("Witness set is not a CBOR map")
    return data, witness


def _merge_witness_sets(existing: dict[Any, Any], new: dict[Any, Any]) -> bytes:
    merged = dict(existing)
    for key, value in new.items():
        if key == VKEY_WITNESSES and key in merged:
            seen = {cbor2.dumps(w) for w in merged[key]}
            combined = list(merged[key])
            for witness in value:
                if cbor2.dumps(witness) not in seen:
                    combined.append(witness)
            merged[key] = combined
        else:
            merged[key] = value
    return cbor2.dumps(merged)


def assemble_transaction(unsigned_tx_hex: str, witness_set_hex: str) -> SignedTransaction:
    """
    Combine an unsigned transaction with a signer's witness set.

    Args:
        unsigned_tx_hex: Exact hex previously produced by the builder
        witness_set_hex: Witness set returned by the wallet's signTx

    Returns:
        SignedTransaction with the body and auxiliary data copied verbatim

    Raises:
        MalformedTransactionError: If either input fails to parse
    """
    parts = split_transaction(decode_hex(unsigned_tx_hex, "Unsigned transaction"))
    witness_bytes, witness = _parse_witness_set(decode_hex(witness_set_hex, "Witness set"))

    if parts.witness_set == EMPTY_WITNESS_SET:
        merged = witness_bytes
    else:
        existing = cbor2.loads(parts.witness_set)
        merged = _merge_witness_sets(existing, witness)

    tx_bytes = parts.serialize(witness_set=merged)
    tx_hash = transaction_hash(parts.body)

    logger.debug(
        f"Assembled transaction {tx_hash}: {len(tx_bytes)} bytes, "
        f"{len(witness.get(VKEY_WITNESSES, []))} vkey witness(es)"
    )
    return SignedTransaction(tx_bytes=tx_bytes, tx_hash=tx_hash)
