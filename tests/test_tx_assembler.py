"""
Tests for the transaction assembler.
"""

from __future__ import annotations

import hashlib

import cbor2
import pytest

from chainnotes.backends import UTXO, ChainTip, ProtocolParameters
from chainnotes.constants import NOTE_METADATA_LABEL
from chainnotes.errors import MalformedTransactionError
from chainnotes.models import Note, NoteAction, NoteMetadata
from chainnotes.tx_assembler import (
    assemble_transaction,
    decode_hex,
    input_refs,
    split_transaction,
    transaction_hash,
)
from chainnotes.tx_builder import build_unsigned_tx
from chainnotes.wallet import SimulatedWallet

# Body with a TTL encoded as an 8-byte integer: valid CBOR, but any
# decode/re-encode round trip would shrink it and change the hash.
NON_CANONICAL_BODY = (
    b"\xa4"
    + cbor2.dumps(0)
    + cbor2.dumps([[bytes(32), 0]])
    + cbor2.dumps(1)
    + cbor2.dumps([[b"\x60" + bytes(28), 2_000_000]])
    + cbor2.dumps(2)
    + cbor2.dumps(170_000)
    + cbor2.dumps(3)
    + b"\x1b"
    + (1000).to_bytes(8, "big")
)
AUX_DATA = cbor2.dumps({NOTE_METADATA_LABEL: {"msg": ["hello"]}})
VKEY_WITNESS = [bytes(range(32)), bytes(64)]


def _unsigned(body: bytes = NON_CANONICAL_BODY, witness_set: bytes = b"\xa0") -> bytes:
    return b"\x84" + body + witness_set + b"\xf5" + AUX_DATA


def _witness_set(*witnesses: list[bytes]) -> str:
    return cbor2.dumps({0: list(witnesses)}).hex()


class TestSplitTransaction:
    def test_split_alonzo_layout(self) -> None:
        parts = split_transaction(_unsigned())
        assert parts.body == NON_CANONICAL_BODY
        assert parts.witness_set == b"\xa0"
        assert parts.is_valid == b"\xf5"
        assert parts.auxiliary_data == AUX_DATA

    def test_split_shelley_layout(self) -> None:
        """Three-element transactions (no is_valid flag) are accepted."""
        tx = b"\x83" + NON_CANONICAL_BODY + b"\xa0" + AUX_DATA
        parts = split_transaction(tx)
        assert parts.is_valid is None
        assert parts.serialize() == tx

    def test_serialize_round_trips_exact_bytes(self) -> None:
        tx = _unsigned()
        assert split_transaction(tx).serialize() == tx

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\xa0",  # a map, not an array
            b"\x82\xa0\xa0",  # wrong arity
            _unsigned()[:-3],  # truncated
            _unsigned() + b"\x00",  # trailing bytes
            b"\x84\x01\xa0\xf5\xf6",  # body is not a map
            b"\x84\xa0\x01\xf5\xf6",  # witness set is not a map
            b"\x84" + b"\x81" * 20000 + b"\x00\xa0\xf5\xf6",  # nested too deep
            b"\x84\xa0\xa0\xf5\x61\xff",  # invalid UTF-8 text
        ],
    )
    def test_malformed(self, data: bytes) -> None:
        with pytest.raises(MalformedTransactionError):
            split_transaction(data)


class TestInputRefs:
    def test_refs_of_body(self) -> None:
        assert input_refs(NON_CANONICAL_BODY) == ["00" * 32 + "#0"]

    def test_set_tagged_inputs(self) -> None:
        body = cbor2.dumps({0: cbor2.CBORTag(258, [[b"\xab" * 32, 1]])})
        assert input_refs(body) == ["ab" * 32 + "#1"]

    def test_body_without_inputs(self) -> None:
        assert input_refs(b"\xa0") == []

    def test_malformed_inputs(self) -> None:
        with pytest.raises(MalformedTransactionError):
            input_refs(cbor2.dumps({0: [1, 2]}))


class TestDecodeHex:
    def test_invalid_hex(self) -> None:
        with pytest.raises(MalformedTransactionError, match="not valid hex"):
            decode_hex("zz", "Witness set")

    def test_empty(self) -> None:
        with pytest.raises(MalformedTransactionError, match="empty"):
            decode_hex("", "Witness set")

    def test_strips_whitespace(self) -> None:
        assert decode_hex(" a0\n", "Witness set") == b"\xa0"


class TestAssembleTransaction:
    def test_body_bytes_preserved(self) -> None:
        """The body is copied verbatim, so the hash the wallet signed still holds."""
        signed = assemble_transaction(_unsigned().hex(), _witness_set(VKEY_WITNESS))

        parts = split_transaction(signed.tx_bytes)
        assert parts.body == NON_CANONICAL_BODY
        assert signed.tx_hash == hashlib.blake2b(NON_CANONICAL_BODY, digest_size=32).hexdigest()

    def test_auxiliary_data_preserved(self) -> None:
        signed = assemble_transaction(_unsigned().hex(), _witness_set(VKEY_WITNESS))
        parts = split_transaction(signed.tx_bytes)
        assert parts.auxiliary_data == AUX_DATA
        assert parts.is_valid == b"\xf5"

    def test_witness_set_used_verbatim(self) -> None:
        witness_hex = _witness_set(VKEY_WITNESS)
        signed = assemble_transaction(_unsigned().hex(), witness_hex)
        assert split_transaction(signed.tx_bytes).witness_set == bytes.fromhex(witness_hex)

    def test_full_transaction_from_wallet(self) -> None:
        """A wallet returning a whole signed tx only contributes its witness set."""
        witness = bytes.fromhex(_witness_set(VKEY_WITNESS))
        other_body = cbor2.dumps({0: [], 1: [], 2: 0})
        wallet_tx = b"\x84" + other_body + witness + b"\xf5\xf6"

        signed = assemble_transaction(_unsigned().hex(), wallet_tx.hex())
        parts = split_transaction(signed.tx_bytes)
        assert parts.body == NON_CANONICAL_BODY
        assert parts.witness_set == witness

    def test_merges_with_existing_witnesses(self) -> None:
        other = [bytes([7] * 32), bytes([9] * 64)]
        unsigned = _unsigned(witness_set=cbor2.dumps({0: [other]}))

        signed = assemble_transaction(
            unsigned.hex(), _witness_set(VKEY_WITNESS, other)
        )
        witness = cbor2.loads(split_transaction(signed.tx_bytes).witness_set)
        assert len(witness[0]) == 2

    @pytest.mark.parametrize(
        "unsigned_hex, witness_hex",
        [
            ("zz", "a0"),
            ("", "a0"),
            ("82a0a0", "a0"),
            (_unsigned().hex()[:-6], "a0"),
            (_unsigned().hex(), "zz"),
            (_unsigned().hex(), ""),
            (_unsigned().hex(), "01"),  # not a map
            (_unsigned().hex(), "a1005820"),  # truncated
            (_unsigned().hex(), "a0a0"),  # trailing bytes
            (_unsigned().hex(), "a100" + "81" * 20000 + "00"),  # nested too deep
        ],
    )
    def test_malformed_inputs(self, unsigned_hex: str, witness_hex: str) -> None:
        """Any parse failure raises and produces no output."""
        with pytest.raises(MalformedTransactionError):
            assemble_transaction(unsigned_hex, witness_hex)


class TestCreateNoteScenario:
    @pytest.mark.asyncio
    async def test_builder_then_assembler(
        self,
        params: ProtocolParameters,
        tip: ChainTip,
        indexer,
        sample_note: Note,
    ) -> None:
        """5 ADA UTXO, title "Hello", CREATE_NOTE: the signed tx carries the payload."""
        wallet = SimulatedWallet(indexer)
        utxo = UTXO(tx_hash="ab" * 32, output_index=0, lovelace=5_000_000)
        metadata = NoteMetadata.for_note(sample_note, NoteAction.CREATE)

        unsigned = build_unsigned_tx(params, tip.slot, wallet.address, [utxo], metadata)
        assert unsigned.cbor_hex

        async with wallet.enable() as session:
            witness_hex = await session.sign_tx(unsigned.cbor_hex, partial=True)

        signed = assemble_transaction(unsigned.cbor_hex, witness_hex)
        assert signed.tx_hash == unsigned.tx_hash

        tx = cbor2.loads(signed.tx_bytes)
        aux = tx[3]
        metadata_map = aux.value[0] if isinstance(aux, cbor2.CBORTag) else aux
        payload = metadata_map[NOTE_METADATA_LABEL]
        assert payload["action"] == "CREATE_NOTE"
        assert payload["title"] == "Hello"
        assert len(tx[1][0]) == 1

    def test_transaction_hash(self) -> None:
        assert transaction_hash(b"\xa0") == hashlib.blake2b(b"\xa0", digest_size=32).hexdigest()
