"""
In-process chain indexer for simulation mode.

Keeps a UTXO set, a mempool and a chain of "blocks" in memory and applies
submitted transactions to them the way the ledger would: inputs must be
unspent, the TTL must not have passed and at least one vkey witness must be
present. Submitted transactions show up in get_transaction() only after
mint_block().
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field

import cbor2
from loguru import logger
from pycardano import Address

from chainnotes.backends.base import (
    UTXO,
    ChainIndexer,
    ChainTip,
    ChainTransaction,
    ProtocolParameters,
)
from chainnotes.errors import MalformedTransactionError, SubmissionError
from chainnotes.tx_assembler import split_transaction, transaction_hash

# Preview network parameters at the time of writing
PREVIEW_PARAMETERS = ProtocolParameters(
    min_fee_a=44,
    min_fee_b=155381,
    max_tx_size=16384,
    max_val_size=5000,
    key_deposit=2_000_000,
    pool_deposit=500_000_000,
    coins_per_utxo_byte=4310,
)

# Transaction body keys
BODY_INPUTS = 0
BODY_OUTPUTS = 1
BODY_TTL = 3

# Witness set key holding vkey witnesses
VKEY_WITNESSES = 0


def normalize_address(address: str | bytes) -> str:
    """Bech32 form of an address given as bech32, hex or raw bytes."""
    if isinstance(address, str) and not address.startswith(("addr", "stake")):
        address = bytes.fromhex(address)
    return str(Address.from_primitive(address))


def _output_fields(output: object) -> tuple[bytes, int]:
    """(address bytes, lovelace) of a legacy-array or post-Alonzo map output."""
    address, amount = output[0], output[1]  # type: ignore[index]
    if isinstance(amount, (list, tuple)):
        amount = amount[0]
    return address, int(amount)


@dataclass
class SimulatedIndexer(ChainIndexer):
    """Fake indexer; also the chain state a SimulatedWallet reads from."""

    parameters: ProtocolParameters = field(default_factory=lambda: PREVIEW_PARAMETERS)
    slot: int = 50_000_000
    height: int = 2_500_000
    slots_per_block: int = 20
    utxos: dict[str, list[UTXO]] = field(default_factory=dict)
    mempool: dict[str, bytes] = field(default_factory=dict)
    transactions: dict[str, ChainTransaction] = field(default_factory=dict)
    submitted: list[str] = field(default_factory=list)

    def fund(self, address: str, lovelace: int) -> UTXO:
        """Create a UTXO out of thin air (a faucet)."""
        address = normalize_address(address)
        utxo = UTXO(
            tx_hash=secrets.token_hex(32), output_index=0, lovelace=lovelace, address=address
        )
        self.utxos.setdefault(address, []).append(utxo)
        logger.debug(f"Funded {address[:20]}... with {lovelace} lovelace")
        return utxo

    async def produce_blocks(self, interval: float) -> None:
        """Mint a block every `interval` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.mint_block()
            except Exception as e:
                logger.error(f"Error minting simulated block: {e}")

    def mint_block(self) -> list[str]:
        """Advance the tip by one block and confirm everything in the mempool."""
        self.slot += self.slots_per_block
        self.height += 1
        confirmed = list(self.mempool)
        for tx_hash in confirmed:
            self.transactions[tx_hash] = ChainTransaction(
                tx_hash=tx_hash, block_height=self.height, slot=self.slot
            )
        self.mempool.clear()
        if confirmed:
            logger.debug(f"Block {self.height} confirmed {len(confirmed)} transaction(s)")
        return confirmed

    async def get_latest_epoch_parameters(self) -> ProtocolParameters:
        return self.parameters

    async def get_address_utxos(self, address: str) -> list[UTXO]:
        return list(self.utxos.get(normalize_address(address), []))

    async def get_latest_block(self) -> ChainTip:
        return ChainTip(slot=self.slot, height=self.height)

    async def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        return self.transactions.get(tx_hash)

    async def submit_transaction(self, signed_tx: bytes) -> str:
        try:
            parts = split_transaction(signed_tx)
        except MalformedTransactionError as e:
            raise SubmissionError(f"DeserialiseFailure: {e}") from e

        body = cbor2.loads(parts.body)
        witness_set = cbor2.loads(parts.witness_set)
        tx_hash = transaction_hash(parts.body)

        if not witness_set.get(VKEY_WITNESSES):
            raise SubmissionError("MissingVKeyWitnessesUTXOW")

        ttl = body.get(BODY_TTL)
        if ttl is not None and ttl <= self.slot:
            raise SubmissionError(f"OutsideValidityIntervalUTxO: ttl {ttl} <= slot {self.slot}")

        spent: list[tuple[str, UTXO]] = []
        for tx_id, index in body[BODY_INPUTS]:
            ref = (tx_id.hex(), index)
            match = None
            for address, entries in self.utxos.items():
                for utxo in entries:
                    if (utxo.tx_hash, utxo.output_index) == ref:
                        match = (address, utxo)
            if match is None:
                raise SubmissionError(f"BadInputsUTxO: {ref[0]}#{ref[1]}")
            spent.append(match)

        for address, utxo in spent:
            self.utxos[address].remove(utxo)

        for index, output in enumerate(body[BODY_OUTPUTS]):
            address_bytes, lovelace = _output_fields(output)
            address = normalize_address(address_bytes)
            self.utxos.setdefault(address, []).append(
                UTXO(tx_hash=tx_hash, output_index=index, lovelace=lovelace, address=address)
            )

        self.mempool[tx_hash] = signed_tx
        self.submitted.append(tx_hash)
        logger.info(f"Simulated submission accepted: {tx_hash}")
        return tx_hash
