"""
Simulated CIP-30 wallet.

Holds a real ed25519 payment key (via pycardano) and signs transaction
bodies exactly like a browser wallet would, returning a witness set. Chain
state comes from a SimulatedIndexer, so UTXOs and balances stay consistent
with what the simulated chain has accepted.
"""

from __future__ import annotations

import hashlib

import cbor2
from loguru import logger
from pycardano import Address, Network, PaymentSigningKey

from chainnotes.backends.base import UTXO
from chainnotes.backends.simulated import SimulatedIndexer
from chainnotes.errors import SigningRejectedError
from chainnotes.tx_assembler import VKEY_WITNESSES, decode_hex, split_transaction
from chainnotes.wallet.bridge import WalletBridge, WalletSession, encode_balance


class SimulatedWalletSession(WalletSession):
    def __init__(self, wallet: SimulatedWallet):
        super().__init__(name="simulated")
        self.wallet = wallet

    async def _get_change_address(self) -> str:
        return self.wallet.address

    async def _get_used_addresses(self) -> list[str]:
        utxos = await self.wallet.indexer.get_address_utxos(self.wallet.address)
        return [self.wallet.address] if utxos else []

    async def _get_unused_addresses(self) -> list[str]:
        used = await self._get_used_addresses()
        return [] if used else [self.wallet.address]

    async def _get_utxos(self) -> list[UTXO]:
        return await self.wallet.indexer.get_address_utxos(self.wallet.address)

    async def _get_balance(self) -> str:
        utxos = await self._get_utxos()
        return encode_balance(sum(u.lovelace for u in utxos))

    async def _sign_tx(self, unsigned_tx_hex: str, partial: bool) -> str:
        if self.wallet.reject_signing:
            logger.info("Simulated wallet: user declined to sign")
            raise SigningRejectedError("User declined to sign the transaction")

        parts = split_transaction(decode_hex(unsigned_tx_hex, "Unsigned transaction"))
        return self.wallet.witness_set_for(parts.body).hex()

    async def _submit_tx(self, signed_tx_hex: str) -> str:
        return await self.wallet.indexer.submit_transaction(bytes.fromhex(signed_tx_hex))


class SimulatedWallet(WalletBridge):
    """Single-address wallet on the testnet network."""

    def __init__(
        self,
        indexer: SimulatedIndexer,
        signing_key: PaymentSigningKey | None = None,
        network: Network = Network.TESTNET,
    ):
        self.indexer = indexer
        self.signing_key = signing_key or PaymentSigningKey.generate()
        self.verification_key = self.signing_key.to_verification_key()
        self.address = str(Address(payment_part=self.verification_key.hash(), network=network))
        self.reject_signing = False

    def witness_set_for(self, body: bytes) -> bytes:
        """Witness set with one vkey witness over the body hash."""
        body_hash = hashlib.blake2b(body, digest_size=32).digest()
        signature = self.signing_key.sign(body_hash)
        return cbor2.dumps({VKEY_WITNESSES: [[self.verification_key.payload, signature]]})

    def enable(self) -> SimulatedWalletSession:
        return SimulatedWalletSession(self)
