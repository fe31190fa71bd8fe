"""
Base chain indexer interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class UTXO:
    tx_hash: str
    output_index: int
    lovelace: int
    address: str = ""

    @property
    def ref(self) -> str:
        return f"{self.tx_hash}#{self.output_index}"


@dataclass
class ProtocolParameters:
    """Subset of the epoch protocol parameters used to build transactions."""

    min_fee_a: int
    min_fee_b: int
    max_tx_size: int
    max_val_size: int
    key_deposit: int
    pool_deposit: int
    coins_per_utxo_byte: int


@dataclass
class ChainTip:
    slot: int
    height: int | None = None
    block_hash: str | None = None


@dataclass
class ChainTransaction:
    tx_hash: str
    block_height: int | None = None
    block_time: int | None = None
    slot: int | None = None


class ChainIndexer(ABC):
    """
    Abstract chain indexer interface.

    Implementations wrap a block-explorer style API. Nothing is cached:
    every call reads fresh chain state.
    """

    @abstractmethod
    async def get_latest_epoch_parameters(self) -> ProtocolParameters:
        """Get protocol parameters of the current epoch"""

    @abstractmethod
    async def get_address_utxos(self, address: str) -> list[UTXO]:
        """Get UTXOs held by an address, in indexer order"""

    @abstractmethod
    async def get_latest_block(self) -> ChainTip:
        """Get the current chain tip"""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        """Get an on-chain transaction. Returns None if not (yet) on chain.
        Network and protocol failures raise ChainIndexerError instead."""

    @abstractmethod
    async def submit_transaction(self, signed_tx: bytes) -> str:
        """Submit a signed transaction, returns its hash"""

    async def close(self) -> None:
        """Close indexer connection"""
        pass
