"""
Chain indexer implementations.

Available indexers:
- BlockfrostIndexer: Blockfrost REST API (preview/preprod/mainnet)
- SimulatedIndexer: in-process fake used for simulation mode and tests
"""

from chainnotes.backends.base import (
    UTXO,
    ChainIndexer,
    ChainTip,
    ChainTransaction,
    ProtocolParameters,
)
from chainnotes.backends.blockfrost import BlockfrostIndexer
from chainnotes.backends.simulated import SimulatedIndexer

__all__ = [
    "BlockfrostIndexer",
    "ChainIndexer",
    "ChainTip",
    "ChainTransaction",
    "ProtocolParameters",
    "SimulatedIndexer",
    "UTXO",
]
