"""
Pytest configuration and fixtures for chainnotes tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pycardano import Address, Network, PaymentSigningKey

from chainnotes.backends import UTXO, ChainTip, ProtocolParameters, SimulatedIndexer
from chainnotes.backends.simulated import PREVIEW_PARAMETERS
from chainnotes.models import Note
from chainnotes.store import MemoryNoteStore
from chainnotes.wallet import SimulatedWallet

TEST_SIGNING_KEY = PaymentSigningKey(bytes(range(32)))

# Testnet enterprise address of TEST_SIGNING_KEY
TEST_ADDRESS = str(
    Address(payment_part=TEST_SIGNING_KEY.to_verification_key().hash(), network=Network.TESTNET)
)


@pytest.fixture
def params() -> ProtocolParameters:
    """Preview protocol parameters"""
    return PREVIEW_PARAMETERS


@pytest.fixture
def tip() -> ChainTip:
    return ChainTip(slot=50_000_000, height=2_500_000)


@pytest.fixture
def sender_address() -> str:
    return TEST_ADDRESS


@pytest.fixture
def funded_utxo() -> UTXO:
    """A 5 ADA UTXO"""
    return UTXO(tx_hash="ab" * 32, output_index=0, lovelace=5_000_000, address=TEST_ADDRESS)


@pytest.fixture
def indexer() -> SimulatedIndexer:
    return SimulatedIndexer()


@pytest.fixture
def wallet(indexer: SimulatedIndexer) -> SimulatedWallet:
    """Simulated wallet funded with 10 ADA"""
    wallet = SimulatedWallet(indexer)
    indexer.fund(wallet.address, 10_000_000)
    return wallet


@pytest.fixture
def store() -> MemoryNoteStore:
    return MemoryNoteStore()


@pytest.fixture
def sample_note() -> Note:
    created = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
    return Note(
        id="note-1",
        title="Hello",
        content="My first note on chain",
        created_at=created,
        updated_at=created,
    )


@pytest.fixture
def stored_note(store: MemoryNoteStore, sample_note: Note) -> Note:
    store.put(sample_note)
    return sample_note
