"""
Cardano and chainnotes protocol constants.

Minimum output value follows a fixed formula instead of the ledger's exact
per-output size computation:

    min_output = coins_per_utxo_byte * MIN_OUTPUT_FIXED_OVERHEAD + MIN_OUTPUT_BASE_RESERVE

With preview-network parameters (4310 lovelace/byte) this lands just under
2 ADA, the amount the notes application has always sent back to itself.
"""

from __future__ import annotations

# CIP-20 transaction message label. One canonical label for every note action.
NOTE_METADATA_LABEL = 674

# TTL horizon added to the chain tip slot (~33 minutes on preview)
TTL_SLOTS = 2000

# Ledger limit for a single metadata string, in bytes
METADATA_MAX_STRING_BYTES = 64

# Free-text truncation applied before the metadata is attached
TITLE_MAX_CHARS = 50
CONTENT_PREVIEW_MAX_CHARS = 60

# Min-output formula (see module docstring)
MIN_OUTPUT_FIXED_OVERHEAD = 228  # bytes
MIN_OUTPUT_BASE_RESERVE = 1_000_000  # lovelace

# Size of the placeholder witness used when estimating the fee:
# one vkey witness = 32-byte key + 64-byte signature
DUMMY_VKEY_SIZE = 32
DUMMY_SIGNATURE_SIZE = 64

LOVELACE_PER_ADA = 1_000_000

# Blockfrost API roots per network
BLOCKFROST_URLS: dict[str, str] = {
    "mainnet": "https://cardano-mainnet.blockfrost.io/api/v0",
    "preprod": "https://cardano-preprod.blockfrost.io/api/v0",
    "preview": "https://cardano-preview.blockfrost.io/api/v0",
}
