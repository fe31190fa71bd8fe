"""
Blockfrost chain indexer.

Thin async client over the Blockfrost REST API. Used for protocol
parameters, address UTXOs, the chain tip, transaction lookups and
submission of signed transactions.

Reference: https://docs.blockfrost.io/
"""

from __future__ import annotations

import os
from typing import Any

import httpx
from loguru import logger

from chainnotes.backends.base import (
    UTXO,
    ChainIndexer,
    ChainTip,
    ChainTransaction,
    ProtocolParameters,
)
from chainnotes.errors import ChainIndexerError, ParameterFetchError, SubmissionError

# Timeout for regular API calls (seconds)
DEFAULT_TIMEOUT = 30.0

# Blockfrost paginates list endpoints at 100 items
PAGE_SIZE = 100

# Upper bound on UTXO pages fetched for a single address
MAX_UTXO_PAGES = 20

# Environment variable to enable sensitive logging (addresses, raw CBOR)
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


def _error_message(response: httpx.Response) -> str:
    """Extract Blockfrost's error message, falling back to the raw body."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)


def _lovelace(amount: list[dict[str, Any]]) -> int:
    for entry in amount:
        if entry.get("unit") == "lovelace":
            return int(entry.get("quantity", 0))
    return 0


class BlockfrostIndexer(ChainIndexer):
    """
    Chain indexer backed by Blockfrost.

    Every method issues fresh requests; nothing is cached between calls.
    """

    def __init__(
        self,
        base_url: str,
        project_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"project_id": project_id},
            timeout=timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """
        Make an API call to Blockfrost.

        Returns:
            Decoded JSON body, or None on 404 when allow_not_found is set

        Raises:
            ChainIndexerError: On connection errors and non-2xx responses
        """
        try:
            response = await self.client.request(
                method, endpoint, params=params, content=content, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Blockfrost call failed: {method} {endpoint} - {e}")
            raise ChainIndexerError(f"Indexer unreachable: {e}") from e

        if response.status_code == 404 and allow_not_found:
            return None

        if response.is_error:
            message = _error_message(response)
            logger.error(
                f"Blockfrost call failed: {method} {endpoint} - "
                f"HTTP {response.status_code}: {message}"
            )
            raise ChainIndexerError(f"HTTP {response.status_code}: {message}")

        try:
            return response.json()
        except ValueError as e:
            raise ChainIndexerError(f"Invalid JSON from {endpoint}: {e}") from e

    async def get_latest_epoch_parameters(self) -> ProtocolParameters:
        try:
            data = await self._request("GET", "/epochs/latest/parameters")
        except ChainIndexerError as e:
            raise ParameterFetchError(f"Protocol parameters unavailable: {e}") from e

        try:
            coins_per_byte = data.get("coins_per_utxo_size") or data["coins_per_utxo_word"]
            params = ProtocolParameters(
                min_fee_a=int(data["min_fee_a"]),
                min_fee_b=int(data["min_fee_b"]),
                max_tx_size=int(data["max_tx_size"]),
                max_val_size=int(data["max_val_size"]),
                key_deposit=int(data["key_deposit"]),
                pool_deposit=int(data["pool_deposit"]),
                coins_per_utxo_byte=int(coins_per_byte),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ParameterFetchError(f"Malformed protocol parameters: {e}") from e

        logger.debug(
            f"Protocol parameters: fee={params.min_fee_a}*size+{params.min_fee_b}, "
            f"coins_per_utxo_byte={params.coins_per_utxo_byte}, max_tx_size={params.max_tx_size}"
        )
        return params

    async def get_address_utxos(self, address: str) -> list[UTXO]:
        utxos: list[UTXO] = []
        for page in range(1, MAX_UTXO_PAGES + 1):
            data = await self._request(
                "GET",
                f"/addresses/{address}/utxos",
                params={"page": page, "count": PAGE_SIZE, "order": "asc"},
                allow_not_found=True,
            )
            # 404 means the address has never been used
            if not data:
                break

            for entry in data:
                utxos.append(
                    UTXO(
                        tx_hash=entry["tx_hash"],
                        output_index=int(entry["output_index"]),
                        lovelace=_lovelace(entry.get("amount", [])),
                        address=entry.get("address", address),
                    )
                )

            if len(data) < PAGE_SIZE:
                break

        if SENSITIVE_LOGGING:
            logger.debug(f"UTXOs for {address}: {[u.ref for u in utxos]}")
        logger.debug(f"Found {len(utxos)} UTXOs for address")
        return utxos

    async def get_latest_block(self) -> ChainTip:
        try:
            data = await self._request("GET", "/blocks/latest")
            tip = ChainTip(
                slot=int(data["slot"]), height=data.get("height"), block_hash=data.get("hash")
            )
        except ChainIndexerError as e:
            raise ParameterFetchError(f"Chain tip unavailable: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise ParameterFetchError(f"Malformed chain tip: {e}") from e

        logger.debug(f"Chain tip: slot {tip.slot}, height {tip.height}")
        return tip

    async def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        data = await self._request("GET", f"/txs/{tx_hash}", allow_not_found=True)
        if data is None:
            return None

        return ChainTransaction(
            tx_hash=data.get("hash", tx_hash),
            block_height=data.get("block_height"),
            block_time=data.get("block_time"),
            slot=data.get("slot"),
        )

    async def submit_transaction(self, signed_tx: bytes) -> str:
        if SENSITIVE_LOGGING:
            logger.debug(f"Submitting transaction CBOR: {signed_tx.hex()}")

        try:
            tx_hash = await self._request(
                "POST",
                "/tx/submit",
                content=signed_tx,
                headers={"Content-Type": "application/cbor"},
            )
        except ChainIndexerError as e:
            raise SubmissionError(str(e)) from e

        if not isinstance(tx_hash, str):
            raise SubmissionError(f"Unexpected submit response: {tx_hash!r}")

        logger.info(f"Submitted transaction: {tx_hash}")
        return tx_hash

    async def close(self) -> None:
        await self.client.aclose()
