"""
Wallet bridge interface.

Mirrors the CIP-30 capability object a browser wallet extension injects:
``enable()`` yields a session exposing address discovery, balance, UTXOs,
signing and submission. The session is an explicit object with its own
lifecycle (connect -> use -> disconnect); nothing about the connection is
kept in module state.

Usage:
    async with bridge.enable() as session:
        address = await session.get_change_address()
        witness_set_hex = await session.sign_tx(unsigned_hex, partial=True)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType

import cbor2
from loguru import logger

from chainnotes.backends.base import UTXO


class WalletSessionError(Exception):
    """Raised when a session is used outside its connected lifetime."""


def decode_balance(balance_hex: str) -> int:
    """
    Decode a CIP-30 getBalance() result to lovelace.

    The wallet returns the CBOR encoding of a Value: either a bare unsigned
    integer or ``[coin, multiasset]``. Native assets are ignored.

    Raises:
        ValueError: If the hex is not a CBOR-encoded Value
    """
    try:
        value = cbor2.loads(bytes.fromhex(balance_hex))
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise ValueError(f"Invalid balance encoding: {balance_hex[:32]}") from e

    if isinstance(value, list) and value:
        value = value[0]
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError(f"Balance is not a lovelace amount: {value!r}")
    return value


def encode_balance(lovelace: int) -> str:
    return cbor2.dumps(lovelace).hex()


class WalletSession(ABC):
    """
    A connected wallet.

    Subclasses implement the ``_``-prefixed capability methods; the public
    wrappers enforce the session lifecycle.
    """

    def __init__(self, name: str = "wallet"):
        self.name = name
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        await self._connect()
        self._connected = True
        logger.debug(f"Wallet session '{self.name}' connected")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        await self._disconnect()
        logger.debug(f"Wallet session '{self.name}' disconnected")

    async def __aenter__(self) -> WalletSession:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    def _require_connected(self) -> None:
        if not self._connected:
            raise WalletSessionError(f"Wallet session '{self.name}' is not connected")

    async def get_change_address(self) -> str:
        self._require_connected()
        return await self._get_change_address()

    async def get_used_addresses(self) -> list[str]:
        self._require_connected()
        return await self._get_used_addresses()

    async def get_unused_addresses(self) -> list[str]:
        self._require_connected()
        return await self._get_unused_addresses()

    async def get_utxos(self) -> list[UTXO]:
        self._require_connected()
        return await self._get_utxos()

    async def get_balance(self) -> str:
        """CBOR hex of the wallet's total Value (see decode_balance)."""
        self._require_connected()
        return await self._get_balance()

    async def sign_tx(self, unsigned_tx_hex: str, partial: bool = True) -> str:
        """
        Ask the wallet to sign; returns the witness set as CBOR hex.

        May suspend for a long time while the user approves.

        Raises:
            SigningRejectedError: If the user declines or the wallet fails
        """
        self._require_connected()
        return await self._sign_tx(unsigned_tx_hex, partial)

    async def submit_tx(self, signed_tx_hex: str) -> str:
        self._require_connected()
        return await self._submit_tx(signed_tx_hex)

    async def _connect(self) -> None:
        """Hook run when the session opens"""

    async def _disconnect(self) -> None:
        """Hook run when the session closes"""

    @abstractmethod
    async def _get_change_address(self) -> str:
        """Address receiving change"""

    @abstractmethod
    async def _get_used_addresses(self) -> list[str]:
        """Addresses with on-chain history"""

    @abstractmethod
    async def _get_unused_addresses(self) -> list[str]:
        """Fresh addresses"""

    @abstractmethod
    async def _get_utxos(self) -> list[UTXO]:
        """UTXOs controlled by the wallet"""

    @abstractmethod
    async def _get_balance(self) -> str:
        """CBOR hex Value"""

    @abstractmethod
    async def _sign_tx(self, unsigned_tx_hex: str, partial: bool) -> str:
        """Witness set CBOR hex"""

    @abstractmethod
    async def _submit_tx(self, signed_tx_hex: str) -> str:
        """Transaction hash"""


class WalletBridge(ABC):
    """Entry point of a wallet extension: hands out sessions."""

    @abstractmethod
    def enable(self) -> WalletSession:
        """Create a session; connect it with ``async with`` or connect()"""
