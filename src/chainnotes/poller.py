"""
Confirmation poller.

Every ``interval`` seconds, looks up the transaction of each pending note on
the chain indexer and flips the note to confirmed once the transaction is
found. "Not found" just means the transaction has not made it into a block
yet. Indexer errors are logged and the note is retried on the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from loguru import logger

from chainnotes.backends.base import ChainIndexer
from chainnotes.errors import ChainIndexerError
from chainnotes.models import Note, NoteStatus
from chainnotes.publisher import KeyedLock
from chainnotes.store import NoteStore


class ConfirmationPoller:
    def __init__(
        self,
        store: NoteStore,
        indexer: ChainIndexer,
        interval: float = 30.0,
        note_locks: KeyedLock | None = None,
        max_concurrency: int = 8,
    ):
        self.store = store
        self.indexer = indexer
        self.interval = interval
        # Shared with NotePublisher so proof writes and confirmations serialize
        self.note_locks = note_locks or KeyedLock()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._task: asyncio.Task[Any] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> list[Note]:
        """Check every pending note once. Returns the notes confirmed by this tick."""
        pending = self.store.list(status=NoteStatus.PENDING)
        if not pending:
            return []

        logger.debug(f"Checking {len(pending)} pending note(s)")
        results = await asyncio.gather(*(self._check(note) for note in pending))
        return [note for note in results if note is not None]

    async def _check(self, note: Note) -> Note | None:
        if not note.tx_hash:
            logger.warning(f"Pending note {note.id} has no transaction hash")
            return None

        async with self._semaphore:
            try:
                tx = await self.indexer.get_transaction(note.tx_hash)
            except ChainIndexerError as e:
                logger.warning(f"Could not check transaction {note.tx_hash}: {e}")
                return None
            except Exception as e:
                logger.error(f"Unexpected error checking transaction {note.tx_hash}: {e}")
                return None

        if tx is None:
            return None

        async with self.note_locks.hold(note.id):
            # The note may have been deleted or re-pointed while we were waiting
            current = self.store.get(note.id)
            if current is None or not current.is_pending or current.tx_hash != note.tx_hash:
                return None
            current.mark_confirmed()
            self.store.put(current)

        logger.info(f"Note {note.id} confirmed in block {tx.block_height} (tx {tx.tx_hash})")
        return current

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error polling for confirmations: {e}")

            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting confirmation poller (every {self.interval}s)")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Confirmation poller stopped")
