"""
Main entry point for the notes server.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from typing import Any

from loguru import logger

from chainnotes.backends import BlockfrostIndexer, ChainIndexer, SimulatedIndexer
from chainnotes.config import Settings, get_settings
from chainnotes.poller import ConfirmationPoller
from chainnotes.publisher import NotePublisher
from chainnotes.server import NotesServer
from chainnotes.store import NoteStore, SqliteNoteStore
from chainnotes.tx_builder import UnsignedTxBuilder


def setup_logging(level: str) -> None:
    logger.remove()

    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def create_indexer(settings: Settings) -> ChainIndexer:
    if settings.simulation:
        return SimulatedIndexer()
    if not settings.blockfrost_project_id:
        raise ValueError("BLOCKFROST_PROJECT_ID is required unless SIMULATION=true is set")
    return BlockfrostIndexer(
        base_url=settings.get_blockfrost_url(),
        project_id=settings.blockfrost_project_id,
        timeout=settings.request_timeout,
    )


def create_store(settings: Settings) -> NoteStore:
    return SqliteNoteStore(settings.database_path)


def create_server(settings: Settings) -> NotesServer:
    indexer = create_indexer(settings)
    store = create_store(settings)
    builder = UnsignedTxBuilder(
        indexer,
        metadata_label=settings.metadata_label,
        ttl_slots=settings.ttl_slots,
        min_output_fixed_overhead=settings.min_output_fixed_overhead,
        min_output_base_reserve=settings.min_output_base_reserve,
    )
    publisher = NotePublisher(store, indexer, builder)
    poller = ConfirmationPoller(
        store, indexer, interval=settings.poll_interval, note_locks=publisher.note_locks
    )
    return NotesServer(settings, store, indexer, publisher=publisher, poller=poller)


async def run_server(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    logger.info("Starting chainnotes server")
    logger.info(f"Network: {settings.network}")
    logger.info(f"HTTP server: {settings.http_host}:{settings.http_port}")
    logger.info(f"Poll interval: {settings.poll_interval}s")
    if settings.simulation:
        logger.warning("Simulation mode: transactions never leave this process")
    else:
        logger.info(f"Blockfrost API: {settings.get_blockfrost_url()}")

    try:
        server = create_server(settings)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    block_task: asyncio.Task[Any] | None = None
    if isinstance(server.indexer, SimulatedIndexer):
        block_task = asyncio.create_task(
            server.indexer.produce_blocks(settings.simulation_block_interval)
        )

    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("Received shutdown signal")
        asyncio.create_task(server.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler)

    try:
        await server.start()

        while server.site is not None:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        logger.info("Server cancelled")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise
    finally:
        if block_task:
            block_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await block_task
        await server.stop()


def main() -> None:
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
