"""
chainnotes CLI using Typer.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer
from loguru import logger

from chainnotes.backends import SimulatedIndexer
from chainnotes.config import Settings, get_settings
from chainnotes.constants import LOVELACE_PER_ADA
from chainnotes.errors import ChainNotesError
from chainnotes.main import create_indexer, create_store, run_server, setup_logging
from chainnotes.models import Note, NoteAction
from chainnotes.poller import ConfirmationPoller
from chainnotes.publisher import NotePublisher
from chainnotes.store import MemoryNoteStore, new_note_id
from chainnotes.tx_builder import UnsignedTxBuilder
from chainnotes.wallet import SimulatedWallet, decode_balance

app = typer.Typer(
    name="chainnotes",
    help="Notes with on-chain proofs on Cardano",
    add_completion=False,
)


def run_async(coro):  # type: ignore[no-untyped-def]
    return asyncio.run(coro)


def _settings(**overrides: object) -> Settings:
    settings = get_settings()
    updates = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=updates) if updates else settings


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="HTTP bind host")] = None,
    port: Annotated[int | None, typer.Option(help="HTTP port")] = None,
    simulate: Annotated[
        bool | None,
        typer.Option("--simulate/--no-simulate", help="Use the in-process simulated chain"),
    ] = None,
    log_level: Annotated[str | None, typer.Option("--log-level", "-l")] = None,
) -> None:
    """Run the HTTP server and the confirmation poller."""
    settings = _settings(http_host=host, http_port=port, simulation=simulate, log_level=log_level)
    try:
        run_async(run_server(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


@app.command("poll-once")
def poll_once(
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """Check every pending note against the chain once and exit."""
    setup_logging(log_level)
    settings = get_settings()

    async def _run() -> int:
        indexer = create_indexer(settings)
        store = create_store(settings)
        try:
            confirmed = await ConfirmationPoller(store, indexer).poll_once()
        finally:
            await indexer.close()
            store.close()
        for note in confirmed:
            typer.echo(f"confirmed {note.id} {note.tx_hash}")
        return len(confirmed)

    try:
        count = run_async(_run())
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    logger.info(f"{count} note(s) confirmed")


@app.command()
def simulate(
    title: Annotated[str, typer.Option(help="Note title")] = "Hello",
    content: Annotated[str, typer.Option(help="Note content")] = "Hello from chainnotes",
    fund: Annotated[int, typer.Option(help="Lovelace to fund the wallet with")] = 5_000_000,
    reject: Annotated[bool, typer.Option(help="Make the wallet decline to sign")] = False,
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """
    Publish one note end to end against the simulated chain.

    Creates a note, builds and signs its transaction with a simulated wallet,
    submits it, mints a block and runs one confirmation tick.
    """
    setup_logging(log_level)
    settings = get_settings()

    async def _run() -> Note:
        indexer = SimulatedIndexer()
        wallet = SimulatedWallet(indexer)
        wallet.reject_signing = reject
        if fund > 0:
            indexer.fund(wallet.address, fund)

        store = MemoryNoteStore()
        note = Note(id=new_note_id(), title=title, content=content)
        store.put(note)

        builder = UnsignedTxBuilder(
            indexer,
            metadata_label=settings.metadata_label,
            ttl_slots=settings.ttl_slots,
            min_output_fixed_overhead=settings.min_output_fixed_overhead,
            min_output_base_reserve=settings.min_output_base_reserve,
        )
        publisher = NotePublisher(store, indexer, builder)
        poller = ConfirmationPoller(store, indexer, note_locks=publisher.note_locks)

        async with wallet.enable() as session:
            note = await publisher.publish(session, note.id, NoteAction.CREATE)
        logger.info(f"Note {note.id} is {note.status.value if note.status else 'unsent'}")

        indexer.mint_block()
        await poller.poll_once()
        return store.get(note.id) or note

    try:
        note = run_async(_run())
    except ChainNotesError as e:
        logger.error(f"{e.code}: {e}")
        raise typer.Exit(1)
    typer.echo(json.dumps(note.to_api(), indent=2))


@app.command()
def balance(
    fund: Annotated[int, typer.Option(help="Lovelace to fund the wallet with")] = 5_000_000,
    utxos: Annotated[int, typer.Option(help="Number of UTXOs to split the funds into")] = 1,
) -> None:
    """Show a simulated wallet's address and decoded balance."""

    async def _run() -> tuple[str, int]:
        indexer = SimulatedIndexer()
        wallet = SimulatedWallet(indexer)
        for _ in range(utxos):
            indexer.fund(wallet.address, fund // utxos)
        async with wallet.enable() as session:
            address = await session.get_change_address()
            return address, decode_balance(await session.get_balance())

    if utxos < 1:
        raise typer.BadParameter("--utxos must be at least 1")
    address, lovelace = run_async(_run())
    typer.echo(f"Address: {address}")
    typer.echo(f"Balance: {lovelace / LOVELACE_PER_ADA:.6f} ADA ({lovelace} lovelace)")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
