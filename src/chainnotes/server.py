"""
HTTP server for notes and their on-chain proofs.

Routes:
    GET    /health
    GET    /api/notes                 ?status=pending|confirmed
    GET    /api/notes/{note_id}
    POST   /api/notes                 {title, content, walletAddress?}
    PUT    /api/notes/{note_id}       {title, content}
    DELETE /api/notes/{note_id}
    POST   /buildUnsignedTx           {noteId, walletAddress, hash?, action?}
    POST   /submitTx                  {signedTxHex, noteId?, walletAddress?}
    POST   /attachOnChainProof        {noteId, txHash}

Errors are returned as ``{"error": code, "message": text}``.
"""

from __future__ import annotations

import contextlib
import json
from typing import Any

from aiohttp import web
from aiohttp_middlewares import cors_middleware
from loguru import logger
from pydantic import BaseModel, ValidationError

from chainnotes.backends.base import ChainIndexer
from chainnotes.config import Settings
from chainnotes.errors import (
    ChainIndexerError,
    ChainNotesError,
    MalformedTransactionError,
    NoSpendableInputError,
    NoteNotFoundError,
    ParameterFetchError,
    ProofConflictError,
    SigningRejectedError,
    SubmissionError,
)
from chainnotes.models import (
    AttachProofRequest,
    BuildTxRequest,
    Note,
    NoteCreateRequest,
    NoteStatus,
    NoteUpdateRequest,
    SubmitTxRequest,
    utcnow,
)
from chainnotes.poller import ConfirmationPoller
from chainnotes.publisher import NotePublisher
from chainnotes.store import NoteStore, new_note_id

ERROR_STATUS: dict[type[ChainNotesError], int] = {
    NoSpendableInputError: 400,
    MalformedTransactionError: 400,
    SigningRejectedError: 400,
    # Rejected by the ledger (double spend, expired TTL): the caller rebuilds
    SubmissionError: 400,
    NoteNotFoundError: 404,
    ProofConflictError: 409,
    ParameterFetchError: 502,
    ChainIndexerError: 502,
}


def error_status(error: ChainNotesError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def _error_response(code: str, message: str, status: int) -> web.Response:
    return web.json_response({"error": code, "message": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except ChainNotesError as e:
        status = error_status(e)
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
        else:
            logger.info(f"{request.method} {request.path} rejected ({e.code}): {e}")
        return web.json_response(e.to_dict(), status=status)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        return _error_response("invalid_request", errors, 400)


async def _read_model(request: web.Request, model: type[BaseModel]) -> Any:
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "invalid_request", "message": f"Invalid JSON: {e}"}),
            content_type="application/json",
        ) from e
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "invalid_request", "message": "Expected a JSON object"}),
            content_type="application/json",
        )
    return model.model_validate(data)


class NotesServer:
    def __init__(
        self,
        settings: Settings,
        store: NoteStore,
        indexer: ChainIndexer,
        publisher: NotePublisher | None = None,
        poller: ConfirmationPoller | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.indexer = indexer
        self.publisher = publisher or NotePublisher(store, indexer)
        self.poller = poller or ConfirmationPoller(
            store,
            indexer,
            interval=settings.poll_interval,
            note_locks=self.publisher.note_locks,
        )
        self.app = self._create_app()
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._stopping = False

    def _create_app(self) -> web.Application:
        if self.settings.cors_origin == "*":
            cors = cors_middleware(allow_all=True)
        else:
            origins = [o.strip() for o in self.settings.cors_origin.split(",") if o.strip()]
            cors = cors_middleware(origins=origins)

        app = web.Application(middlewares=[cors, error_middleware])
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/api/notes", self._handle_list_notes)
        app.router.add_get("/api/notes/{note_id}", self._handle_get_note)
        app.router.add_post("/api/notes", self._handle_create_note)
        app.router.add_put("/api/notes/{note_id}", self._handle_update_note)
        app.router.add_delete("/api/notes/{note_id}", self._handle_delete_note)
        app.router.add_post("/buildUnsignedTx", self._handle_build_unsigned_tx)
        app.router.add_post("/submitTx", self._handle_submit_tx)
        app.router.add_post("/attachOnChainProof", self._handle_attach_proof)
        return app

    def _require_note(self, note_id: str) -> Note:
        note = self.store.get(note_id)
        if note is None:
            raise NoteNotFoundError(f"Note {note_id} not found")
        return note

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "notes": len(self.store.list()),
                "pending": len(self.store.list(status=NoteStatus.PENDING)),
            }
        )

    async def _handle_list_notes(self, request: web.Request) -> web.Response:
        status = request.query.get("status")
        try:
            status_filter = NoteStatus(status) if status else None
        except ValueError:
            return _error_response("invalid_request", f"Unknown status: {status}", 400)
        notes = self.store.list(status=status_filter)
        return web.json_response([note.to_api() for note in notes])

    async def _handle_get_note(self, request: web.Request) -> web.Response:
        note = self._require_note(request.match_info["note_id"])
        return web.json_response(note.to_api())

    async def _handle_create_note(self, request: web.Request) -> web.Response:
        body: NoteCreateRequest = await _read_model(request, NoteCreateRequest)
        now = utcnow()
        note = Note(
            id=new_note_id(),
            title=body.title,
            content=body.content,
            created_at=now,
            updated_at=now,
            wallet_address=body.wallet_address,
        )
        self.store.put(note)
        logger.info(f"Created note {note.id}")
        return web.json_response(note.to_api(), status=201)

    async def _handle_update_note(self, request: web.Request) -> web.Response:
        note_id = request.match_info["note_id"]
        body: NoteUpdateRequest = await _read_model(request, NoteUpdateRequest)
        async with self.publisher.note_locks.hold(note_id):
            note = self._require_note(note_id)
            note.edit(body.title, body.content)
            self.store.put(note)
        logger.info(f"Updated note {note_id}")
        return web.json_response(note.to_api())

    async def _handle_delete_note(self, request: web.Request) -> web.Response:
        note_id = request.match_info["note_id"]
        async with self.publisher.note_locks.hold(note_id):
            if not self.store.delete(note_id):
                raise NoteNotFoundError(f"Note {note_id} not found")
        logger.info(f"Deleted note {note_id}")
        return web.json_response({"success": True})

    async def _handle_build_unsigned_tx(self, request: web.Request) -> web.Response:
        body: BuildTxRequest = await _read_model(request, BuildTxRequest)
        unsigned = await self.publisher.build_for_note(
            body.note_id,
            body.wallet_address,
            action=body.action,
            note_hash=body.hash,
        )
        return web.json_response(
            {
                "unsignedTxHex": unsigned.cbor_hex,
                "txHash": unsigned.tx_hash,
                "fee": unsigned.fee,
                "ttl": unsigned.ttl,
            }
        )

    async def _handle_submit_tx(self, request: web.Request) -> web.Response:
        body: SubmitTxRequest = await _read_model(request, SubmitTxRequest)
        tx_hash, note = await self.publisher.submit_signed(
            body.signed_tx_hex, note_id=body.note_id, wallet_address=body.wallet_address
        )
        response: dict[str, Any] = {"success": True, "txHash": tx_hash}
        if note is not None:
            response["note"] = note.to_api()
        return web.json_response(response)

    async def _handle_attach_proof(self, request: web.Request) -> web.Response:
        body: AttachProofRequest = await _read_model(request, AttachProofRequest)
        note = await self.publisher.attach_proof(body.note_id, body.tx_hash.lower())
        return web.json_response({"success": True, "note": note.to_api()})

    async def start(self) -> None:
        logger.info(f"Starting notes server on {self.settings.http_host}:{self.settings.http_port}")

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.settings.http_host, self.settings.http_port)
        await self.site.start()

        self.poller.start()

        logger.info(
            f"Notes server running at http://{self.settings.http_host}:{self.settings.http_port}"
        )

    async def stop(self) -> None:
        if self._stopping:
            return
        self._stopping = True

        logger.info("Stopping notes server...")
        await self.poller.stop()

        if self.site:
            with contextlib.suppress(RuntimeError):
                await self.site.stop()
            self.site = None

        if self.runner:
            with contextlib.suppress(RuntimeError):
                await self.runner.cleanup()
            self.runner = None

        await self.indexer.close()
        self.store.close()
        logger.info("Notes server stopped")
