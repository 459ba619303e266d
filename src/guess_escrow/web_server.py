"""FastAPI gateway for the escrow ledger."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, Header, HTTPException, Path, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from guess_escrow import __version__
from guess_escrow.auth import RequestAuthenticator
from guess_escrow.ledger.errors import (
    AuthenticationError,
    AuthorizationError,
    LedgerError,
    PhaseError,
    StateError,
    TransferError,
    TransferInFlight,
    ValidationError,
    VerificationError,
)
from guess_escrow.ledger.game import GuessingGame
from guess_escrow.ledger.models import GUESS_MAX, GUESS_MIN
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

STATUS_BY_CATEGORY: Tuple[Tuple[type, int], ...] = (
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (PhaseError, 409),
    (StateError, 409),
    (ValidationError, 422),
    (VerificationError, 400),
    (TransferInFlight, 504),
    (TransferError, 502),
)


class CommitmentRequest(BaseModel):
    commitment: str


class StakeRequest(BaseModel):
    value: int
    amount: int


class RevealRequest(BaseModel):
    secret: int
    salt: str


def status_for(exc: LedgerError) -> int:
    for family, status in STATUS_BY_CATEGORY:
        if isinstance(exc, family):
            return status
    return 400


class LedgerWebServer:
    """HTTP and WebSocket gateway; each request runs one ledger operation.

    Mutating routes identify the caller by recovering the signer of the
    ``X-Signature`` header (see ``guess_escrow.auth``). Everything that takes
    the ledger lock runs in a worker thread so a slow settlement never stalls
    the event loop.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        game: GuessingGame,
        transfer_health: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        self.config = config
        self.game = game
        self._store = game.store
        self._transfer_health = transfer_health
        self._auth = RequestAuthenticator()

        self.app = FastAPI(
            title="Guess Escrow API",
            description="Commit-reveal betting ledger with pro-rata escrow payouts",
            version=__version__,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    async def _run(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking ledger call off the event loop, mapping ledger errors to HTTP."""
        try:
            return await asyncio.to_thread(operation, *args)
        except LedgerError as exc:
            logger.warning("%s rejected: %s (%s)", operation.__name__, exc.code, exc.message)
            raise HTTPException(status_code=status_for(exc), detail=exc.to_dict()) from exc

    async def _caller(
        self,
        operation: str,
        payload: Optional[Dict[str, Any]],
        nonce: Optional[str],
        signature: Optional[str],
        claimed: Optional[str],
    ) -> str:
        return await self._run(self._auth.authenticate, operation, payload, nonce, signature, claimed)

    # ------------------------------------------------------------------
    # Blocking views and operations, executed in worker threads
    # ------------------------------------------------------------------
    def _state_view(self) -> Dict[str, Any]:
        return self.game.snapshot().to_dict()

    def _participants_view(self, value: int) -> Dict[str, Any]:
        participants = self.game.participants_of(value)
        return {
            "value": value,
            "participants": participants,
            "stakes": {p: self.game.stake_of(value, p) for p in participants},
            "total": self.game.total_for(value),
        }

    def _report_view(self) -> Optional[Dict[str, Any]]:
        report = self.game.settlement_report
        if report is None:
            return None
        signed = self.game.signed_settlement_report()
        return signed if signed is not None else {"report": report.to_dict()}

    def _set_commitment(self, caller: str, commitment: str) -> Dict[str, Any]:
        digest = self.game.set_commitment(caller, commitment)
        return {"status": "committed", "commitment": digest, "phase": self.game.phase.name}

    def _place_stake(self, caller: str, value: int, amount: int) -> Dict[str, Any]:
        stake = self.game.place_stake(caller, value, amount)
        return {
            "status": "accepted",
            "value": value,
            "stake": stake,
            "value_total": self.game.total_for(value),
            "pot": self.game.balance,
        }

    def _reveal(self, caller: str, secret: int, salt: str) -> Dict[str, Any]:
        report = self.game.reveal(caller, secret, salt)
        return {"status": "settled", "phase": self.game.phase.name, "settlement": report.to_dict()}

    def _recover_unclaimed(self, caller: str) -> Dict[str, Any]:
        amount = self.game.recover_unclaimed(caller)
        return {"status": "recovered", "amount": amount, "pot": self.game.balance}

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & state
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            transfer_health: Dict[str, Any] = {"status": "in-memory"}
            if self._transfer_health:
                transfer_health = await asyncio.to_thread(self._transfer_health)
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "ledger": self.game.phase.name,
                    "transfer": transfer_health,
                },
            }

        @self.app.get("/api/state")
        async def ledger_state() -> Dict[str, Any]:
            return await self._run(self._state_view)

        @self.app.get("/api/activities")
        async def activities(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = self._store.get_live_feed(limit=limit)
            return {"activities": [self._store.serialize_event(item) for item in reversed(feed)]}

        @self.app.get("/api/participants/{value}")
        async def participants_of(value: int = Path(..., ge=GUESS_MIN, le=GUESS_MAX)) -> Dict[str, Any]:
            return await self._run(self._participants_view, value)

        @self.app.get("/api/pending/{address}")
        async def pending_of(address: str) -> Dict[str, Any]:
            amount = await self._run(self.game.pending_of, address)
            return {"address": address, "pending": amount}

        @self.app.get("/api/settlement/report")
        async def settlement_report() -> Dict[str, Any]:
            report = await self._run(self._report_view)
            if report is None:
                raise HTTPException(status_code=404, detail="Ledger has not been settled")
            return report

        # ------------------------------------------------------------------
        # Ledger operations (signed)
        # ------------------------------------------------------------------
        @self.app.post("/api/initialize")
        async def initialize(
            x_nonce: Optional[str] = Header(None),
            x_signature: Optional[str] = Header(None),
            x_caller_address: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            caller = await self._caller("initialize", None, x_nonce, x_signature, x_caller_address)
            admin = await self._run(self.game.initialize, caller)
            return {"status": "initialized", "administrator": admin}

        @self.app.post("/api/commitment")
        async def set_commitment(
            request: CommitmentRequest,
            x_nonce: Optional[str] = Header(None),
            x_signature: Optional[str] = Header(None),
            x_caller_address: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            caller = await self._caller("set_commitment", request.model_dump(), x_nonce, x_signature, x_caller_address)
            return await self._run(self._set_commitment, caller, request.commitment)

        @self.app.post("/api/stakes")
        async def place_stake(
            request: StakeRequest,
            x_nonce: Optional[str] = Header(None),
            x_signature: Optional[str] = Header(None),
            x_caller_address: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            caller = await self._caller("place_stake", request.model_dump(), x_nonce, x_signature, x_caller_address)
            return await self._run(self._place_stake, caller, request.value, request.amount)

        @self.app.post("/api/reveal")
        async def reveal(
            request: RevealRequest,
            x_nonce: Optional[str] = Header(None),
            x_signature: Optional[str] = Header(None),
            x_caller_address: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            caller = await self._caller("reveal", request.model_dump(), x_nonce, x_signature, x_caller_address)
            return await self._run(self._reveal, caller, request.secret, request.salt)

        @self.app.post("/api/withdraw")
        async def withdraw(
            x_nonce: Optional[str] = Header(None),
            x_signature: Optional[str] = Header(None),
            x_caller_address: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            caller = await self._caller("withdraw", None, x_nonce, x_signature, x_caller_address)
            amount = await self._run(self.game.withdraw, caller)
            return {"status": "withdrawn", "amount": amount}

        @self.app.post("/api/recover")
        async def recover_unclaimed(
            x_nonce: Optional[str] = Header(None),
            x_signature: Optional[str] = Header(None),
            x_caller_address: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            caller = await self._caller("recover_unclaimed", None, x_nonce, x_signature, x_caller_address)
            return await self._run(self._recover_unclaimed, caller)

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/ledger")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                snapshot = await asyncio.to_thread(self._build_initial_snapshot)
                await websocket.send_json({"type": "snapshot", "payload": snapshot})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting ledger web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="ledger-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Ledger web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping ledger web server")
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except RuntimeError as exc:
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        for event in ("ledger_update", "live_feed"):
            self._store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            # ledger operations run in worker threads
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
        except RuntimeError:
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    def _build_initial_snapshot(self) -> Dict[str, Any]:
        feed = self._store.get_live_feed(limit=20)
        return {
            "state": self.game.snapshot().to_dict(),
            "live_feed": [self._store.serialize_event(item) for item in reversed(feed)],
        }
