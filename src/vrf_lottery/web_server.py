"""FastAPI web server exposing the lottery's public operations."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vrf_lottery.blockchain.client import VRFCoordinatorClient
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.event_manager import MemoryStore
from vrf_lottery.lottery.exceptions import (
    IndexOutOfRange,
    InsufficientPayment,
    LotteryError,
    PayoutFailed,
    RandomnessRequestFailed,
    RoundNotOpen,
    UnknownRequest,
    UpkeepNotNeeded,
)
from vrf_lottery.lottery.keeper import UpkeepKeeper
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_STATUS = {
    InsufficientPayment: 402,
    IndexOutOfRange: 404,
    UnknownRequest: 404,
    RoundNotOpen: 409,
    UpkeepNotNeeded: 409,
    PayoutFailed: 502,
    RandomnessRequestFailed: 502,
}

STORE_EVENTS = ("live_feed", "history_update")


class EnterRequest(BaseModel):
    participant: str = Field(min_length=1)
    amount: int = Field(ge=0)


class LotteryWebServer:
    """HTTP and WebSocket gateway for the lottery."""

    def __init__(
        self,
        config: Dict[str, Any],
        lottery: Lottery,
        store: MemoryStore,
        keeper: Optional[UpkeepKeeper] = None,
        vrf_client: Optional[VRFCoordinatorClient] = None,
    ) -> None:
        self.config = config
        self.lottery = lottery
        self.keeper = keeper
        self.vrf_client = vrf_client
        self._store = store
        self._server = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any]]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._websockets: Set[WebSocket] = set()

        self.app = FastAPI(
            title="VRF Lottery API",
            description="Public entry points of the periodic VRF lottery",
            version="1.0.0",
        )

        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()
        self._register_store_listeners()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.get("server", {}).get("cors_origins", ["*"]),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_exception_handlers(self) -> None:
        @self.app.exception_handler(LotteryError)
        async def lottery_error_handler(request: Request, exc: LotteryError) -> JSONResponse:
            status_code = 400
            for error_type, code in ERROR_STATUS.items():
                if isinstance(exc, error_type):
                    status_code = code
                    break
            body: Dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
            if isinstance(exc, UpkeepNotNeeded) and exc.status is not None:
                body["upkeep"] = exc.status.to_dict()
            logger.info("%s %s -> %s %s", request.method, request.url.path, status_code, body["error"])
            return JSONResponse(status_code=status_code, content=body)

    def _setup_routes(self) -> None:
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            blockchain_health: Dict[str, Any] = {"status": "unavailable"}
            if self.vrf_client:
                blockchain_health = await asyncio.to_thread(self.vrf_client.health_check)
                blockchain_health.update(self.vrf_client.get_client_status())
            state = await asyncio.to_thread(self.lottery.get_state)
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "lottery": state.name,
                    "keeper": self.keeper.get_status()["status"] if self.keeper else "disabled",
                    "blockchain": blockchain_health,
                },
                "websocket_connections": len(self._websockets),
            }

        @self.app.get("/api/keeper")
        async def keeper_status() -> Dict[str, Any]:
            if not self.keeper:
                raise HTTPException(status_code=404, detail="Keeper not configured")
            return self.keeper.get_status()

        # ------------------------------------------------------------------
        # Lottery state
        # ------------------------------------------------------------------
        @self.app.get("/api/lottery")
        async def get_lottery() -> Dict[str, Any]:
            return await asyncio.to_thread(self._build_lottery_state)

        @self.app.get("/api/players/{index}")
        async def get_player(index: int) -> Dict[str, Any]:
            player = await asyncio.to_thread(self.lottery.get_player, index)
            return {"index": index, "player": player}

        @self.app.post("/api/enter")
        async def enter(request: EnterRequest) -> Dict[str, Any]:
            await asyncio.to_thread(self.lottery.enter, request.participant, request.amount)
            return {
                "participant": request.participant,
                "numberOfPlayers": self.lottery.get_number_of_players(),
                "balance": self.lottery.get_balance(),
            }

        # ------------------------------------------------------------------
        # Upkeep (open to any caller)
        # ------------------------------------------------------------------
        @self.app.get("/api/upkeep")
        async def check_upkeep() -> Dict[str, Any]:
            status = await asyncio.to_thread(self.lottery.check_upkeep, b"")
            return status.to_dict()

        @self.app.post("/api/upkeep")
        async def perform_upkeep() -> Dict[str, Any]:
            request_id = await asyncio.to_thread(self.lottery.perform_upkeep, b"")
            return {"requestId": request_id, "state": self.lottery.get_state().name}

        # ------------------------------------------------------------------
        # Feed & history
        # ------------------------------------------------------------------
        @self.app.get("/api/history")
        async def get_round_history(limit: int = 20) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            history = self._store.get_round_history(limit=limit)
            rounds = [item.to_dict() for item in reversed(history)]
            return {
                "rounds": rounds,
                "summary": {
                    "total_rounds": len(rounds),
                    "total_volume_wei": sum(r["winner_prize_wei"] for r in rounds),
                },
            }

        @self.app.get("/api/activities")
        async def get_live_feed(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = self._store.get_live_feed(limit=limit)
            return {"activities": [item.to_dict() for item in reversed(feed)]}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/lottery")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            self._ensure_broadcasting()
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
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web server on %s:%s", host, port)
        self._ensure_broadcasting()
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Lottery web server stopped")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is not None:
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
    def _ensure_broadcasting(self) -> None:
        """Bind the broadcast queue and task to the running loop, once."""
        if self._broadcast_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._broadcast_queue = asyncio.Queue()
        self._ws_lock = asyncio.Lock()
        self._broadcast_task = self._loop.create_task(self._broadcast_loop())

    def _register_store_listeners(self) -> None:
        for event in STORE_EVENTS:
            self._store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any]) -> None:
        # store events fire on worker threads
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
            logger.debug("Enqueued broadcast for %s", event_type)
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

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any]) -> None:
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except (RuntimeError, WebSocketDisconnect) as exc:
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    # ------------------------------------------------------------------
    # Payload builders
    # ------------------------------------------------------------------
    def _build_lottery_state(self) -> Dict[str, Any]:
        state = self.lottery.snapshot()
        state["config"] = self.lottery.config.to_dict()
        return state

    def _build_initial_snapshot(self) -> Dict[str, Any]:
        return {
            "lottery": self._build_lottery_state(),
            "history": [item.to_dict() for item in reversed(self._store.get_round_history(limit=10))],
            "activities": [item.to_dict() for item in reversed(self._store.get_live_feed(limit=20))],
        }
