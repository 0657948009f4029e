"""
FastAPI app exposing battle queries, admin commands, and live updates.

The registry and ledger are injected; nothing here holds battle state.
"""

import asyncio
import logging
from typing import Optional

from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from battle_arena.api.api_models import (
    BattleResponse,
    ErrorResponse,
    HealthResponse,
    LeaderboardResponse,
    OutcomeResponse,
    StartBattleRequest,
    StartBattleResponse,
)
from battle_arena.api.connection_manager import ConnectionManager, ThreadSafeWebSocketBroadcaster
from battle_arena.battle.battle_registry import BattleRegistry
from battle_arena.battle.errors import BattleError, BattleNotFoundError, OutcomeReportError
from battle_arena.battle.models import MarketSnapshot
from battle_arena.config.arena_config_schema import ServerSettings
from battle_arena.ledger.ledger_adapter import LedgerAdapter, LedgerError

logger = logging.getLogger(__name__)


def create_app(
    registry: BattleRegistry,
    ledger: LedgerAdapter,
    settings: Optional[ServerSettings] = None,
    websocket_broadcaster: Optional[ThreadSafeWebSocketBroadcaster] = None,
    consume_ledger_events: bool = True
) -> FastAPI:
    """
    Build the API app.

    Args:
        registry: Battle registry serving all queries and commands
        ledger: Ledger adapter for on-ledger battle records
        settings: Server settings (CORS origins)
        websocket_broadcaster: Broadcaster already wired into the registry;
            attached to the server loop on startup
        consume_ledger_events: Run the registry's event consumer while serving
    """
    settings = settings or ServerSettings()
    websocket_broadcaster = websocket_broadcaster or ThreadSafeWebSocketBroadcaster(ConnectionManager())
    manager = websocket_broadcaster.manager

    app = FastAPI(title="Battle Arena API", version="1.0.0")
    app.state.registry = registry
    app.state.ledger = ledger
    app.state.connections = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------
    # Error mapping

    @app.exception_handler(BattleNotFoundError)
    async def battle_not_found_handler(request: Request, exc: BattleNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(OutcomeReportError)
    async def outcome_report_handler(request: Request, exc: OutcomeReportError):
        return _error(status.HTTP_502_BAD_GATEWAY, exc, outcome=exc.outcome)

    @app.exception_handler(BattleError)
    async def battle_error_handler(request: Request, exc: BattleError):
        return _error(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        logger.error(f"Ledger error on {request.url.path}: {exc}")
        return _error(status.HTTP_502_BAD_GATEWAY, exc)

    # ------------------------------------------------------------------
    # Lifecycle

    @app.on_event("startup")
    async def startup_event():
        websocket_broadcaster.attach_loop(asyncio.get_running_loop())
        if consume_ledger_events:
            registry.start_event_consumer()
        logger.info("Battle Arena API started")

    @app.on_event("shutdown")
    async def shutdown_event():
        websocket_broadcaster.detach_loop()
        registry.shutdown()
        logger.info("Battle Arena API stopped")

    # ------------------------------------------------------------------
    # Routes

    @app.get("/health", response_model=HealthResponse)
    def health():
        """Health check endpoint"""
        return HealthResponse(
            status="ok",
            timestamp=registry.clock(),
            active_battles=registry.active_battles(),
            price_cache=registry.price_source.get_cache_status()
        )

    @app.get("/api/battle/current", response_model=BattleResponse)
    def get_current_battle():
        battle_id = ledger.get_active_battle_id()
        return _battle_response(registry, ledger, battle_id)

    @app.get("/api/battle/{battle_id}", response_model=BattleResponse)
    def get_battle(battle_id: int):
        return _battle_response(registry, ledger, battle_id)

    @app.get("/api/battle/{battle_id}/leaderboard", response_model=LeaderboardResponse)
    def get_leaderboard(battle_id: int):
        """Standings as of the last completed round"""
        orchestrator = registry.get(battle_id)
        info = orchestrator.get_info()
        ranking = orchestrator.get_ranking()
        return LeaderboardResponse(
            battle_id=battle_id,
            phase=info.phase,
            tick=info.tick_count,
            rankings=orchestrator.get_leaderboard(),
            timestamp=ranking.timestamp if ranking else registry.clock()
        )

    @app.get("/api/prices", response_model=MarketSnapshot)
    def get_prices():
        return registry.get_prices()

    @app.post("/api/battle/{battle_id}/start", response_model=StartBattleResponse)
    def start_battle(battle_id: int, request: Optional[StartBattleRequest] = Body(default=None)):
        """Start on the ledger, then run the simulation with the ledger roster"""
        duration = request.duration_seconds if request else None
        snapshot = registry.start_from_ledger(battle_id, duration_seconds=duration)
        info = registry.get_battle_info(battle_id)
        logger.info(f"Battle {battle_id} started via API (first tick {snapshot.tick})")
        return StartBattleResponse(
            success=True,
            battle_id=battle_id,
            participant_count=info.participant_count,
            deadline=info.deadline
        )

    @app.post("/api/battle/{battle_id}/abort", response_model=OutcomeResponse)
    def abort_battle(battle_id: int):
        outcome = registry.get(battle_id).abort()
        return OutcomeResponse(success=True, outcome=outcome)

    @app.post("/api/battle/{battle_id}/retry-report", response_model=OutcomeResponse)
    def retry_outcome_report(battle_id: int):
        outcome = registry.get(battle_id).retry_outcome_report()
        return OutcomeResponse(success=True, outcome=outcome)

    @app.websocket("/ws")
    async def battle_websocket(websocket: WebSocket):
        await manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                logger.debug(f"Received from client: {data}")
        except WebSocketDisconnect:
            pass
        finally:
            manager.disconnect(websocket)

    return app


def _battle_response(registry: BattleRegistry, ledger: LedgerAdapter, battle_id: int) -> BattleResponse:
    try:
        local = registry.get_battle_info(battle_id)
    except BattleNotFoundError:
        local = None

    return BattleResponse(
        battle_id=battle_id,
        ledger=ledger.get_battle_record(battle_id),
        ledger_roster=ledger.get_roster(battle_id),
        local=local
    )


def _error(status_code: int, exc: Exception, outcome=None) -> JSONResponse:
    body = ErrorResponse(error=str(exc), kind=type(exc).__name__, outcome=outcome)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode='json'))
