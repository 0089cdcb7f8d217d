"""HTTP executor.

Thin FastAPI layer over the orchestrator: every route that moves a game
forward goes through ``PhaseOrchestrator.advance`` or ``expedite``.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from nightfall import __version__
from nightfall.config.flow import load_flow_registry
from nightfall.config.settings import Settings
from nightfall.engine.state import Player
from nightfall.exceptions import (
    GameNotFoundError,
    InvalidActionError,
    LateActionError,
    PersistenceError,
    StoreError,
)
from nightfall.orchestrator.actions import ActionService
from nightfall.orchestrator.events import EventLog
from nightfall.orchestrator.phase_orchestrator import AdvanceResult, PhaseOrchestrator
from nightfall.store.sqlite import SqliteRecordStore
from nightfall.web.schemas import (
    ActionResponse,
    ActionSubmitRequest,
    AdvanceResponse,
    CreateGameRequest,
    EndSpeechRequest,
    EventResponse,
    GameStateResponse,
)

logger = logging.getLogger(__name__)


def _advance_response(result: AdvanceResult) -> AdvanceResponse:
    return AdvanceResponse(
        game_id=result.game_id,
        status=result.status.value,
        phase=result.record.phase.value if result.record else None,
        round=result.record.round if result.record else None,
        event_count=len(result.events),
    )


def create_app(
    orchestrator: PhaseOrchestrator,
    actions: Optional[ActionService] = None,
    event_log: Optional[EventLog] = None,
) -> FastAPI:
    """Build the API around an orchestrator.

    Args:
        orchestrator: Orchestrator bound to the shared store
        actions: Action intake; built from the orchestrator when omitted
        event_log: Event sink served by the events route; registered on the
            orchestrator when it is created here

    Returns:
        Configured FastAPI application
    """
    if event_log is None:
        event_log = EventLog()
        orchestrator.add_sink(event_log)

    app = FastAPI(
        title="nightfall",
        description="Werewolf phase orchestrator API",
        version=__version__,
    )
    app.state.orchestrator = orchestrator
    app.state.actions = actions or ActionService(orchestrator)
    app.state.event_log = event_log

    @app.exception_handler(GameNotFoundError)
    async def game_not_found_handler(request: Request, exc: GameNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidActionError)
    async def invalid_action_handler(request: Request, exc: InvalidActionError):
        return JSONResponse(
            status_code=400,
            content={"detail": exc.reason, "action_type": exc.action_type},
        )

    @app.exception_handler(LateActionError)
    async def late_action_handler(request: Request, exc: LateActionError):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "action_type": exc.action_type, "sequence": exc.sequence},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence failure: {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "version": __version__}

    @app.post("/api/games", response_model=GameStateResponse, status_code=201)
    def create_game(request: CreateGameRequest):
        try:
            record = app.state.orchestrator.create_game(
                players=[Player(**p.model_dump()) for p in request.players],
                config_id=request.config_id,
                game_id=request.game_id,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StoreError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return GameStateResponse.from_record(record)

    @app.get("/api/games/{game_id}", response_model=GameStateResponse)
    def get_game(game_id: str):
        return GameStateResponse.from_record(app.state.orchestrator.store.get(game_id))

    @app.post("/api/games/{game_id}/advance", response_model=AdvanceResponse)
    def advance_game(game_id: str):
        return _advance_response(app.state.orchestrator.advance_game(game_id))

    @app.post("/api/games/{game_id}/actions", response_model=ActionResponse)
    def submit_action(game_id: str, request: ActionSubmitRequest):
        stored = app.state.actions.submit(
            game_id,
            request.actor_seat,
            request.action_type,
            request.target_seat,
        )
        return ActionResponse(success=True, sequence=stored.sequence, message="Action recorded")

    @app.post("/api/games/{game_id}/end-speech", response_model=AdvanceResponse)
    def end_speech(game_id: str, request: EndSpeechRequest):
        return _advance_response(app.state.actions.end_speech(game_id, request.seat))

    @app.get("/api/games/{game_id}/events", response_model=List[EventResponse])
    def get_events(game_id: str, seat: Optional[int] = None, since: int = 0):
        app.state.orchestrator.store.get(game_id)
        events = app.state.event_log.for_game(game_id, seat=seat, since=since)
        if seat is None:
            events = [e for e in events if e.public]
        return [EventResponse.from_event(e) for e in events]

    return app


def create_app_from_settings(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    orchestrator = PhaseOrchestrator(
        SqliteRecordStore(settings.store_path),
        registry=load_flow_registry(settings.flow_config),
        executor_id=settings.executor_id,
        lease_seconds=settings.lease_seconds,
    )
    return create_app(orchestrator)


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    settings: Optional[Settings] = None,
) -> None:
    import uvicorn

    uvicorn.run(create_app_from_settings(settings), host=host, port=port, log_level="info")
