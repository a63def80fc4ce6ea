"""
arena/server.py - FastAPI service around the gladiator scheduler.

Endpoints:
    GET    /health                      Service health check
    GET    /api/state                   Full arena snapshot
    GET    /api/agents                  Current roster
    GET    /api/agents/{id}/record      Season + all-time record (removed agents too)
    POST   /api/v1/arena/join           Join (create-or-return agent, enter lobby)
    POST   /api/matches/start           Start a quick match
    GET    /api/matches/{id}            Match details
    POST   /api/matches/{id}/resolve    Resolve a match (idempotent)
    POST   /api/season/reset            Roll the season
    POST   /api/arena/restart           Clear roster/lobby/bracket, roll the season

Live streaming:
    WS     /ws                          Spectator feed (state, match, agents, ...)

Identity, payments and rate limiting sit in front of this service; every
request reaching it is treated as already authorized.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gladiator.config import ArenaConfig, load_config
from gladiator.coordinator import Arena
from gladiator.errors import ArenaError
from gladiator.problems import ProblemBank
from gladiator.store import StateStore

logger = logging.getLogger(__name__)


# ======================================================================
# Spectator Connections
# ======================================================================


class ConnectionManager:
    """Fans bus events out to connected WebSocket spectators.

    ``publish`` is called from whatever thread mutated the arena; it only
    schedules the send on the server loop and returns.
    """

    def __init__(self):
        self.sockets: list[WebSocket] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    async def connect(self, websocket: WebSocket, greeting: dict | None = None):
        await websocket.accept()
        self.sockets.append(websocket)
        logger.info(f"Spectator connected ({len(self.sockets)} total)")

        if greeting is not None:
            try:
                await websocket.send_json(greeting)
            except Exception:
                self.disconnect(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.sockets:
            self.sockets.remove(websocket)
            logger.info(f"Spectator disconnected ({len(self.sockets)} left)")

    def publish(self, event: dict) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or not self.sockets:
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(event), loop)

    async def broadcast(self, message: dict):
        """Send a message to every spectator, dropping dead connections."""
        dead = []
        for ws in list(self.sockets):
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)

        for ws in dead:
            self.disconnect(ws)

    def count(self) -> int:
        return len(self.sockets)


# Global connection manager
_manager = ConnectionManager()

# Global arena instance, set during lifespan
_arena: Arena | None = None


def get_arena() -> Arena:
    assert _arena is not None, "Arena not initialized"
    return _arena


def build_arena(config: ArenaConfig) -> Arena:
    """Wire an Arena with file persistence and the optional problem bank."""
    store = StateStore(
        config.server.state_path,
        debounce=config.server.save_debounce_seconds,
        retry=config.server.save_retry_seconds,
    )
    problems = None
    if config.matches.problems_path:
        problems = ProblemBank.from_file(config.matches.problems_path)
    return Arena(config, store=store, problems=problems)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _arena
    config = getattr(app.state, "config", None) or load_config()
    _manager.bind_loop(asyncio.get_running_loop())
    _arena = build_arena(config)
    token = _arena.bus.subscribe(_manager.publish)
    _log_startup_config(config)
    _arena.start()

    yield

    _arena.bus.unsubscribe(token)
    _arena.stop()
    _manager.bind_loop(None)
    _arena = None


def _log_startup_config(config: ArenaConfig):
    """Log arena configuration on startup so operators can verify env vars."""
    lobby = config.lobby
    matches = config.matches
    logger.info("=" * 50)
    logger.info("Arena startup config:")
    logger.info(f"  State file: {config.server.state_path}")
    logger.info(
        f"  Lobby: {lobby.min_agents}-{lobby.max_agents} agents, "
        f"{lobby.wait_seconds:g}s wait"
    )
    if matches.resolve_after_seconds > 0:
        logger.info(f"  Fallback resolution after {matches.resolve_after_seconds:g}s")
    else:
        logger.info("  Fallback resolution: DISABLED (external verdicts only)")
    logger.info(f"  Permadeath: {'on' if matches.permadeath else 'off'}")
    if matches.problems_path:
        logger.info(f"  Problem bank: {matches.problems_path}")
    else:
        logger.info("  Problem bank: NOT configured")
    logger.info("=" * 50)


app = FastAPI(title="Gladiator Arena", lifespan=lifespan)

# Allow the spectator UI (and other frontends) to call the API
from starlette.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ArenaError)
async def arena_error_handler(request: Request, exc: ArenaError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status,
        content={"ok": False, "error": exc.reason, "message": exc.message},
    )


# ======================================================================
# Request/Response Models
# ======================================================================


class JoinRequest(BaseModel):
    name: str
    tag: str | None = None  # declared model/provider, e.g. "gpt-4o"


class JoinResponse(BaseModel):
    ok: bool
    agent: dict[str, Any]
    existed: bool
    lobby: dict[str, Any] | None = None


class QuickMatchRequest(BaseModel):
    a_id: str | None = None
    b_id: str | None = None
    resolve_after_seconds: float | None = None


class ResolveRequest(BaseModel):
    winner_id: str | None = None


class RestartRequest(BaseModel):
    clear_all_time: bool = False


class HealthResponse(BaseModel):
    status: str
    agents: int
    lobby_size: int
    tournament_status: str | None = None
    current_match_id: str | None = None
    spectators: int


# ======================================================================
# Endpoints
# ======================================================================


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    """Service health check."""
    status = get_arena().status()
    return {
        "status": "ok",
        "agents": status["agents"],
        "lobby_size": status["lobby_size"],
        "tournament_status": status["tournament_status"],
        "current_match_id": status["current_match_id"],
        "spectators": _manager.count(),
    }


@app.get("/api/state")
def get_state() -> dict[str, Any]:
    """Full read-only snapshot."""
    return get_arena().snapshot()


@app.get("/api/agents")
def list_agents() -> dict[str, Any]:
    return {"ok": True, "agents": get_arena().list_agents()}


@app.get("/api/agents/{agent_id}/record")
def agent_record(agent_id: str) -> dict[str, Any]:
    """Win/loss record. Works for agents already removed by permadeath."""
    return {"ok": True, **get_arena().agent_record(agent_id)}


@app.post("/api/v1/arena/join", response_model=JoinResponse)
def join(req: JoinRequest) -> dict[str, Any]:
    """Join the arena. Joining again with the same name returns the same agent."""
    arena = get_arena()
    agent, existed = arena.join(req.name, req.tag)
    snapshot = arena.snapshot()
    logger.info(f"Join: {agent.name} -> {agent.id}" + (" (existing)" if existed else ""))
    return {
        "ok": True,
        "agent": agent.to_dict(),
        "existed": existed,
        "lobby": snapshot["lobby"],
    }


@app.post("/api/matches/start")
def start_match(req: QuickMatchRequest) -> dict[str, Any]:
    """Start a quick match between two agents (two random ones if ids are omitted)."""
    match = get_arena().start_quick_match(req.a_id, req.b_id, req.resolve_after_seconds)
    return {"ok": True, "match": match.to_dict()}


@app.get("/api/matches/{match_id}")
def get_match(match_id: str) -> dict[str, Any]:
    return {"ok": True, "match": get_arena().get_match(match_id)}


@app.post("/api/matches/{match_id}/resolve")
def resolve_match(match_id: str, req: ResolveRequest | None = None) -> dict[str, Any]:
    """Resolve a match. Resolving a finished match returns it unchanged."""
    winner_id = req.winner_id if req is not None else None
    match, already = get_arena().resolve_match(match_id, winner_id)
    out = {"ok": True, "match": match.to_dict()}
    if already:
        out["already"] = True
    return out


@app.post("/api/season/reset")
def reset_season() -> dict[str, Any]:
    season, previous = get_arena().reset_season()
    return {"ok": True, "season": season, "previous": previous}


@app.post("/api/arena/restart")
def restart_arena(req: RestartRequest | None = None) -> dict[str, Any]:
    """Administrative reset. Drops the in-flight match without resolving it."""
    wipe = req.clear_all_time if req is not None else False
    result = get_arena().restart_arena(wipe_all_time=wipe)
    return {"ok": True, "restarted": True, **result}


# ======================================================================
# Live Spectating
# ======================================================================


@app.websocket("/ws")
async def websocket_feed(websocket: WebSocket):
    """Spectator feed. Greets with a state snapshot, then relays bus events."""
    arena = get_arena()
    # snapshot() takes the arena lock; keep it off the event loop
    snapshot = await asyncio.to_thread(arena.snapshot)
    greeting = {"type": "state", "payload": snapshot, "t": snapshot["serverTime"]}
    await _manager.connect(websocket, greeting)

    try:
        # Keep connection alive, wait for disconnect
        while True:
            # We don't expect messages from spectators, but need to handle disconnect
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
            except asyncio.TimeoutError:
                try:
                    await websocket.send_json({"type": "ping"})
                except Exception:
                    break
    except WebSocketDisconnect:
        pass
    finally:
        _manager.disconnect(websocket)
