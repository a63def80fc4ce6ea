"""
gladiator/coordinator.py - The arena: one state value, one lock.

Every operation (joins, quick matches, resolutions, resets) and every timer
callback (lobby loop, fallback resolution, persistence dump) takes the same
re-entrant lock before touching state, so read-modify-write sequences never
interleave. At this scale (tens of agents, one match at a time) that's all
the concurrency control the scheduler needs.

Usage:
    arena = Arena(config, store=StateStore(path))
    arena.start()                  # lobby loop on a daemon thread
    agent, existed = arena.join("Maximus", "gpt-4o")
    arena.snapshot()
    arena.stop()
"""

import logging
import math
import random
import threading
from datetime import datetime
from typing import Any, Callable

from . import stats
from .bracket import BracketScheduler
from .bus import NotificationBus
from .config import ArenaConfig
from .errors import ArenaError, ConflictError, NotFoundError, ValidationError
from .lobby import LobbyManager
from .matches import MatchEngine, VerdictSource
from .models import Agent, ArenaState, Match, TournamentRun, iso, new_id, utc_now
from .problems import ProblemSource
from .store import StateStore
from .timers import Schedule, thread_timer

logger = logging.getLogger(__name__)

NAME_MAX = 64
TAG_MAX = 32
QUICK_RESOLVE_MIN = 1.2
QUICK_RESOLVE_MAX = 60.0


class Arena:
    """Coordinator for lobby, bracket, match engine and ledgers."""

    def __init__(
        self,
        config: ArenaConfig | None = None,
        store: StateStore | None = None,
        bus: NotificationBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
        verdict: VerdictSource | None = None,
        schedule: Schedule = thread_timer,
        problems: ProblemSource | None = None,
    ):
        self.config = config or ArenaConfig()
        self.store = store
        self.bus = bus or NotificationBus(clock)
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.last_error: str | None = None

        self.state: ArenaState = store.load() if store is not None else ArenaState()

        self.lobby = LobbyManager(self.state, self.config.lobby, clock, self._changed)
        self.engine = MatchEngine(
            self.state,
            self.config.matches,
            clock,
            self._rng,
            notify=self._notify,
            changed=self._changed,
            verdict=verdict,
            schedule=schedule,
            problems=problems,
            on_timeout=self._auto_resolve,
        )
        self.bracket = BracketScheduler(
            self.state, self.engine, self._rng, clock, notify=self._notify, changed=self._changed
        )

        if store is not None:
            store.bind(self._dump)
        self._recover()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _changed(self) -> None:
        if self.store is not None:
            self.store.save_soon()

    def _dump(self) -> dict[str, Any]:
        with self._lock:
            return self.state.to_dict()

    def _notify(self, event_type: str, payload: Any = None) -> None:
        if payload is None:
            if event_type == "state":
                payload = self._snapshot()
            elif event_type == "agents":
                payload = [a.to_dict() for a in self.state.agents]
            elif event_type == "season":
                payload = self.state.season.to_dict()
            elif event_type == "lobby":
                payload = self.state.lobby.to_dict() if self.state.lobby else None
        self.bus.publish(event_type, payload)

    def _auto_resolve(self, match_id: str) -> None:
        """Fallback timer callback."""
        with self._lock:
            try:
                self.engine.resolve(match_id)
            except NotFoundError:
                logger.debug(f"Timer fired for vanished match {match_id}")
            except Exception:
                logger.exception(f"Auto-resolve failed for match {match_id}")

    def _recover(self) -> None:
        """Repair the current-match slot after loading persisted state."""
        with self._lock:
            state = self.state
            repaired = False
            current = state.current_match()
            if state.current_match_id and (current is None or not current.is_running):
                logger.warning(f"Clearing stale current match {state.current_match_id}")
                state.current_match_id = None
                current = None
                repaired = True

            running = [m for m in state.matches if m.is_running]
            if current is None and running:
                current = running[-1]
                state.current_match_id = current.id
                logger.warning(f"Adopting running match {current.id} as current")
                repaired = True

            # Every running match has to reach a resolution
            for match in running:
                if match.id != current.id:
                    logger.warning(f"Resolving orphaned running match {match.id}")
                    try:
                        self.engine.resolve(match.id)
                    except (ArenaError, ValueError) as e:
                        logger.error(f"Could not resolve orphaned match {match.id}: {e}")

            if current is not None:
                logger.info(f"Recovered running match {current.id}")
                self.engine.arm(current.id, self.config.matches.resolve_after_seconds)
            if repaired:
                self._changed()

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start the lobby loop. Returns False if already running."""
        with self._lock:
            if self._thread and self._thread.is_alive():
                return False
            self._stop_event.clear()
            thread = threading.Thread(target=self._run_loop, name="gladiator-arena-loop", daemon=True)
            thread.start()
            self._thread = thread
            logger.info("Arena loop started")
            return True

    def stop(self, join_timeout_seconds: float = 3.0) -> None:
        thread = self._thread
        self._stop_event.set()
        if thread is not None:
            thread.join(timeout=join_timeout_seconds)
        with self._lock:
            self._thread = None
            self.engine.disarm_all()
        if self.store is not None:
            self.store.close()
        logger.info("Arena loop stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as exc:
                self.last_error = f"{exc.__class__.__name__}: {exc}"
                logger.exception(f"Arena loop error: {exc}")
            self._stop_event.wait(self.config.server.tick_seconds)

    def tick(self) -> TournamentRun | Match | None:
        """One loop pass: keep a running bracket moving, or start one from the lobby."""
        with self._lock:
            if self.bracket.is_running:
                if self.engine.current() is None:
                    return self.bracket.tick()
                return None
            if self.engine.current() is not None:
                return None
            return self._maybe_start_tournament()

    def _maybe_start_tournament(self) -> TournamentRun | None:
        if self.bracket.is_running or self.engine.current() is not None:
            return None
        if not self.lobby.is_ready_to_start():
            return None
        ids = self.lobby.close_and_hand_off()
        if not ids:
            return None
        self._notify("lobby")
        run = self.bracket.start(ids)
        self.bracket.tick()
        return run

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def join(self, name: str, tag: str | None = None) -> tuple[Agent, bool]:
        """Create-or-return an agent by name and put it in the open lobby.

        Returns ``(agent, existed)``. May start a tournament immediately if
        the lobby just reached capacity.
        """
        name = (name or "").strip()
        tag = (tag or "").strip() or None
        if not name:
            raise ValidationError("name_required", "name is required")
        if len(name) > NAME_MAX:
            raise ValidationError("name_too_long", f"name must be at most {NAME_MAX} characters")
        if tag is not None and len(tag) > TAG_MAX:
            raise ValidationError("tag_too_long", f"tag must be at most {TAG_MAX} characters")

        with self._lock:
            agent = self.state.find_agent_by_name(name)
            existed = agent is not None
            if agent is None:
                agent = Agent(id=new_id(10), name=name, created_at=iso(self._clock()), tag=tag)
                self.state.agents.append(agent)
                logger.info(f"Agent {agent.name} ({agent.id}) joined" + (f" [{tag}]" if tag else ""))
                self._changed()
                self._notify("agents")
            elif tag is not None and agent.tag != tag:
                agent.tag = tag
                self._changed()
                self._notify("agents")

            if self.lobby.add_agent(agent.id):
                self._notify("lobby")
            self._notify("state")
            self._maybe_start_tournament()
            return agent, existed

    def start_quick_match(
        self,
        a_id: str | None = None,
        b_id: str | None = None,
        resolve_after_seconds: float | None = None,
    ) -> Match:
        """Start a one-off match outside the bracket.

        With no ids, two random roster agents are picked.
        """
        with self._lock:
            ids = [i for i in (a_id, b_id) if i]
            if not ids:
                if len(self.state.agents) < 2:
                    raise ConflictError("not_enough_agents", "need at least 2 agents")
                picked = self._rng.sample(self.state.agents, 2)
                ids = [picked[0].id, picked[1].id]
            elif len(ids) != 2:
                raise ValidationError("agent_ids_required", "provide two different agent ids")

            resolve_after = None
            if resolve_after_seconds is not None:
                if not math.isfinite(resolve_after_seconds):
                    raise ValidationError(
                        "resolve_after_invalid", "resolve_after_seconds must be a finite number"
                    )
                resolve_after = min(max(float(resolve_after_seconds), QUICK_RESOLVE_MIN), QUICK_RESOLVE_MAX)
            return self.engine.create_match(ids[0], ids[1], label="QUICK MATCH", resolve_after=resolve_after)

    def resolve_match(self, match_id: str, winner_id: str | None = None) -> tuple[Match, bool]:
        """Resolve a match; idempotent for completed ones. Returns ``(match, already)``."""
        with self._lock:
            return self.engine.resolve(match_id, winner_id)

    def reset_season(self) -> tuple[dict[str, Any], dict[str, Any]]:
        """Roll the season. Returns ``(season, previous)`` as dicts."""
        with self._lock:
            previous = self.state.season
            self.state.season = stats.reset_season(previous, self._clock())
            logger.info(f"Season {previous.number} closed; season {self.state.season.number} begins")
            self._changed()
            self._notify("season")
            self._notify("state")
            return self.state.season.to_dict(), previous.to_dict()

    def restart_arena(self, wipe_all_time: bool = False) -> dict[str, Any]:
        """Administrative reset: clear roster, lobby, bracket and matches, roll the season.

        The in-flight match, if any, is dropped without resolution.
        """
        with self._lock:
            self.engine.disarm_all()
            previous = self.state.season
            season, all_time = stats.reset_all(previous, self.state.all_time, self._clock(), wipe_all_time)
            self.state.agents = []
            self.state.matches = []
            self.state.current_match_id = None
            self.state.lobby = None
            self.state.tournament_run = None
            self.state.season = season
            self.state.all_time = all_time
            logger.info(
                f"Arena restarted: season {season.number}" + (" (all-time wiped)" if wipe_all_time else "")
            )
            self._changed()
            self._notify("season")
            self._notify("state")
            return {
                "season": season.to_dict(),
                "previous": previous.to_dict(),
                "allTime": all_time.to_dict(),
            }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[str, Any]:
        state = self.state
        current = self.engine.current()
        recent = state.matches[-self.config.matches.recent_limit :]
        return {
            "agents": [a.to_dict() for a in state.agents],
            "lobby": state.lobby.to_dict() if state.lobby else None,
            "tournamentRun": state.tournament_run.to_dict() if state.tournament_run else None,
            "currentMatch": current.to_dict() if current else None,
            "recentMatches": [m.to_dict() for m in reversed(recent)],
            "serverTime": iso(self._clock()),
            "season": state.season.to_dict(),
            "allTime": state.all_time.to_dict(),
            "policy": {
                "minAgents": self.config.lobby.min_agents,
                "maxAgents": self.config.lobby.max_agents,
                "waitSeconds": self.config.lobby.wait_seconds,
                "permadeath": self.config.matches.permadeath,
                "resolveAfterSeconds": self.config.matches.resolve_after_seconds,
            },
        }

    def snapshot(self) -> dict[str, Any]:
        """Read-only projection of the whole arena."""
        with self._lock:
            return self._snapshot()

    def list_agents(self) -> list[dict[str, Any]]:
        with self._lock:
            return [a.to_dict() for a in self.state.agents]

    def get_match(self, match_id: str) -> dict[str, Any]:
        with self._lock:
            match = self.state.find_match(match_id)
            if match is None:
                raise NotFoundError("match_not_found", f"match {match_id} not found")
            return match.to_dict()

    def agent_record(self, agent_id: str) -> dict[str, Any]:
        """Season and all-time record for an agent, including removed ones."""
        with self._lock:
            agent = self.state.find_agent(agent_id)
            known = (
                agent_id in self.state.season.played or agent_id in self.state.all_time.played
            )
            if agent is None and not known:
                raise NotFoundError("agent_not_found", f"agent {agent_id} not found")
            return {
                "agentId": agent_id,
                "active": agent is not None,
                "season": stats.record_for(self.state.season, agent_id),
                "allTime": stats.record_for(self.state.all_time, agent_id),
            }

    def status(self) -> dict[str, Any]:
        with self._lock:
            lobby = self.lobby.open_lobby()
            return {
                "running": bool(self._thread and self._thread.is_alive()),
                "agents": len(self.state.agents),
                "lobby_size": len(lobby.agent_ids) if lobby else 0,
                "tournament_status": self.state.tournament_run.status if self.state.tournament_run else None,
                "current_match_id": self.state.current_match_id,
                "subscribers": self.bus.subscriber_count(),
                "last_error": self.last_error,
            }
