"""
gladiator/models.py - Scheduler state records.

Everything the scheduler owns lives in one ``ArenaState`` value. Records
serialize to the camelCase document layout used on disk and over the wire;
``from_dict`` never trusts its input and falls back to defaults field by
field, dropping records that can't be repaired.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

LOBBY_OPEN = "open"
LOBBY_CLOSED = "closed"

RUN_IDLE = "idle"
RUN_RUNNING = "running"
RUN_COMPLETE = "complete"

MATCH_RUNNING = "running"
MATCH_COMPLETE = "complete"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    """ISO timestamp in UTC."""
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id(length: int = 10) -> str:
    return uuid.uuid4().hex[:length]


def new_run_id() -> str:
    return f"run-{new_id(6)}"


# ============================================================================
# Coercion helpers
# ============================================================================


def _str(value: Any, default: str | None = None) -> str | None:
    return value if isinstance(value, str) else default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _counter(value: Any) -> dict[str, int]:
    """Keep only non-negative integer counts keyed by string ids."""
    if not isinstance(value, dict):
        return {}
    out = {}
    for key, count in value.items():
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            continue
        if count < 0:
            continue
        out[str(key)] = int(count)
    return out


def _clamp_wins(wins: dict[str, int], played: dict[str, int]) -> dict[str, int]:
    """An agent can't have won more bouts than it played."""
    return {k: min(n, played.get(k, 0)) for k, n in wins.items() if played.get(k, 0) > 0}


# ============================================================================
# Records
# ============================================================================


@dataclass
class Agent:
    """A tournament participant."""

    id: str
    name: str
    created_at: str
    tag: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = {"id": self.id, "name": self.name, "createdAt": self.created_at}
        if self.tag is not None:
            out["tag"] = self.tag
        if self.meta:
            out["meta"] = dict(self.meta)
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Agent | None":
        if not isinstance(data, dict):
            return None
        agent_id = _str(data.get("id"))
        name = _str(data.get("name"))
        if not agent_id or not name:
            return None
        # Older documents stored the tag as "llm"
        tag = _str(data.get("tag")) or _str(data.get("llm"))
        meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
        return cls(
            id=agent_id,
            name=name,
            created_at=_str(data.get("createdAt"), iso(utc_now())),
            tag=tag,
            meta=dict(meta),
        )


@dataclass
class MatchEvent:
    t: str
    type: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"t": self.t, "type": self.type, "message": self.message}

    @classmethod
    def from_dict(cls, data: Any) -> "MatchEvent | None":
        if not isinstance(data, dict):
            return None
        message = _str(data.get("message"))
        if message is None:
            return None
        return cls(
            t=_str(data.get("t"), ""),
            type=_str(data.get("type"), "announce"),
            message=message,
        )


@dataclass
class Match:
    """One bout between exactly two agents.

    Created already running; ``status`` moves to complete exactly once.
    """

    id: str
    agents: list[str]
    started_at: str
    status: str = MATCH_RUNNING
    label: str | None = None
    ended_at: str | None = None
    winner_id: str | None = None
    tournament_run_id: str | None = None
    round: int | None = None
    problem_id: str | None = None
    problem_prompt: str | None = None
    events: list[MatchEvent] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.status == MATCH_RUNNING

    def loser_id(self) -> str | None:
        if self.winner_id is None:
            return None
        a, b = self.agents
        return b if self.winner_id == a else a

    def log(self, t: str, event_type: str, message: str) -> None:
        self.events.append(MatchEvent(t=t, type=event_type, message=message))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "agents": list(self.agents),
            "label": self.label,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "winnerId": self.winner_id,
            "tournamentRunId": self.tournament_run_id,
            "round": self.round,
            "problemId": self.problem_id,
            "problemPrompt": self.problem_prompt,
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Match | None":
        if not isinstance(data, dict):
            return None
        match_id = _str(data.get("id"))
        agents = _str_list(data.get("agents"))
        if not match_id or len(agents) != 2 or not all(agents) or agents[0] == agents[1]:
            logger.warning(f"Dropping match {match_id!r} with unusable agents {data.get('agents')!r}")
            return None
        status = data.get("status")
        if status not in (MATCH_RUNNING, MATCH_COMPLETE):
            status = MATCH_COMPLETE if data.get("winnerId") else MATCH_RUNNING
        winner_id = _str(data.get("winnerId"))
        if winner_id is not None and winner_id not in agents:
            winner_id = None
        if status == MATCH_COMPLETE and winner_id is None:
            # A completed bout with no usable winner can't be replayed into
            # stats; keep it visible but inert.
            logger.warning(f"Match {match_id} is complete without a valid winner")
        rnd = data.get("round")
        raw_events = data.get("events") if isinstance(data.get("events"), list) else []
        events = [MatchEvent.from_dict(e) for e in raw_events]
        return cls(
            id=match_id,
            agents=agents,
            started_at=_str(data.get("startedAt"), iso(utc_now())),
            status=status,
            label=_str(data.get("label")),
            ended_at=_str(data.get("endedAt")),
            winner_id=winner_id,
            tournament_run_id=_str(data.get("tournamentRunId")),
            round=rnd if isinstance(rnd, int) and not isinstance(rnd, bool) else None,
            problem_id=_str(data.get("problemId")),
            problem_prompt=_str(data.get("problemPrompt")),
            events=[e for e in events if e is not None],
        )


@dataclass
class Lobby:
    """The open waiting room. Join order is preserved, duplicates suppressed."""

    id: str
    started_at: str
    closes_at: str
    status: str = LOBBY_OPEN
    agent_ids: list[str] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status == LOBBY_OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "startedAt": self.started_at,
            "closesAt": self.closes_at,
            "agentIds": list(self.agent_ids),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Lobby | None":
        if not isinstance(data, dict) or not _str(data.get("id")):
            return None
        started_at = _str(data.get("startedAt"), iso(utc_now()))
        status = data.get("status") if data.get("status") in (LOBBY_OPEN, LOBBY_CLOSED) else LOBBY_OPEN
        ids: list[str] = []
        for agent_id in _str_list(data.get("agentIds")):
            if agent_id not in ids:
                ids.append(agent_id)
        return cls(
            id=data["id"],
            started_at=started_at,
            # No usable deadline: treat it as already passed
            closes_at=_str(data.get("closesAt"), started_at),
            status=status,
            agent_ids=ids,
        )


@dataclass
class TournamentRun:
    """Single-elimination bracket state.

    ``pool`` holds this round's ids still waiting for a pairing, ``next``
    the winners (and byes) carried into the following round.
    """

    id: str
    participants: list[str]
    status: str = RUN_IDLE
    round: int = 1
    pool: list[str] = field(default_factory=list)
    next: list[str] = field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None
    champion_id: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == RUN_RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "round": self.round,
            "participants": list(self.participants),
            "pool": list(self.pool),
            "next": list(self.next),
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "championId": self.champion_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TournamentRun | None":
        if not isinstance(data, dict) or not _str(data.get("id")):
            return None
        status = data.get("status")
        if status not in (RUN_IDLE, RUN_RUNNING, RUN_COMPLETE):
            status = RUN_IDLE
        try:
            rnd = max(1, int(data.get("round") or 1))
        except (TypeError, ValueError):
            rnd = 1
        pool = _str_list(data.get("pool"))
        nxt = [i for i in _str_list(data.get("next")) if i not in pool]
        return cls(
            id=data["id"],
            participants=_str_list(data.get("participants")),
            status=status,
            round=rnd,
            pool=pool,
            next=nxt,
            started_at=_str(data.get("startedAt")),
            completed_at=_str(data.get("completedAt")),
            champion_id=_str(data.get("championId")),
        )


@dataclass
class Ledger:
    """Per-agent win/played counters."""

    wins: dict[str, int] = field(default_factory=dict)
    played: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"wins": dict(self.wins), "played": dict(self.played)}

    @classmethod
    def from_dict(cls, data: Any) -> "Ledger":
        if not isinstance(data, dict):
            return cls()
        played = _counter(data.get("played"))
        return cls(wins=_clamp_wins(_counter(data.get("wins")), played), played=played)


@dataclass
class Season(Ledger):
    """A resettable counting epoch."""

    number: int = 1
    id: str = field(default_factory=new_run_id)
    started_at: str = field(default_factory=lambda: iso(utc_now()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "id": self.id,
            "startedAt": self.started_at,
            "wins": dict(self.wins),
            "played": dict(self.played),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Season":
        if not isinstance(data, dict):
            return cls()
        number = data.get("number")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            number = 1
        played = _counter(data.get("played"))
        return cls(
            wins=_clamp_wins(_counter(data.get("wins")), played),
            played=played,
            number=number,
            id=_str(data.get("id")) or new_run_id(),
            started_at=_str(data.get("startedAt")) or iso(utc_now()),
        )


@dataclass
class ArenaState:
    """The whole scheduler state as one serializable value."""

    agents: list[Agent] = field(default_factory=list)
    matches: list[Match] = field(default_factory=list)
    current_match_id: str | None = None
    lobby: Lobby | None = None
    tournament_run: TournamentRun | None = None
    season: Season = field(default_factory=Season)
    all_time: Ledger = field(default_factory=Ledger)

    def find_agent(self, agent_id: str) -> Agent | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def find_agent_by_name(self, name: str) -> Agent | None:
        key = name.casefold()
        for agent in self.agents:
            if agent.name.casefold() == key:
                return agent
        return None

    def find_match(self, match_id: str) -> Match | None:
        for match in self.matches:
            if match.id == match_id:
                return match
        return None

    def current_match(self) -> Match | None:
        if not self.current_match_id:
            return None
        return self.find_match(self.current_match_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agents": [a.to_dict() for a in self.agents],
            "lobby": self.lobby.to_dict() if self.lobby else None,
            "tournamentRun": self.tournament_run.to_dict() if self.tournament_run else None,
            "matches": [m.to_dict() for m in self.matches],
            "currentMatchId": self.current_match_id,
            "season": self.season.to_dict(),
            "allTime": self.all_time.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ArenaState":
        if not isinstance(data, dict):
            return cls()

        agents: list[Agent] = []
        seen: set[str] = set()
        for raw in data.get("agents") if isinstance(data.get("agents"), list) else []:
            agent = Agent.from_dict(raw)
            if agent is None or agent.id in seen:
                continue
            seen.add(agent.id)
            agents.append(agent)

        matches = []
        for raw in data.get("matches") if isinstance(data.get("matches"), list) else []:
            match = Match.from_dict(raw)
            if match is not None:
                matches.append(match)

        return cls(
            agents=agents,
            matches=matches,
            current_match_id=_str(data.get("currentMatchId")),
            lobby=Lobby.from_dict(data.get("lobby")),
            tournament_run=TournamentRun.from_dict(data.get("tournamentRun")),
            season=Season.from_dict(data.get("season")),
            all_time=Ledger.from_dict(data.get("allTime")),
        )
