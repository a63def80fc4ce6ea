"""
gladiator/matches.py - The single active match.

Only one match runs at a time, system-wide. A match is created running,
narrated through an append-only event log, and resolved exactly once:

    resolve -> record stats -> (permadeath) -> clear current -> advance bracket -> tick

The fallback timer is a stand-in for a real verdict arriving from outside.
With ``resolve_after_seconds = 0`` nothing is scheduled and only an explicit
resolve (carrying the verdict) ends a match.
"""

import logging
import random
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Protocol

from . import stats
from .config import MatchConfig
from .errors import ConflictError, NotFoundError, ValidationError
from .models import MATCH_COMPLETE, MATCH_RUNNING, ArenaState, Match, iso, new_id
from .problems import ProblemSource
from .timers import Schedule, TimerHandle, thread_timer

if TYPE_CHECKING:
    from .bracket import BracketScheduler

logger = logging.getLogger(__name__)


# ============================================================================
# Verdicts
# ============================================================================


class VerdictSource(Protocol):
    """Decides who won. Must return one of ``match.agents``."""

    def decide(self, match: Match) -> str: ...


class CoinFlipVerdict:
    """Uniform pick between the two participants."""

    def __init__(self, rng: random.Random):
        self._rng = rng

    def decide(self, match: Match) -> str:
        return self._rng.choice(match.agents)


# ============================================================================
# Engine
# ============================================================================


class MatchEngine:
    def __init__(
        self,
        state: ArenaState,
        config: MatchConfig,
        clock: Callable[[], datetime],
        rng: random.Random,
        notify: Callable[..., None],
        changed: Callable[[], None],
        verdict: VerdictSource | None = None,
        schedule: Schedule = thread_timer,
        problems: ProblemSource | None = None,
        on_timeout: Callable[[str], None] | None = None,
    ):
        self.state = state
        self.config = config
        self._clock = clock
        self._notify = notify
        self._changed = changed
        self._fallback = CoinFlipVerdict(rng)
        self.verdict = verdict or self._fallback
        self._schedule = schedule
        self.problems = problems
        self._on_timeout = on_timeout or self._timeout
        self._timers: dict[str, TimerHandle] = {}
        self.bracket: "BracketScheduler | None" = None

    def _now(self) -> str:
        return iso(self._clock())

    def _name(self, agent_id: str) -> str:
        agent = self.state.find_agent(agent_id)
        return agent.name if agent else agent_id

    def current(self) -> Match | None:
        """The running match, if any."""
        match = self.state.current_match()
        if match is None or not match.is_running:
            return None
        return match

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_match(
        self,
        a_id: str,
        b_id: str,
        label: str | None = None,
        run_id: str | None = None,
        round: int | None = None,
        resolve_after: float | None = None,
    ) -> Match:
        if not a_id or not b_id:
            raise ValidationError("agent_ids_required", "two agent ids are required")
        if a_id == b_id:
            raise ValidationError("same_agent", "an agent can't fight itself")
        current = self.current()
        if current is not None:
            raise ConflictError("match_running", f"match {current.id} is already running")
        a = self.state.find_agent(a_id)
        b = self.state.find_agent(b_id)
        if a is None or b is None:
            missing = a_id if a is None else b_id
            raise NotFoundError("agent_not_found", f"agent {missing} not found")

        now = self._now()
        match = Match(
            id=new_id(12),
            agents=[a.id, b.id],
            started_at=now,
            status=MATCH_RUNNING,
            label=label,
            tournament_run_id=run_id,
            round=round,
        )
        if label:
            match.log(now, "announce", label)
        match.log(now, "start", f"Match started: {a.name} vs {b.name}")
        match.log(now, "announce", "The portcullis rises. The stands go quiet.")
        self._attach_problem(match)

        self.state.matches.append(match)
        self.state.current_match_id = match.id
        logger.info(f"Match {match.id} started: {a.name} vs {b.name}" + (f" ({label})" if label else ""))

        self._changed()
        self._notify("match", match.to_dict())
        self._notify("state")

        delay = self.config.resolve_after_seconds if resolve_after is None else resolve_after
        self.arm(match.id, delay)
        return match

    def _attach_problem(self, match: Match) -> None:
        if self.problems is None:
            return
        try:
            problem = self.problems.pick()
        except Exception as e:
            logger.warning(f"Problem source failed for match {match.id}: {e}")
            return
        if problem is None:
            return
        match.problem_id = problem.id
        match.problem_prompt = problem.prompt
        match.log(self._now(), "problem", f"Problem: {problem.prompt}")

    # ------------------------------------------------------------------
    # Fallback timers
    # ------------------------------------------------------------------

    def arm(self, match_id: str, delay: float | None) -> None:
        """Schedule automatic resolution. No-op for a falsy delay."""
        if not delay or delay <= 0:
            return
        self.disarm(match_id)
        self._timers[match_id] = self._schedule(delay, lambda: self._on_timeout(match_id))

    def disarm(self, match_id: str) -> None:
        timer = self._timers.pop(match_id, None)
        if timer is not None:
            timer.cancel()

    def disarm_all(self) -> None:
        for match_id in list(self._timers):
            self.disarm(match_id)

    def _timeout(self, match_id: str) -> None:
        try:
            self.resolve(match_id)
        except Exception as e:
            logger.error(f"Auto-resolve failed for match {match_id}: {e}")

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _decide(self, match: Match, forced_winner_id: str | None) -> str:
        if forced_winner_id:
            if forced_winner_id in match.agents:
                return forced_winner_id
            logger.warning(
                f"Ignoring winner {forced_winner_id} for match {match.id}: not a participant"
            )
        try:
            winner_id = self.verdict.decide(match)
        except Exception as e:
            logger.warning(f"Verdict source failed for match {match.id}: {e}; flipping a coin")
            return self._fallback.decide(match)
        if winner_id not in match.agents:
            logger.warning(f"Verdict {winner_id!r} for match {match.id} is not a participant; flipping a coin")
            return self._fallback.decide(match)
        return winner_id

    def resolve(self, match_id: str, forced_winner_id: str | None = None) -> tuple[Match, bool]:
        """Resolve a match. Returns ``(match, already_resolved)``.

        Resolving a complete match is a no-op that returns the existing
        record; an unknown id raises NotFoundError.
        """
        match = self.state.find_match(match_id)
        if match is None:
            raise NotFoundError("match_not_found", f"match {match_id} not found")
        if not match.is_running:
            return match, True

        winner_id = self._decide(match, forced_winner_id)
        a_id, b_id = match.agents
        loser_id = b_id if winner_id == a_id else a_id
        winner_name = self._name(winner_id)
        loser_name = self._name(loser_id)

        # Counted first: a bad id must leave the match untouched
        stats.record_outcome(self.state.season, self.state.all_time, winner_id, loser_id)

        now = self._now()
        match.status = MATCH_COMPLETE
        match.ended_at = now
        match.winner_id = winner_id
        match.log(now, "clash", "Blades ring out across the sand.")

        if self.config.permadeath:
            match.log(now, "result", f"{winner_name} defeats {loser_name}. The fallen do not return.")
            before = len(self.state.agents)
            self.state.agents = [a for a in self.state.agents if a.id != loser_id]
            if len(self.state.agents) != before:
                match.log(now, "death", f"{loser_name} has been removed from the roster.")
                logger.info(f"Permadeath: {loser_name} ({loser_id}) removed from roster")
        else:
            match.log(now, "result", f"{winner_name} defeats {loser_name}.")

        if self.state.current_match_id == match.id:
            self.state.current_match_id = None
        self.disarm(match.id)
        logger.info(f"Match {match.id} resolved: {winner_name} defeats {loser_name}")

        bracket = self.bracket
        if bracket is not None:
            run = bracket.run
            if run is not None and run.is_running and match.tournament_run_id == run.id:
                bracket.on_match_resolved(winner_id)

        self._changed()
        self._notify("match", match.to_dict())
        self._notify("agents")
        self._notify("state")

        if bracket is not None:
            try:
                bracket.tick()
            except Exception as e:
                logger.error(f"Bracket tick failed after match {match.id}: {e}")
        return match, False
