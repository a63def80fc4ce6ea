"""
gladiator/bracket.py - Single-elimination progression.

Each round drains ``pool`` two ids at a time into matches; winners collect
in ``next``. When a round starts with an odd pool, one id gets a bye
straight into ``next`` before any pairing happens. When the pool is empty
the round is over: either one id is left in ``next`` (the champion) or
``next`` is reshuffled into the new pool.

Ids only ever move pool -> match -> next, or pool -> next on a bye, or out
of the bracket when they lose, so at any point pool, next and the
eliminated set partition the original participants.
"""

import logging
import random
from datetime import datetime
from typing import Callable

from .errors import ConflictError
from .matches import MatchEngine
from .models import RUN_COMPLETE, RUN_RUNNING, ArenaState, Match, TournamentRun, iso, new_id

logger = logging.getLogger(__name__)


class BracketScheduler:
    def __init__(
        self,
        state: ArenaState,
        engine: MatchEngine,
        rng: random.Random,
        clock: Callable[[], datetime],
        notify: Callable[..., None],
        changed: Callable[[], None],
    ):
        self.state = state
        self.engine = engine
        self._rng = rng
        self._clock = clock
        self._notify = notify
        self._changed = changed
        engine.bracket = self

    @property
    def run(self) -> TournamentRun | None:
        return self.state.tournament_run

    @property
    def is_running(self) -> bool:
        run = self.run
        return run is not None and run.is_running

    def _shuffled(self, ids: list[str]) -> list[str]:
        out = list(ids)
        self._rng.shuffle(out)
        return out

    def start(self, participant_ids: list[str]) -> TournamentRun:
        """Open a new bracket. Replaces any finished run."""
        ids: list[str] = []
        for agent_id in participant_ids:
            if agent_id and agent_id not in ids:
                ids.append(agent_id)
        if len(ids) < 2:
            raise ConflictError("not_enough_participants", "a bracket needs at least 2 participants")
        if self.is_running:
            raise ConflictError("tournament_running", f"tournament {self.run.id} is still running")

        run = TournamentRun(
            id=new_id(10),
            participants=list(ids),
            status=RUN_RUNNING,
            round=1,
            pool=self._shuffled(ids),
            next=[],
            started_at=iso(self._clock()),
        )
        self.state.tournament_run = run
        logger.info(f"Tournament {run.id} started with {len(ids)} participants")
        self._changed()
        self._notify("tournament", run.to_dict())
        self._notify("state")
        return run

    def on_match_resolved(self, winner_id: str) -> None:
        """Carry a winner into the next round. Does not tick."""
        run = self.run
        if run is None or not run.is_running:
            return
        if winner_id not in run.next and winner_id not in run.pool:
            run.next.append(winner_id)
            self._changed()

    def eliminated(self) -> list[str]:
        """Participants no longer in contention (excludes the live pairing)."""
        run = self.run
        if run is None:
            return []
        live: set[str] = set(run.pool) | set(run.next)
        current = self.engine.current()
        if current is not None and current.tournament_run_id == run.id:
            live.update(current.agents)
        return [i for i in run.participants if i not in live]

    def tick(self) -> Match | None:
        """Advance until a match is running or the bracket completes.

        Returns the match it created, if any. Does nothing while any match
        (bracket or quick) is running.
        """
        while True:
            run = self.run
            if run is None or not run.is_running:
                return None
            if self.engine.current() is not None:
                return None

            if not run.pool:
                if len(run.next) == 1:
                    self._complete(run, run.next[0])
                    return None
                if not run.next:
                    logger.warning(f"Tournament {run.id} ran out of participants")
                    self._complete(run, None)
                    return None
                run.round += 1
                run.pool = self._shuffled(run.next)
                run.next = []
                logger.info(f"Tournament {run.id}: round {run.round} with {len(run.pool)} agents")
                self._changed()
                self._notify("state")
                continue

            if len(run.pool) % 2 == 1:
                agent_id = run.pool.pop()
                run.next.append(agent_id)
                logger.info(f"Tournament {run.id}: {agent_id} gets a bye in round {run.round}")
                self._changed()
                self._notify("bye", {"tournamentRunId": run.id, "round": run.round, "agentId": agent_id})
                self._notify("state")
                continue

            a_id = run.pool.pop(0)
            b_id = run.pool.pop(0)
            present = [i for i in (a_id, b_id) if self.state.find_agent(i) is not None]
            if len(present) < 2:
                self._walkover(run, present, [i for i in (a_id, b_id) if i not in present])
                continue

            return self.engine.create_match(
                a_id, b_id, label=f"ROUND {run.round}", run_id=run.id, round=run.round
            )

    def _walkover(self, run: TournamentRun, present: list[str], missing: list[str]) -> None:
        """Pairing with an agent that left the roster: the other one advances."""
        for agent_id in missing:
            logger.info(f"Tournament {run.id}: {agent_id} is gone from the roster, eliminated")
        for agent_id in present:
            run.next.append(agent_id)
            logger.info(f"Tournament {run.id}: {agent_id} advances by walkover")
            self._notify(
                "bye",
                {"tournamentRunId": run.id, "round": run.round, "agentId": agent_id, "walkover": True},
            )
        self._changed()
        self._notify("state")

    def _complete(self, run: TournamentRun, champion_id: str | None) -> None:
        run.status = RUN_COMPLETE
        run.champion_id = champion_id
        run.completed_at = iso(self._clock())
        if champion_id is not None:
            agent = self.state.find_agent(champion_id)
            name = agent.name if agent else champion_id
            logger.info(f"Tournament {run.id} complete. Champion: {name}")
            self._notify("champion", {"tournamentRunId": run.id, "agentId": champion_id, "name": name})
        self._changed()
        self._notify("state")
