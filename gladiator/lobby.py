"""
gladiator/lobby.py - The waiting room in front of the bracket.

At most one lobby is open at a time. It opens lazily on the first join
after the previous one closed and starts its deadline then. Readiness is
polled by the arena loop rather than timed per lobby, so there's no
in-flight timer to recover after a restart.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from .config import LobbyConfig
from .models import LOBBY_CLOSED, LOBBY_OPEN, ArenaState, Lobby, iso, new_id, parse_iso

logger = logging.getLogger(__name__)


class LobbyManager:
    def __init__(
        self,
        state: ArenaState,
        config: LobbyConfig,
        clock: Callable[[], datetime],
        changed: Callable[[], None],
    ):
        self.state = state
        self.config = config
        self._clock = clock
        self._changed = changed

    @property
    def lobby(self) -> Lobby | None:
        return self.state.lobby

    def open_lobby(self) -> Lobby | None:
        lobby = self.state.lobby
        return lobby if lobby is not None and lobby.is_open else None

    def ensure_open(self) -> Lobby:
        """Return the open lobby, opening a fresh one if needed."""
        lobby = self.open_lobby()
        if lobby is not None:
            return lobby
        started = self._clock()
        lobby = Lobby(
            id=new_id(10),
            status=LOBBY_OPEN,
            started_at=iso(started),
            closes_at=iso(started + timedelta(seconds=self.config.wait_seconds)),
        )
        self.state.lobby = lobby
        logger.info(f"Lobby {lobby.id} opened (closes {lobby.closes_at})")
        self._changed()
        return lobby

    def add_agent(self, agent_id: str) -> bool:
        """Put an agent in the open lobby. Returns False if already listed."""
        if not agent_id:
            return False
        lobby = self.ensure_open()
        if agent_id in lobby.agent_ids:
            return False
        lobby.agent_ids.append(agent_id)
        logger.info(f"Lobby {lobby.id}: {agent_id} joined ({len(lobby.agent_ids)}/{self.config.max_agents})")
        self._changed()
        return True

    def is_ready_to_start(self) -> bool:
        lobby = self.open_lobby()
        if lobby is None:
            return False
        n = len(lobby.agent_ids)
        if n < self.config.min_agents:
            return False
        if n >= self.config.max_agents:
            return True
        closes_at = parse_iso(lobby.closes_at)
        if closes_at is None:
            return False
        return self._clock() >= closes_at

    def close_and_hand_off(self) -> list[str]:
        """Close the lobby and return the ids that should enter the bracket.

        Ids no longer on the roster are dropped. Returns [] and leaves the
        lobby open if too few remain. Anyone past capacity is carried into
        a freshly opened lobby.
        """
        lobby = self.open_lobby()
        if lobby is None:
            return []

        valid = [i for i in lobby.agent_ids if self.state.find_agent(i) is not None]
        if len(valid) != len(lobby.agent_ids):
            logger.info(f"Lobby {lobby.id}: dropped {len(lobby.agent_ids) - len(valid)} departed agents")
            lobby.agent_ids = valid
            self._changed()
        if len(valid) < self.config.min_agents:
            return []

        taken = valid[: self.config.max_agents]
        overflow = valid[self.config.max_agents :]
        lobby.status = LOBBY_CLOSED
        logger.info(f"Lobby {lobby.id} closed with {len(taken)} agents")
        self._changed()

        if overflow:
            carried = self.ensure_open()
            for agent_id in overflow:
                if agent_id not in carried.agent_ids:
                    carried.agent_ids.append(agent_id)
            logger.info(f"Lobby {carried.id}: carried over {len(overflow)} agents past capacity")
        return taken
