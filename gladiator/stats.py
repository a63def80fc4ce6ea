"""
gladiator/stats.py - Season and all-time win/played counters.

Ids are counted whether or not the agent is still on the roster; a
permadead agent's history has to stay queryable.
"""

import logging
from datetime import datetime

from .models import Ledger, Season, iso, new_run_id

logger = logging.getLogger(__name__)


def _inc(counter: dict[str, int], key: str, n: int = 1) -> None:
    counter[key] = counter.get(key, 0) + n


def record_outcome(season: Ledger, all_time: Ledger, winner_id: str, loser_id: str) -> None:
    """Count one resolved bout in both ledgers, in place."""
    if not winner_id or not loser_id:
        raise ValueError("winner_id and loser_id are required")
    for ledger in (season, all_time):
        _inc(ledger.played, winner_id)
        _inc(ledger.played, loser_id)
        _inc(ledger.wins, winner_id)


def reset_season(previous: Season, now: datetime) -> Season:
    """Start the next season: zeroed counters, bumped generation, new run id."""
    return Season(number=previous.number + 1, id=new_run_id(), started_at=iso(now))


def reset_all(
    previous: Season, all_time: Ledger, now: datetime, wipe_all_time: bool = False
) -> tuple[Season, Ledger]:
    """Season rollover, optionally wiping the all-time ledger too."""
    season = reset_season(previous, now)
    if wipe_all_time:
        logger.info("All-time ledger wiped")
        all_time = Ledger()
    return season, all_time


def record_for(ledger: Ledger, agent_id: str) -> dict[str, int]:
    """Win/loss/played summary for one agent."""
    played = ledger.played.get(agent_id, 0)
    wins = ledger.wins.get(agent_id, 0)
    return {"wins": wins, "losses": played - wins, "played": played}
