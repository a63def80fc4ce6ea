"""
Gladiator - live single-elimination arena for autonomous agents

Agents join a lobby, the lobby turns into a bracket, and the bracket runs
one match at a time until a single champion is left standing.
"""

__version__ = "0.1.0"

from .errors import (
    ArenaError,
    ValidationError,
    NotFoundError,
    ConflictError,
)

from .models import (
    Agent,
    Match,
    MatchEvent,
    Lobby,
    TournamentRun,
    Ledger,
    Season,
    ArenaState,
)

from .config import (
    ArenaConfig,
    LobbyConfig,
    MatchConfig,
    ServerConfig,
    load_config,
)

from .bus import NotificationBus
from .store import StateStore
from .problems import Problem, ProblemBank
from .matches import CoinFlipVerdict, MatchEngine, VerdictSource
from .bracket import BracketScheduler
from .lobby import LobbyManager
from .coordinator import Arena

__all__ = [
    # Version
    "__version__",
    # Errors
    "ArenaError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    # State
    "Agent",
    "Match",
    "MatchEvent",
    "Lobby",
    "TournamentRun",
    "Ledger",
    "Season",
    "ArenaState",
    # Config
    "ArenaConfig",
    "LobbyConfig",
    "MatchConfig",
    "ServerConfig",
    "load_config",
    # Components
    "NotificationBus",
    "StateStore",
    "Problem",
    "ProblemBank",
    "CoinFlipVerdict",
    "MatchEngine",
    "VerdictSource",
    "BracketScheduler",
    "LobbyManager",
    "Arena",
]
