"""
gladiator/config.py - Arena configuration

Reads operator config from a platform-appropriate config directory:
  - macOS/Linux: ~/.gladiator/config.toml
  - Windows: %APPDATA%\\gladiator\\config.toml

Environment variables override the file, so container deployments can run
without one.

Example:
    [lobby]
    min_agents = 2
    max_agents = 10
    wait_seconds = 240

    [matches]
    resolve_after_seconds = 6.5   # 0 = only external verdicts resolve
    permadeath = true
    recent_limit = 10
    problems = "~/gladiator/problems.toml"

    [arena]
    state_path = "data/state.json"
    tick_seconds = 1.0
    port = 5195
"""

import logging
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "gladiator"
    return Path.home() / ".gladiator"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_STATE_PATH = "data/state.json"
DEFAULT_PORT = 5195


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class LobbyConfig:
    """When a waiting lobby turns into a tournament."""

    min_agents: int = 2
    max_agents: int = 10
    wait_seconds: float = 240.0


@dataclass
class MatchConfig:
    """Match lifecycle policy."""

    resolve_after_seconds: float = 6.5  # fallback timer; 0 disables it
    permadeath: bool = True
    recent_limit: int = 10
    problems_path: str | None = None


@dataclass
class ServerConfig:
    """Process-level settings: persistence, loop cadence, HTTP bind."""

    state_path: str = DEFAULT_STATE_PATH
    tick_seconds: float = 1.0
    save_debounce_seconds: float = 0.25
    save_retry_seconds: float = 5.0
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT


@dataclass
class ArenaConfig:
    """Top-level configuration."""

    lobby: LobbyConfig = field(default_factory=LobbyConfig)
    matches: MatchConfig = field(default_factory=MatchConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# ============================================================================
# Parsing
# ============================================================================


def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    return str(Path(path).expanduser())


def _number(data: dict, key: str, default, kind=float):
    """Read a numeric key, keeping the default for missing or mistyped values."""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning(f"Ignoring non-numeric {key}={value!r}")
        return default
    return kind(value)


def _parse_lobby(data: dict) -> LobbyConfig:
    d = LobbyConfig()
    return LobbyConfig(
        min_agents=_number(data, "min_agents", d.min_agents, int),
        max_agents=_number(data, "max_agents", d.max_agents, int),
        wait_seconds=_number(data, "wait_seconds", d.wait_seconds),
    )


def _parse_matches(data: dict) -> MatchConfig:
    d = MatchConfig()
    problems = data.get("problems")
    return MatchConfig(
        resolve_after_seconds=_number(data, "resolve_after_seconds", d.resolve_after_seconds),
        permadeath=bool(data.get("permadeath", d.permadeath)),
        recent_limit=_number(data, "recent_limit", d.recent_limit, int),
        problems_path=_expand(problems) if isinstance(problems, str) else None,
    )


def _parse_server(data: dict) -> ServerConfig:
    d = ServerConfig()
    state_path = data.get("state_path")
    host = data.get("host")
    return ServerConfig(
        state_path=_expand(state_path) if isinstance(state_path, str) else d.state_path,
        tick_seconds=_number(data, "tick_seconds", d.tick_seconds),
        save_debounce_seconds=_number(data, "save_debounce_seconds", d.save_debounce_seconds),
        save_retry_seconds=_number(data, "save_retry_seconds", d.save_retry_seconds),
        host=host if isinstance(host, str) else d.host,
        port=_number(data, "port", d.port, int),
    )


def _env_number(name: str, kind=float):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return kind(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return None


def apply_env(config: ArenaConfig) -> ArenaConfig:
    """Overlay environment variables onto a loaded config (in place)."""
    state_path = os.environ.get("STATE_PATH")
    if state_path:
        config.server.state_path = _expand(state_path)

    value = _env_number("LOBBY_MIN_AGENTS", int)
    if value is not None:
        config.lobby.min_agents = value
    value = _env_number("LOBBY_MAX_AGENTS", int)
    if value is not None:
        config.lobby.max_agents = value
    value = _env_number("LOBBY_WAIT_SECONDS")
    if value is not None:
        config.lobby.wait_seconds = value
    value = _env_number("MATCH_RESOLVE_SECONDS")
    if value is not None:
        config.matches.resolve_after_seconds = value
    value = _env_number("PORT", int)
    if value is not None:
        config.server.port = value

    permadeath = os.environ.get("ARENA_PERMADEATH")
    if permadeath is not None and permadeath.strip():
        config.matches.permadeath = permadeath.strip() != "0"

    return config


def validate(config: ArenaConfig) -> ArenaConfig:
    """Clamp values that would make the scheduler misbehave (in place)."""
    lobby = config.lobby
    if lobby.min_agents < 2:
        logger.warning(f"min_agents={lobby.min_agents} is below 2; using 2")
        lobby.min_agents = 2
    if lobby.max_agents < lobby.min_agents:
        logger.warning(
            f"max_agents={lobby.max_agents} is below min_agents; using {lobby.min_agents}"
        )
        lobby.max_agents = lobby.min_agents
    if lobby.wait_seconds < 0:
        lobby.wait_seconds = 0.0

    matches = config.matches
    if matches.resolve_after_seconds < 0:
        matches.resolve_after_seconds = 0.0
    if matches.recent_limit < 1:
        matches.recent_limit = 1

    server = config.server
    if server.tick_seconds <= 0:
        logger.warning(f"tick_seconds={server.tick_seconds} must be positive; using 1.0")
        server.tick_seconds = 1.0
    if server.save_debounce_seconds < 0:
        server.save_debounce_seconds = 0.0
    return config


def load_config(path: Path | None = None, env: bool = True) -> ArenaConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.gladiator/config.toml)
        env: Apply environment variable overrides on top of the file

    Returns:
        ArenaConfig. Missing file or bad TOML returns defaults.
    """
    config_path = path or CONFIG_PATH
    config = ArenaConfig()

    raw: dict = {}
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                raw = tomllib.load(f)
        except Exception as e:
            logger.warning(f"Failed to parse {config_path}: {e}")
            raw = {}

    if isinstance(raw.get("lobby"), dict):
        config.lobby = _parse_lobby(raw["lobby"])
    if isinstance(raw.get("matches"), dict):
        config.matches = _parse_matches(raw["matches"])
    if isinstance(raw.get("arena"), dict):
        config.server = _parse_server(raw["arena"])

    if env:
        apply_env(config)
    return validate(config)
