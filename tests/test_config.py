"""Tests for gladiator.config - operator config file and env overrides."""

import textwrap
from pathlib import Path

import pytest

from gladiator.config import (
    ArenaConfig,
    DEFAULT_PORT,
    DEFAULT_STATE_PATH,
    apply_env,
    load_config,
    validate,
)

ENV_VARS = [
    "STATE_PATH",
    "LOBBY_MIN_AGENTS",
    "LOBBY_MAX_AGENTS",
    "LOBBY_WAIT_SECONDS",
    "ARENA_PERMADEATH",
    "MATCH_RESOLVE_SECONDS",
    "PORT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    """Temporary directory for config files."""
    return tmp_path


def _write_config(config_dir: Path, content: str) -> Path:
    """Write a config.toml and return the path."""
    config_path = config_dir / "config.toml"
    config_path.write_text(textwrap.dedent(content))
    return config_path


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, config_dir):
        cfg = load_config(config_dir / "nonexistent.toml")
        assert isinstance(cfg, ArenaConfig)
        assert cfg.lobby.min_agents == 2
        assert cfg.lobby.max_agents == 10
        assert cfg.lobby.wait_seconds == 240.0
        assert cfg.matches.resolve_after_seconds == 6.5
        assert cfg.matches.permadeath is True
        assert cfg.matches.problems_path is None
        assert cfg.server.state_path == DEFAULT_STATE_PATH
        assert cfg.server.port == DEFAULT_PORT

    def test_full_config(self, config_dir):
        path = _write_config(config_dir, """\
            [lobby]
            min_agents = 3
            max_agents = 8
            wait_seconds = 30

            [matches]
            resolve_after_seconds = 0
            permadeath = false
            recent_limit = 5
            problems = "/opt/problems.toml"

            [arena]
            state_path = "/var/lib/gladiator/state.json"
            tick_seconds = 0.5
            host = "127.0.0.1"
            port = 8080
        """)
        cfg = load_config(path)

        assert cfg.lobby.min_agents == 3
        assert cfg.lobby.max_agents == 8
        assert cfg.lobby.wait_seconds == 30.0
        assert cfg.matches.resolve_after_seconds == 0.0
        assert cfg.matches.permadeath is False
        assert cfg.matches.recent_limit == 5
        assert cfg.matches.problems_path == "/opt/problems.toml"
        assert cfg.server.state_path == "/var/lib/gladiator/state.json"
        assert cfg.server.tick_seconds == 0.5
        assert cfg.server.host == "127.0.0.1"
        assert cfg.server.port == 8080

    def test_tilde_expansion(self, config_dir):
        path = _write_config(config_dir, """\
            [matches]
            problems = "~/gladiator/problems.toml"

            [arena]
            state_path = "~/gladiator/state.json"
        """)
        cfg = load_config(path)
        home = str(Path.home())
        assert cfg.matches.problems_path.startswith(home)
        assert cfg.server.state_path.startswith(home)
        assert "~" not in cfg.server.state_path

    def test_corrupt_toml_returns_defaults(self, config_dir):
        path = config_dir / "config.toml"
        path.write_text("this is not [valid toml }{")
        cfg = load_config(path)
        assert cfg.lobby.max_agents == 10

    def test_mistyped_values_keep_defaults(self, config_dir):
        path = _write_config(config_dir, """\
            [lobby]
            min_agents = "three"
            max_agents = true
        """)
        cfg = load_config(path)
        assert cfg.lobby.min_agents == 2
        assert cfg.lobby.max_agents == 10

    def test_empty_file(self, config_dir):
        path = config_dir / "config.toml"
        path.write_text("")
        cfg = load_config(path)
        assert cfg.server.port == DEFAULT_PORT


class TestEnvOverrides:
    def test_env_beats_file(self, config_dir, monkeypatch):
        path = _write_config(config_dir, """\
            [lobby]
            max_agents = 8
        """)
        monkeypatch.setenv("LOBBY_MAX_AGENTS", "4")
        monkeypatch.setenv("LOBBY_WAIT_SECONDS", "15")
        monkeypatch.setenv("MATCH_RESOLVE_SECONDS", "0")
        monkeypatch.setenv("ARENA_PERMADEATH", "0")
        monkeypatch.setenv("STATE_PATH", "/tmp/arena.json")
        monkeypatch.setenv("PORT", "9000")

        cfg = load_config(path)

        assert cfg.lobby.max_agents == 4
        assert cfg.lobby.wait_seconds == 15.0
        assert cfg.matches.resolve_after_seconds == 0.0
        assert cfg.matches.permadeath is False
        assert cfg.server.state_path == "/tmp/arena.json"
        assert cfg.server.port == 9000

    def test_env_can_be_skipped(self, config_dir, monkeypatch):
        monkeypatch.setenv("LOBBY_MAX_AGENTS", "4")
        cfg = load_config(config_dir / "missing.toml", env=False)
        assert cfg.lobby.max_agents == 10

    def test_invalid_env_ignored(self, monkeypatch):
        monkeypatch.setenv("LOBBY_MIN_AGENTS", "lots")
        cfg = apply_env(ArenaConfig())
        assert cfg.lobby.min_agents == 2

    def test_permadeath_stays_on_unless_zero(self, monkeypatch):
        monkeypatch.setenv("ARENA_PERMADEATH", "1")
        assert apply_env(ArenaConfig()).matches.permadeath is True


class TestValidate:
    def test_min_agents_floor(self):
        cfg = ArenaConfig()
        cfg.lobby.min_agents = 1
        assert validate(cfg).lobby.min_agents == 2

    def test_max_below_min_raised(self):
        cfg = ArenaConfig()
        cfg.lobby.min_agents = 6
        cfg.lobby.max_agents = 3
        assert validate(cfg).lobby.max_agents == 6

    def test_negative_resolve_disables_timer(self):
        cfg = ArenaConfig()
        cfg.matches.resolve_after_seconds = -1
        assert validate(cfg).matches.resolve_after_seconds == 0.0

    def test_tick_must_be_positive(self):
        cfg = ArenaConfig()
        cfg.server.tick_seconds = 0
        assert validate(cfg).server.tick_seconds == 1.0
