"""Tests for gladiator.matches - the single active match and its resolution."""

import pytest

from conftest import add_agents, event_types
from gladiator.config import ArenaConfig
from gladiator.errors import ConflictError, NotFoundError, ValidationError
from gladiator.models import MATCH_COMPLETE, MATCH_RUNNING
from gladiator.problems import Problem, ProblemBank


class FixedVerdict:
    def __init__(self, winner_id):
        self.winner_id = winner_id
        self.calls = 0

    def decide(self, match):
        self.calls += 1
        return self.winner_id


class BrokenVerdict:
    def decide(self, match):
        raise RuntimeError("judge unavailable")


class BrokenProblems:
    def pick(self):
        raise RuntimeError("bank offline")


def _config(permadeath=True, resolve_after=6.5) -> ArenaConfig:
    config = ArenaConfig()
    config.matches.permadeath = permadeath
    config.matches.resolve_after_seconds = resolve_after
    return config


def _match_timers(timers):
    # Store timers use the debounce delay; engine timers don't
    return [t for t in timers.live() if t.delay != 0.25]


# ======================================================================
# Creation
# ======================================================================


class TestCreateMatch:
    def test_creates_running_current_match(self, make_arena):
        arena = make_arena()
        add_agents(arena, "Maximus", "Spartacus")
        match = arena.engine.create_match("maximus", "spartacus", label="QUICK MATCH")

        assert match.status == MATCH_RUNNING
        assert match.agents == ["maximus", "spartacus"]
        assert arena.state.current_match_id == match.id
        assert arena.engine.current() is match
        assert match.winner_id is None
        assert match.ended_at is None

    def test_event_log_narrates_start(self, make_arena):
        arena = make_arena()
        add_agents(arena, "Maximus", "Spartacus")
        match = arena.engine.create_match("maximus", "spartacus", label="ROUND 1")

        assert match.events[0].type == "announce"
        assert match.events[0].message == "ROUND 1"
        start = [e for e in match.events if e.type == "start"]
        assert start[0].message == "Match started: Maximus vs Spartacus"

    def test_publishes_match_and_state(self, make_arena, events):
        arena = make_arena()
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        types = event_types(events)
        assert "match" in types
        assert types[-1] == "state"
        assert events[-1]["payload"]["currentMatch"]["id"] == match.id

    def test_same_agent_rejected(self, make_arena):
        arena = make_arena()
        add_agents(arena, "A")
        with pytest.raises(ValidationError) as exc:
            arena.engine.create_match("a", "a")
        assert exc.value.reason == "same_agent"
        assert exc.value.status == 400

    def test_missing_ids_rejected(self, make_arena):
        arena = make_arena()
        with pytest.raises(ValidationError) as exc:
            arena.engine.create_match("a", "")
        assert exc.value.reason == "agent_ids_required"

    def test_unknown_agent(self, make_arena):
        arena = make_arena()
        add_agents(arena, "A")
        with pytest.raises(NotFoundError) as exc:
            arena.engine.create_match("a", "ghost")
        assert exc.value.reason == "agent_not_found"
        assert arena.state.matches == []

    def test_only_one_match_at_a_time(self, make_arena):
        arena = make_arena()
        add_agents(arena, "A", "B", "C", "D")
        first = arena.engine.create_match("a", "b")
        with pytest.raises(ConflictError) as exc:
            arena.engine.create_match("c", "d")
        assert exc.value.reason == "match_running"
        assert exc.value.status == 409
        assert [m.id for m in arena.state.matches] == [first.id]


class TestProblems:
    def test_problem_attached(self, make_arena):
        bank = ProblemBank([Problem(id="fizz", prompt="Print fizzbuzz")])
        arena = make_arena(problems=bank)
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")

        assert match.problem_id == "fizz"
        assert match.problem_prompt == "Print fizzbuzz"
        assert [e.message for e in match.events if e.type == "problem"] == ["Problem: Print fizzbuzz"]
        assert match.to_dict()["problemId"] == "fizz"

    def test_empty_bank_attaches_nothing(self, make_arena):
        arena = make_arena(problems=ProblemBank([Problem(id="old", prompt="x", active=False)]))
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        assert match.problem_id is None
        assert not [e for e in match.events if e.type == "problem"]

    def test_failing_source_does_not_block_match(self, make_arena):
        arena = make_arena(problems=BrokenProblems())
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        assert match.is_running
        assert match.problem_id is None


# ======================================================================
# Fallback timers
# ======================================================================


class TestTimers:
    def test_timer_armed_with_configured_delay(self, make_arena, timers):
        arena = make_arena(config=_config(resolve_after=6.5))
        add_agents(arena, "A", "B")
        arena.engine.create_match("a", "b")
        assert [t.delay for t in _match_timers(timers)] == [6.5]

    def test_override_delay(self, make_arena, timers):
        arena = make_arena()
        add_agents(arena, "A", "B")
        arena.engine.create_match("a", "b", resolve_after=2.0)
        assert [t.delay for t in _match_timers(timers)] == [2.0]

    def test_zero_disables_timer(self, make_arena, timers):
        arena = make_arena(config=_config(resolve_after=0))
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        assert _match_timers(timers) == []
        assert match.is_running

    def test_timer_resolves_match(self, make_arena, timers):
        arena = make_arena(config=_config(permadeath=False))
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")

        timers.fire_all()

        assert match.status == MATCH_COMPLETE
        assert match.winner_id in ("a", "b")
        assert arena.engine.current() is None

    def test_explicit_resolve_cancels_timer(self, make_arena, timers):
        arena = make_arena()
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        timer = _match_timers(timers)[0]

        arena.resolve_match(match.id, "a")

        assert timer.cancelled
        assert _match_timers(timers) == []

    def test_late_timer_is_harmless(self, make_arena, timers):
        arena = make_arena()
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        timer = _match_timers(timers)[0]
        arena.resolve_match(match.id, "b")
        played = dict(arena.state.season.played)

        # A timer that fires anyway (cancel raced) must not double count
        timer.fn()

        assert match.winner_id == "b"
        assert arena.state.season.played == played


# ======================================================================
# Resolution
# ======================================================================


class TestResolve:
    def test_forced_winner(self, make_arena):
        arena = make_arena(config=_config(permadeath=False))
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")

        resolved, already = arena.resolve_match(match.id, "b")

        assert already is False
        assert resolved.winner_id == "b"
        assert resolved.loser_id() == "a"
        assert resolved.ended_at is not None
        assert arena.state.current_match_id is None
        assert arena.state.season.wins == {"b": 1}
        assert arena.state.season.played == {"a": 1, "b": 1}
        assert arena.state.all_time.played == {"a": 1, "b": 1}

    def test_resolve_twice_is_noop(self, make_arena, events):
        arena = make_arena(config=_config(permadeath=False))
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        arena.resolve_match(match.id, "a")
        published = len(events)

        again, already = arena.resolve_match(match.id, "b")

        assert already is True
        assert again.winner_id == "a"
        assert arena.state.season.played == {"a": 1, "b": 1}
        assert len(events) == published

    def test_unknown_match(self, make_arena):
        arena = make_arena()
        with pytest.raises(NotFoundError) as exc:
            arena.resolve_match("nope")
        assert exc.value.reason == "match_not_found"

    def test_non_participant_winner_falls_back_to_verdict(self, make_arena):
        verdict = FixedVerdict("b")
        arena = make_arena(verdict=verdict)
        add_agents(arena, "A", "B", "C")
        match = arena.engine.create_match("a", "b")

        resolved, _ = arena.resolve_match(match.id, "c")

        assert resolved.winner_id == "b"
        assert verdict.calls == 1

    def test_bad_verdict_falls_back_to_coin(self, make_arena):
        arena = make_arena(verdict=FixedVerdict("someone-else"))
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        resolved, _ = arena.resolve_match(match.id)
        assert resolved.winner_id in ("a", "b")

    def test_failing_verdict_falls_back_to_coin(self, make_arena):
        arena = make_arena(verdict=BrokenVerdict())
        add_agents(arena, "A", "B")
        match = arena.engine.create_match("a", "b")
        resolved, _ = arena.resolve_match(match.id)
        assert resolved.winner_id in ("a", "b")

    def test_new_match_after_resolution(self, make_arena):
        arena = make_arena(config=_config(permadeath=False))
        add_agents(arena, "A", "B")
        first = arena.engine.create_match("a", "b")
        arena.resolve_match(first.id, "a")
        second = arena.engine.create_match("a", "b")
        assert arena.engine.current() is second


class TestPermadeath:
    def test_loser_removed(self, make_arena, events):
        arena = make_arena(config=_config(permadeath=True))
        add_agents(arena, "A", "B")
        match = arena.start_quick_match("a", "b")

        arena.resolve_match(match.id, "a")

        assert [a.id for a in arena.state.agents] == ["a"]
        assert arena.state.season.wins == {"a": 1}
        assert arena.state.season.played == {"a": 1, "b": 1}
        types = [e.type for e in match.events]
        assert "death" in types
        assert types.index("clash") < types.index("result") < types.index("death")

        agents_events = [e for e in events if e["type"] == "agents"]
        assert [a["id"] for a in agents_events[-1]["payload"]] == ["a"]

    def test_history_kept_for_removed_agent(self, make_arena):
        arena = make_arena(config=_config(permadeath=True))
        add_agents(arena, "A", "B")
        match = arena.start_quick_match("a", "b")
        arena.resolve_match(match.id, "a")

        assert arena.state.find_match(match.id).agents == ["a", "b"]
        record = arena.agent_record("b")
        assert record["active"] is False
        assert record["season"] == {"wins": 0, "losses": 1, "played": 1}

    def test_off_keeps_both(self, make_arena):
        arena = make_arena(config=_config(permadeath=False))
        add_agents(arena, "A", "B")
        match = arena.start_quick_match("a", "b")
        arena.resolve_match(match.id, "a")

        assert sorted(a.id for a in arena.state.agents) == ["a", "b"]
        assert "death" not in [e.type for e in match.events]
