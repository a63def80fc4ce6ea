"""Shared fixtures: a hand-cranked clock and timers so nothing here sleeps."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from gladiator.config import ArenaConfig
from gladiator.coordinator import Arena
from gladiator.models import Agent, iso


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ManualTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    @property
    def live(self) -> bool:
        return not self.cancelled and not self.fired


class ManualTimers:
    """Timer factory that records callbacks and runs them on demand."""

    def __init__(self):
        self.created: list[ManualTimer] = []

    def __call__(self, delay, fn) -> ManualTimer:
        timer = ManualTimer(delay, fn)
        self.created.append(timer)
        return timer

    def live(self) -> list[ManualTimer]:
        return [t for t in self.created if t.live]

    def fire_next(self) -> bool:
        pending = self.live()
        if not pending:
            return False
        timer = pending[0]
        timer.fired = True
        timer.fn()
        return True

    def fire_all(self, limit: int = 200) -> int:
        fired = 0
        while fired < limit and self.fire_next():
            fired += 1
        return fired


class OrderedRandom(random.Random):
    """Random that leaves shuffles alone, for scenarios that need known pairings."""

    def shuffle(self, x):
        pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_arena(clock, timers, rng, events):
    """Build an in-memory arena; bus events are appended to ``events``."""

    def _make(config: ArenaConfig | None = None, **kwargs) -> Arena:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("schedule", timers)
        kwargs.setdefault("rng", rng)
        arena = Arena(config or ArenaConfig(), **kwargs)
        arena.bus.subscribe(events.append)
        return arena

    return _make


def add_agents(arena: Arena, *names: str) -> list[str]:
    """Put agents straight onto the roster with ids equal to their lowercased names."""
    ids = []
    for name in names:
        agent = Agent(id=name.lower(), name=name, created_at=iso(arena._clock()))
        arena.state.agents.append(agent)
        ids.append(agent.id)
    return ids


def event_types(events: list[dict]) -> list[str]:
    return [e["type"] for e in events]
