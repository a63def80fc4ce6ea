"""
gladiator/problems.py - Optional challenge prompts attached to matches.

A problem bank is a TOML file:

    [[problems]]
    id = "fizzbuzz"
    prompt = "Print the numbers 1 to 100, but..."

    [[problems]]
    id = "retired"
    prompt = "..."
    active = false

A bank that is missing or unreadable behaves as empty; matches are never
held up by it.
"""

import logging
import random
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class Problem:
    id: str
    prompt: str
    active: bool = True


class ProblemSource(Protocol):
    def pick(self) -> Problem | None: ...


class ProblemBank:
    """In-memory list of problems, picked uniformly among the active ones."""

    def __init__(self, problems: list[Problem] | None = None, rng: random.Random | None = None):
        self.problems = list(problems or [])
        self._rng = rng or random.Random()

    @classmethod
    def from_file(cls, path: str | Path, rng: random.Random | None = None) -> "ProblemBank":
        path = Path(path)
        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except FileNotFoundError:
            logger.warning(f"Problem bank not found: {path}")
            return cls(rng=rng)
        except Exception as e:
            logger.warning(f"Failed to parse problem bank {path}: {e}")
            return cls(rng=rng)

        entries = raw.get("problems", [])
        if not isinstance(entries, list):
            logger.warning(f"Problem bank {path} has no [[problems]] list; ignoring it")
            return cls(rng=rng)

        problems = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            problem_id = entry.get("id")
            prompt = entry.get("prompt") or entry.get("problem")
            if not isinstance(problem_id, str) or not isinstance(prompt, str) or not prompt.strip():
                logger.warning(f"Skipping malformed problem entry in {path}: {entry!r}")
                continue
            problems.append(Problem(id=problem_id, prompt=prompt.strip(), active=entry.get("active", True) is not False))

        logger.info(f"Loaded {len(problems)} problems from {path}")
        return cls(problems, rng=rng)

    def active(self) -> list[Problem]:
        return [p for p in self.problems if p.active]

    def pick(self) -> Problem | None:
        candidates = self.active()
        if not candidates:
            return None
        return self._rng.choice(candidates)
