"""
gladiator/store.py - Durable copy of the scheduler state.

One JSON document per arena, loaded once at startup and rewritten after
mutations. Writes are coalesced: ``save_soon`` arms one timer per debounce
window and the document is taken at fire time, so a burst of mutations
costs one write. Losing the last fraction of a second on a crash is
accepted; a write failure is logged and retried later, never raised into
the scheduler.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable

from .models import ArenaState
from .timers import Schedule, TimerHandle, thread_timer

logger = logging.getLogger(__name__)


class StateStore:
    """Debounced JSON persistence for ``ArenaState``."""

    def __init__(
        self,
        path: str | Path,
        debounce: float = 0.25,
        retry: float = 5.0,
        schedule: Schedule = thread_timer,
    ):
        self.path = Path(path)
        self.debounce = debounce
        self.retry = retry
        self._schedule = schedule
        self._dump: Callable[[], dict[str, Any]] | None = None
        self._timer: TimerHandle | None = None
        self._lock = threading.Lock()
        self.writes = 0
        self.failures = 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> ArenaState:
        """Read the document. Never raises; bad input yields defaults."""
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting fresh")
            return ArenaState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read {self.path}: {e}; starting fresh")
            return ArenaState()
        state = ArenaState.from_dict(raw)
        logger.info(
            f"Loaded state from {self.path}: {len(state.agents)} agents, "
            f"{len(state.matches)} matches, season {state.season.number}"
        )
        return state

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def bind(self, dump: Callable[[], dict[str, Any]]) -> None:
        """Set the callback that produces the document to write."""
        self._dump = dump

    def save_soon(self) -> None:
        """Schedule a write unless one is already pending."""
        self._arm(self.debounce)

    def _arm(self, delay: float) -> None:
        with self._lock:
            if self._timer is not None:
                return
            self._timer = self._schedule(delay, self._fire)

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        if not self.flush():
            self._arm(self.retry)

    def flush(self) -> bool:
        """Write now. Returns False (after logging) if the write failed."""
        if self._dump is None:
            return True
        try:
            document = self._dump()
            self._write(document)
        except Exception as e:
            self.failures += 1
            logger.warning(f"Failed to save state to {self.path}: {e}")
            return False
        self.writes += 1
        return True

    def _write(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def close(self) -> None:
        """Cancel any pending timer and write a final copy."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self.flush()
