"""
gladiator/errors.py - Scheduler error types.

Every rejection carries a stable ``reason`` string so callers (the HTTP
layer, scripts) can branch on it without parsing messages. Collaborator
failures (disk, subscribers, problem bank) never show up here; they are
logged where they happen.
"""


class ArenaError(Exception):
    """Base class for rejected scheduler operations."""

    status = 400

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class ValidationError(ArenaError):
    """Bad input. Nothing was mutated."""

    status = 400


class NotFoundError(ArenaError):
    """Unknown agent or match id."""

    status = 404


class ConflictError(ArenaError):
    """Operation not allowed in the current state (e.g. a match is running)."""

    status = 409
