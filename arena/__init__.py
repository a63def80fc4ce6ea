"""
arena - HTTP/WebSocket service for Gladiator

Exposes the scheduler operations (join, quick match, resolve, season reset,
arena restart, snapshot) and relays state changes to spectators.
"""

from .server import app, build_arena

__all__ = ["app", "build_arena"]
