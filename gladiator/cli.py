#!/usr/bin/env python3
"""
gladiator/cli.py - Command line interface for Gladiator

Usage:
    gladiator serve [--port PORT] [--state PATH] [--config PATH]
    gladiator snapshot [--state PATH] [--config PATH]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import load_config

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


class _Inert:
    def cancel(self) -> None:
        pass


def _never(delay, fn):
    """Timer factory that never fires (read-only inspection)."""
    return _Inert()


def _load(args):
    config = load_config(Path(args.config) if args.config else None)
    if args.state:
        config.server.state_path = args.state
    return config


def cmd_serve(args):
    """Start the arena service."""
    try:
        import uvicorn
    except ImportError:
        logger.error("Serving requires uvicorn: pip install gladiator-arena")
        return 1

    from arena.server import app

    config = _load(args)
    if args.port:
        config.server.port = args.port

    # The lifespan picks this up when it builds the arena
    app.state.config = config
    logger.info(f"Starting arena on port {config.server.port} (state: {config.server.state_path})")
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level="info")
    return 0


def cmd_snapshot(args):
    """Print the snapshot recovered from a state file, without writing anything."""
    from .coordinator import Arena
    from .store import StateStore

    config = _load(args)
    path = Path(config.server.state_path)
    if not path.exists():
        logger.error(f"No state file at {path}")
        return 1

    store = StateStore(path, schedule=_never)
    arena = Arena(config, store=store, schedule=_never)
    json.dump(arena.snapshot(), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="gladiator",
        description="Gladiator - live single-elimination arena for agents",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the arena HTTP/WebSocket service")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: from config, 5195)")
    serve_parser.add_argument("--state", default=None, help="State file path (default: data/state.json)")
    serve_parser.add_argument("--config", default=None, help="Config file (default: ~/.gladiator/config.toml)")
    serve_parser.set_defaults(func=cmd_serve)

    # snapshot command
    snap_parser = subparsers.add_parser("snapshot", help="Print the snapshot stored in a state file")
    snap_parser.add_argument("--state", default=None, help="State file path (default: data/state.json)")
    snap_parser.add_argument("--config", default=None, help="Config file (default: ~/.gladiator/config.toml)")
    snap_parser.set_defaults(func=cmd_snapshot)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
