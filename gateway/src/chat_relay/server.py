"""Relay CLI: serve the gateway, replay frames offline, or mint dev tokens."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Dict, Iterable, TextIO

from aiohttp import web

from .auth import StaticTokenVerifier, issue_token
from .config import RelayConfig, load_config_from_env
from .session import Connection
from .ws_transport import build_runtime, create_app

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


async def _simulate(frames: Iterable[dict], output: TextIO, tokens: Dict[str, str]) -> None:
    runtime = build_runtime(RelayConfig(), verifier=StaticTokenVerifier(tokens))
    gateway = runtime.gateway
    connections: Dict[str, Connection] = {}

    def connection_for(name: str) -> Connection:
        if name not in connections:
            connection = Connection()
            gateway.accept(connection)
            connections[name] = connection
        return connections[name]

    def flush() -> None:
        for name, connection in connections.items():
            for frame in connection.drain():
                output.write(json.dumps({"conn": name, **frame}) + "\n")

    for frame in frames:
        name = frame.get("conn")
        if not isinstance(name, str):
            raise ValueError("every frame needs a conn name")
        frame_type = frame.get("t")
        if frame_type == "connect":
            connection_for(name)
        elif frame_type == "disconnect":
            connection = connections.get(name)
            if connection is not None:
                gateway.disconnect(connection)
                flush()
                connections.pop(name)
                continue
        else:
            inbound = {key: value for key, value in frame.items() if key != "conn"}
            inbound.setdefault("v", 1)
            await gateway.dispatch(connection_for(name), inbound)
        flush()


def simulate(frames: Iterable[dict], output: TextIO, tokens: Dict[str, str] | None = None) -> None:
    """Run frames through the relay core with in-memory collaborators and emit outbound frames."""

    asyncio.run(_simulate(frames, output, dict(tokens or {})))


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _parse_token_pairs(pairs: list[str]) -> Dict[str, str]:
    tokens: Dict[str, str] = {}
    for pair in pairs:
        token, sep, user_id = pair.partition("=")
        if not sep or not token or not user_id:
            raise ValueError(f"token mapping must look like TOKEN=USER_ID: {pair!r}")
        tokens[token] = user_id
    return tokens


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(frames, output, _parse_token_pairs(args.token))
    return 0


def _run_serve(args: argparse.Namespace, config: RelayConfig) -> int:
    overrides = {}
    if args.ping_interval is not None:
        overrides["ping_interval_s"] = args.ping_interval
    if args.db is not None:
        overrides["db_path"] = args.db
    config = replace(config, **overrides)
    configure_logging(args.log_level or config.log_level)
    app = create_app(config)
    logger.info("chat relay listening on %s:%s", args.host, args.port)
    web.run_app(app, host=args.host, port=args.port, print=None)
    return 0


def _run_token(args: argparse.Namespace, config: RelayConfig, output: TextIO) -> int:
    if not config.jwt_secret:
        raise ValueError("CHAT_RELAY_JWT_SECRET must be set to mint tokens")
    output.write(issue_token(args.user_id, config.jwt_secret, algorithm=config.jwt_algorithm, ttl_s=args.ttl) + "\n")
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Chat relay CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp relay server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument("--ping-interval", type=int, default=None, help="Seconds between heartbeat pings")
    serve_parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to SQLite database for messages; usernames come from its users table, which account registration fills",
    )
    serve_parser.add_argument("--log-level", type=str, default=None, help="Logging level name")

    simulate_parser = subparsers.add_parser("simulate", help="Replay protocol frames through the relay core")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )
    simulate_parser.add_argument(
        "--token",
        action="append",
        default=[],
        metavar="TOKEN=USER_ID",
        help="Accept TOKEN as a credential for USER_ID (repeatable)",
    )

    token_parser = subparsers.add_parser("token", help="Print a development token for a user")
    token_parser.add_argument("user_id", help="User id to embed in the token")
    token_parser.add_argument("--ttl", type=int, default=7 * 24 * 60 * 60, help="Token lifetime in seconds")

    args = parser.parse_args(argv)
    stream = output or sys.stdout

    if args.command == "simulate":
        return _run_simulation(args, stream)

    config = load_config_from_env()
    if args.command == "serve":
        return _run_serve(args, config)
    return _run_token(args, config, stream)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
