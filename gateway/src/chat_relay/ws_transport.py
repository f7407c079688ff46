from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiohttp import WSMsgType, web

from . import protocol
from .auth import JWTVerifier, TokenVerifier
from .config import RelayConfig
from .errors import AuthenticationFailure
from .gateway import ConnectionGateway
from .hub import ConnectionHub
from .messages import InMemoryMessageStore, MessageStore, SQLiteMessageStore
from .presence import PresenceDirectory
from .relay import MessageRelay, TypingRelay
from .session import Connection
from .sqlite_backend import SQLiteBackend
from .users import InMemoryUserDirectory, SQLiteUserDirectory, UserDirectory

logger = logging.getLogger(__name__)


class Runtime:
    def __init__(
        self,
        *,
        config: RelayConfig,
        verifier: TokenVerifier,
        store: MessageStore,
        users: UserDirectory,
        presence: PresenceDirectory[Connection],
        hub: ConnectionHub,
        gateway: ConnectionGateway,
        backend: SQLiteBackend | None = None,
    ) -> None:
        self.config = config
        self.verifier = verifier
        self.store = store
        self.users = users
        self.presence = presence
        self.hub = hub
        self.gateway = gateway
        self.backend = backend


RUNTIME_KEY = web.AppKey("runtime", Runtime)


def build_runtime(
    config: RelayConfig,
    *,
    verifier: TokenVerifier | None = None,
    store: MessageStore | None = None,
    users: UserDirectory | None = None,
    presence: PresenceDirectory[Connection] | None = None,
) -> Runtime:
    if verifier is None:
        if not config.jwt_secret:
            raise ValueError("a JWT secret is required when no token verifier is supplied")
        verifier = JWTVerifier(config.jwt_secret, algorithm=config.jwt_algorithm)

    backend: SQLiteBackend | None = None
    if config.db_path is not None and (store is None or users is None):
        backend = SQLiteBackend(config.db_path)
    if store is None:
        store = SQLiteMessageStore(backend) if backend is not None else InMemoryMessageStore()
    if users is None:
        users = SQLiteUserDirectory(backend) if backend is not None else InMemoryUserDirectory()

    presence = presence if presence is not None else PresenceDirectory()
    hub = ConnectionHub()
    gateway = ConnectionGateway(
        verifier=verifier,
        presence=presence,
        hub=hub,
        messages=MessageRelay(
            verifier=verifier,
            store=store,
            users=users,
            presence=presence,
            max_text_length=config.max_text_length,
        ),
        typing=TypingRelay(presence),
    )
    return Runtime(
        config=config,
        verifier=verifier,
        store=store,
        users=users,
        presence=presence,
        hub=hub,
        gateway=gateway,
        backend=backend,
    )


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _unauthorized() -> web.Response:
    return web.json_response({"code": "unauthorized", "message": "invalid token"}, status=401)


def _with_no_store(response: web.Response) -> web.Response:
    response.headers["Cache-Control"] = "no-store"
    return response


async def _authenticate_request(request: web.Request) -> str | None:
    runtime = request.app[RUNTIME_KEY]
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer ") :].strip()
    if not token:
        return None
    try:
        return await runtime.verifier.verify(token)
    except AuthenticationFailure:
        return None


async def handle_online_list(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    if await _authenticate_request(request) is None:
        return _with_no_store(_unauthorized())
    users = sorted(runtime.presence.list_online())
    return _with_no_store(web.json_response({"users": users}))


async def handle_online_status(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    if await _authenticate_request(request) is None:
        return _with_no_store(_unauthorized())
    user_id = request.match_info["user_id"]
    return _with_no_store(
        web.json_response({"userId": user_id, "online": runtime.presence.is_online(user_id)})
    )


def create_app(
    config: RelayConfig | None = None,
    *,
    verifier: TokenVerifier | None = None,
    store: MessageStore | None = None,
    users: UserDirectory | None = None,
    presence: PresenceDirectory[Connection] | None = None,
) -> web.Application:
    config = config or RelayConfig()
    runtime = build_runtime(config, verifier=verifier, store=store, users=users, presence=presence)

    app = web.Application()
    app[RUNTIME_KEY] = runtime
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/v1/online", handle_online_list)
    app.router.add_get("/v1/online/{user_id}", handle_online_status)
    app.router.add_get("/v1/ws", websocket_handler)

    if runtime.backend is not None:
        backend = runtime.backend

        async def close_db(_: web.Application) -> None:
            backend.close()

        app.on_cleanup.append(close_db)
    return app


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime = request.app[RUNTIME_KEY]
    config = runtime.config

    ws = web.WebSocketResponse(max_msg_size=config.max_msg_size)
    await ws.prepare(request)

    loop = asyncio.get_running_loop()
    last_activity = loop.time()
    missed_heartbeats = 0
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    close_tasks: set[asyncio.Task[None]] = set()

    def on_overflow(conn: Connection) -> None:
        logger.warning("outbound queue full on %s, closing", conn.conn_id)
        task = asyncio.create_task(close_with_error("backpressure"))
        close_tasks.add(task)
        task.add_done_callback(close_tasks.discard)

    connection = Connection(queue_size=config.outbound_queue_size, on_overflow=on_overflow)
    runtime.gateway.accept(connection)

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = loop.time()
        missed_heartbeats = 0

    async def writer() -> None:
        try:
            while True:
                frame = await connection.outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return
        except ConnectionResetError:
            logger.debug("peer of %s went away during send", connection.conn_id)

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(config.ping_interval_s)
                if ws.closed:
                    return
                if loop.time() - last_activity >= config.ping_interval_s:
                    await ws.send_json(protocol.frame(protocol.PING))
                    missed_heartbeats += 1
                    if missed_heartbeats > config.ping_miss_limit:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    async def auth_deadline() -> None:
        try:
            await asyncio.sleep(config.auth_timeout_s)
            if not connection.authenticated and not ws.closed:
                logger.info("closing %s: no join within %ss", connection.conn_id, config.auth_timeout_s)
                await ws.close(code=1008, message=b"authentication timeout")
        except asyncio.CancelledError:
            return

    tasks = [asyncio.create_task(writer()), asyncio.create_task(heartbeat())]
    if config.auth_timeout_enabled:
        tasks.append(asyncio.create_task(auth_deadline()))

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame: Any = msg.json()
                except ValueError:
                    connection.send(protocol.error_frame(protocol.INVALID_REQUEST, "malformed json"))
                    continue
                if not isinstance(frame, dict):
                    connection.send(protocol.error_frame(protocol.INVALID_REQUEST, "frame must be an object"))
                    continue
                mark_activity()
                await runtime.gateway.dispatch(connection, frame)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("websocket error on %s: %s", connection.conn_id, ws.exception())
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        runtime.gateway.disconnect(connection)
        for task in tasks:
            task.cancel()
        connection.close_outbound()
        await asyncio.gather(*tasks, *close_tasks, return_exceptions=True)

    return ws
