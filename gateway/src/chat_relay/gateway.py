from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from . import protocol
from .auth import TokenVerifier
from .errors import AuthenticationFailure, RelayError, ValidationFailure
from .hub import ConnectionHub
from .presence import PresenceDirectory
from .relay import MessageRelay, TypingRelay
from .session import Connection

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any], Any], Awaitable[None]]


class ConnectionGateway:
    """Owns connection lifecycle: accept, join, event dispatch and disconnect."""

    def __init__(
        self,
        *,
        verifier: TokenVerifier,
        presence: PresenceDirectory[Connection],
        hub: ConnectionHub,
        messages: MessageRelay,
        typing: TypingRelay,
    ) -> None:
        self._verifier = verifier
        self._presence = presence
        self._hub = hub
        self._messages = messages
        self._typing = typing
        self._handlers: Dict[str, Handler] = {
            protocol.JOIN: self._handle_join,
            protocol.SEND_MESSAGE: self._handle_send_message,
            protocol.TYPING: self._handle_typing,
            protocol.PING: self._handle_ping,
            protocol.PONG: self._handle_pong,
        }

    def accept(self, connection: Connection) -> None:
        self._hub.add(connection)
        logger.debug("accepted %s", connection.conn_id)

    async def join(self, connection: Connection, token: object, claimed_user_id: object, *, request_id: Any = None) -> bool:
        """Authenticate ``connection`` and make it the user's live connection."""

        user_id = await self._verifier.verify_as(token, claimed_user_id)
        if connection.terminated:
            # Connection dropped while the token was being checked.
            return False
        if connection.user_id is not None and connection.user_id != user_id:
            raise AuthenticationFailure("Session already joined as another user")

        connection.authenticate(user_id)
        previous = self._presence.set(user_id, connection)
        if previous is not None and previous is not connection:
            logger.info("user %s moved from %s to %s", user_id, previous.conn_id, connection.conn_id)
        logger.info("user %s joined on %s", user_id, connection.conn_id)

        connection.send(
            protocol.frame(
                protocol.JOINED,
                {"message": "Successfully connected", "userId": user_id},
                request_id=request_id,
            )
        )
        self._hub.broadcast(protocol.frame(protocol.USER_ONLINE, {"userId": user_id}))
        return True

    async def dispatch(self, connection: Connection, frame: Dict[str, Any]) -> None:
        """Route one inbound frame; every failure becomes an ``error`` frame on this connection."""

        request_id = frame.get("id")
        if frame.get("v") != protocol.PROTOCOL_VERSION:
            connection.send(
                protocol.error_frame(protocol.INVALID_REQUEST, "unsupported version", request_id=request_id)
            )
            return

        event = frame.get("t")
        body = frame.get("body") or {}
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            connection.send(
                protocol.error_frame(protocol.INVALID_REQUEST, "unknown event type", request_id=request_id)
            )
            return
        if not isinstance(body, dict):
            connection.send(
                protocol.error_frame(protocol.INVALID_REQUEST, "body must be an object", request_id=request_id)
            )
            return

        try:
            await handler(connection, body, request_id)
        except RelayError as exc:
            logger.info("%s on %s rejected: %s (%s)", event, connection.conn_id, exc.message, exc.code)
            connection.send(protocol.error_frame(exc.code, exc.message, detail=exc.detail, request_id=request_id))
        except Exception:
            logger.exception("%s handler failed on %s", event, connection.conn_id)
            connection.send(
                protocol.error_frame(protocol.INTERNAL_ERROR, "Internal server error", request_id=request_id)
            )

    def disconnect(self, connection: Connection) -> None:
        """Release the connection and announce the user offline if it was still their live one."""

        user_id = connection.user_id
        connection.terminate()
        self._hub.discard(connection)
        if user_id is None:
            logger.debug("closed unauthenticated %s", connection.conn_id)
            return
        if not self._presence.remove(user_id, connection):
            logger.info("stale %s for %s closed; newer connection kept", connection.conn_id, user_id)
            return
        logger.info("user %s disconnected from %s", user_id, connection.conn_id)
        self._hub.broadcast(protocol.frame(protocol.USER_OFFLINE, {"userId": user_id}))

    async def _handle_join(self, connection: Connection, body: Dict[str, Any], request_id: Any) -> None:
        await self.join(connection, body.get("token"), body.get("userId"), request_id=request_id)

    async def _handle_send_message(self, connection: Connection, body: Dict[str, Any], request_id: Any) -> None:
        await self._messages.send(connection, body, request_id=request_id)

    async def _handle_typing(self, connection: Connection, body: Dict[str, Any], request_id: Any) -> None:
        if not connection.authenticated or connection.user_id is None:
            raise AuthenticationFailure("Join required before typing")
        receiver_id = body.get("receiverId")
        if not isinstance(receiver_id, str) or not receiver_id:
            raise ValidationFailure("Missing required fields", detail="receiverId is required")
        is_typing = body.get("isTyping")
        if not isinstance(is_typing, bool):
            raise ValidationFailure("Missing required fields", detail="isTyping must be a boolean")
        self._typing.typing(connection.user_id, receiver_id, is_typing)

    async def _handle_ping(self, connection: Connection, body: Dict[str, Any], request_id: Any) -> None:
        connection.send(protocol.frame(protocol.PONG, request_id=request_id))

    async def _handle_pong(self, connection: Connection, body: Dict[str, Any], request_id: Any) -> None:
        return None
