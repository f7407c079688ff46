from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from . import protocol
from .auth import TokenVerifier
from .config import DEFAULT_MAX_TEXT_LENGTH
from .errors import PersistenceFailure, ValidationFailure
from .messages import Message, MessageStore, normalize_text
from .presence import PresenceDirectory
from .session import Connection
from .users import UserDirectory

logger = logging.getLogger(__name__)


class MessageRelay:
    """Persists a chat message, acknowledges the sender and forwards it if the receiver is online."""

    def __init__(
        self,
        *,
        verifier: TokenVerifier,
        store: MessageStore,
        users: UserDirectory,
        presence: PresenceDirectory[Connection],
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
    ) -> None:
        self._verifier = verifier
        self._store = store
        self._users = users
        self._presence = presence
        self._max_text_length = max_text_length

    async def send(self, connection: Connection, body: Dict[str, Any], *, request_id: Any = None) -> Message:
        """Run the send protocol for one ``sendMessage`` event.

        The token is checked on every send, independently of whether the
        connection has joined. Raises ``AuthenticationFailure``,
        ``ValidationFailure`` or ``PersistenceFailure``; nothing is stored or
        forwarded when any of them is raised before the write.
        """

        sender_id = await self._verifier.verify_as(body.get("token"), body.get("senderId"))

        receiver_id = body.get("receiverId")
        if not isinstance(receiver_id, str) or not receiver_id:
            raise ValidationFailure("Missing required fields", detail="receiverId is required")
        text = normalize_text(body.get("text"), self._max_text_length)

        try:
            message = await asyncio.to_thread(self._store.create, sender_id, receiver_id, text)
        except Exception as exc:
            logger.exception("persisting message from %s to %s failed", sender_id, receiver_id)
            raise PersistenceFailure("Failed to send message", detail=str(exc)) from exc

        try:
            sender, receiver = await asyncio.gather(
                asyncio.to_thread(self._users.public_profile, sender_id),
                asyncio.to_thread(self._users.public_profile, receiver_id),
            )
        except Exception as exc:
            logger.exception("resolving profiles for message %s failed", message.msg_id)
            raise PersistenceFailure("Failed to send message", detail=str(exc)) from exc

        data = message.to_wire(sender, receiver)
        connection.send(protocol.frame(protocol.MESSAGE_SENT, {"success": True, "data": data}, request_id=request_id))

        target = self._presence.get(receiver_id)
        if target is None:
            logger.info("receiver %s offline, message %s saved", receiver_id, message.msg_id)
            return message
        if target.send(protocol.frame(protocol.RECEIVE_MESSAGE, {"data": data})):
            logger.info("message %s delivered to %s", message.msg_id, receiver_id)
        else:
            logger.info("receiver %s went away, message %s saved", receiver_id, message.msg_id)
        return message


class TypingRelay:
    """Forwards ephemeral typing indicators; never persists anything."""

    def __init__(self, presence: PresenceDirectory[Connection]) -> None:
        self._presence = presence

    def typing(self, from_user_id: str, to_user_id: str, is_typing: bool) -> bool:
        target = self._presence.get(to_user_id)
        if target is None:
            return False
        return target.send(protocol.frame(protocol.USER_TYPING, {"userId": from_user_id, "isTyping": is_typing}))
