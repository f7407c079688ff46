from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List

from .config import DEFAULT_MAX_TEXT_LENGTH
from .errors import ValidationFailure
from .sqlite_backend import SQLiteBackend


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_msg_id() -> str:
    return f"msg_{secrets.token_urlsafe(12)}"


@dataclass(frozen=True)
class Message:
    """A stored chat message between two users."""

    msg_id: str
    sender_id: str
    receiver_id: str
    text: str
    ts_ms: int
    is_read: bool = False

    def to_wire(self, sender: Dict[str, Any], receiver: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": self.msg_id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "sender": sender,
            "receiver": receiver,
            "text": self.text,
            "timestamp": self.ts_ms,
            "isRead": self.is_read,
        }


# Whitespace and line terminators removed by JavaScript's String.prototype.trim.
_TRIM_CHARS = (
    " \t\n\v\f\r\u00a0\u1680\u2000\u2001\u2002\u2003\u2004\u2005\u2006"
    "\u2007\u2008\u2009\u200a\u2028\u2029\u202f\u205f\u3000\ufeff"
)


def utf16_length(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def normalize_text(text: object, max_length: int = DEFAULT_MAX_TEXT_LENGTH) -> str:
    """Trim ``text`` and enforce the non-empty, bounded length rule.

    Length is counted in UTF-16 code units, so a character outside the BMP
    counts twice.
    """

    if not isinstance(text, str):
        raise ValidationFailure("Missing required fields", detail="text must be a string")
    cleaned = text.strip(_TRIM_CHARS)
    if not cleaned:
        raise ValidationFailure("Missing required fields", detail="text is required")
    if utf16_length(cleaned) > max_length:
        raise ValidationFailure(
            "Message too long", detail=f"text cannot exceed {max_length} characters"
        )
    return cleaned


class MessageStore:
    def create(self, sender_id: str, receiver_id: str, text: str, ts_ms: int | None = None) -> Message:
        raise NotImplementedError

    def find_between(self, user_a: str, user_b: str, limit: int | None = None) -> List[Message]:
        raise NotImplementedError

    def mark_read(self, sender_id: str, receiver_id: str) -> int:
        raise NotImplementedError


class InMemoryMessageStore(MessageStore):
    """Process-local store; calls may arrive from worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: List[Message] = []

    def create(self, sender_id: str, receiver_id: str, text: str, ts_ms: int | None = None) -> Message:
        if not sender_id or not receiver_id:
            raise ValueError("sender_id and receiver_id are required")
        message = Message(
            msg_id=_new_msg_id(),
            sender_id=sender_id,
            receiver_id=receiver_id,
            text=text,
            ts_ms=ts_ms if ts_ms is not None else _now_ms(),
        )
        with self._lock:
            self._messages.append(message)
        return message

    def find_between(self, user_a: str, user_b: str, limit: int | None = None) -> List[Message]:
        pair = {(user_a, user_b), (user_b, user_a)}
        with self._lock:
            found = [m for m in self._messages if (m.sender_id, m.receiver_id) in pair]
        found.sort(key=lambda m: m.ts_ms)
        if limit is not None:
            found = found[: max(limit, 0)]
        return found

    def mark_read(self, sender_id: str, receiver_id: str) -> int:
        updated = 0
        with self._lock:
            for index, message in enumerate(self._messages):
                if (
                    message.sender_id == sender_id
                    and message.receiver_id == receiver_id
                    and not message.is_read
                ):
                    self._messages[index] = replace(message, is_read=True)
                    updated += 1
        return updated


class SQLiteMessageStore(MessageStore):
    """Durable message store backed by SQLite."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def create(self, sender_id: str, receiver_id: str, text: str, ts_ms: int | None = None) -> Message:
        if not sender_id or not receiver_id:
            raise ValueError("sender_id and receiver_id are required")
        message = Message(
            msg_id=_new_msg_id(),
            sender_id=sender_id,
            receiver_id=receiver_id,
            text=text,
            ts_ms=ts_ms if ts_ms is not None else _now_ms(),
        )
        with self._backend.lock:
            self._backend.connection.execute(
                """
                INSERT INTO messages (msg_id, sender_id, receiver_id, text, ts_ms, is_read)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (message.msg_id, message.sender_id, message.receiver_id, message.text, message.ts_ms),
            )
        return message

    def find_between(self, user_a: str, user_b: str, limit: int | None = None) -> List[Message]:
        query = """
            SELECT msg_id, sender_id, receiver_id, text, ts_ms, is_read
            FROM messages
            WHERE (sender_id=? AND receiver_id=?) OR (sender_id=? AND receiver_id=?)
            ORDER BY ts_ms ASC, row_id ASC
        """
        params: list[object] = [user_a, user_b, user_b, user_a]
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(limit, 0))

        with self._backend.lock:
            rows = self._backend.connection.execute(query, params).fetchall()

        return [
            Message(
                msg_id=row[0],
                sender_id=row[1],
                receiver_id=row[2],
                text=row[3],
                ts_ms=row[4],
                is_read=bool(row[5]),
            )
            for row in rows
        ]

    def mark_read(self, sender_id: str, receiver_id: str) -> int:
        with self._backend.lock:
            cursor = self._backend.connection.execute(
                "UPDATE messages SET is_read=1 WHERE sender_id=? AND receiver_id=? AND is_read=0",
                (sender_id, receiver_id),
            )
        return cursor.rowcount
