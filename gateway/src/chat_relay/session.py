from __future__ import annotations

import asyncio
import secrets
from enum import Enum
from typing import Any, Callable, Dict, List


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    TERMINATED = "terminated"


class Connection:
    """Server-side state of one persistent connection.

    Outbound frames are queued and drained by a single writer, so frames sent
    to one connection leave in the order they were queued.
    """

    def __init__(
        self,
        *,
        queue_size: int = 1000,
        on_overflow: Callable[["Connection"], None] | None = None,
    ) -> None:
        self.conn_id = f"conn_{secrets.token_urlsafe(8)}"
        self.user_id: str | None = None
        self.state = SessionState.UNAUTHENTICATED
        self.outbound: asyncio.Queue[Dict[str, Any] | None] = asyncio.Queue(maxsize=queue_size)
        self._on_overflow = on_overflow

    def __repr__(self) -> str:
        return f"Connection({self.conn_id!r}, user_id={self.user_id!r}, state={self.state.value})"

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def terminated(self) -> bool:
        return self.state is SessionState.TERMINATED

    def authenticate(self, user_id: str) -> None:
        if self.terminated:
            raise RuntimeError("cannot authenticate a terminated connection")
        self.user_id = user_id
        self.state = SessionState.AUTHENTICATED

    def terminate(self) -> None:
        self.state = SessionState.TERMINATED

    def send(self, frame: Dict[str, Any]) -> bool:
        """Queue ``frame`` for delivery; returns False when it was dropped."""

        if self.terminated:
            return False
        try:
            self.outbound.put_nowait(frame)
        except asyncio.QueueFull:
            if self._on_overflow is not None:
                self._on_overflow(self)
            return False
        return True

    def drain(self) -> List[Dict[str, Any]]:
        frames: List[Dict[str, Any]] = []
        while True:
            try:
                item = self.outbound.get_nowait()
            except asyncio.QueueEmpty:
                return frames
            if item is not None:
                frames.append(item)

    def close_outbound(self) -> None:
        try:
            self.outbound.put_nowait(None)
        except asyncio.QueueFull:
            pass
