from __future__ import annotations

import threading
from typing import Any, Dict

from .sqlite_backend import SQLiteBackend


def _profile(user_id: str, username: str | None) -> Dict[str, Any]:
    return {"id": user_id, "username": username}


class UserDirectory:
    """Read-only identity projection embedded in outbound message payloads."""

    def register(self, user_id: str, username: str) -> None:
        raise NotImplementedError

    def public_profile(self, user_id: str) -> Dict[str, Any]:
        raise NotImplementedError


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Dict[str, str] | None = None) -> None:
        self._lock = threading.Lock()
        self._usernames: Dict[str, str] = dict(users or {})

    def register(self, user_id: str, username: str) -> None:
        with self._lock:
            self._usernames[user_id] = username

    def public_profile(self, user_id: str) -> Dict[str, Any]:
        with self._lock:
            return _profile(user_id, self._usernames.get(user_id))


class SQLiteUserDirectory(UserDirectory):
    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def register(self, user_id: str, username: str) -> None:
        with self._backend.lock:
            self._backend.connection.execute(
                """
                INSERT INTO users (user_id, username) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET username=excluded.username
                """,
                (user_id, username),
            )

    def public_profile(self, user_id: str) -> Dict[str, Any]:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT username FROM users WHERE user_id=?",
                (user_id,),
            ).fetchone()
        return _profile(user_id, row[0] if row is not None else None)
