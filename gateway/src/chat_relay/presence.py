from __future__ import annotations

import threading
from typing import Dict, Generic, Set, TypeVar

Handle = TypeVar("Handle")


class PresenceDirectory(Generic[Handle]):
    """Maps each online user to the one connection currently addressing them.

    All access goes through a single lock and no method awaits, so the
    directory stays consistent whether callers run on the event loop or in
    worker threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, Handle] = {}

    def set(self, user_id: str, handle: Handle) -> Handle | None:
        """Register ``handle`` for ``user_id`` and return the handle it replaced."""

        with self._lock:
            previous = self._entries.get(user_id)
            self._entries[user_id] = handle
        return previous

    def get(self, user_id: str) -> Handle | None:
        with self._lock:
            return self._entries.get(user_id)

    def remove(self, user_id: str, handle: Handle) -> bool:
        """Drop the entry only while it still points at ``handle``."""

        with self._lock:
            current = self._entries.get(user_id)
            if current is None or current is not handle:
                return False
            del self._entries[user_id]
        return True

    def list_online(self) -> Set[str]:
        with self._lock:
            return set(self._entries)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
