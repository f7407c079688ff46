from __future__ import annotations

from typing import Any, Dict, List

from .session import Connection


class ConnectionHub:
    """Tracks every live connection and broadcasts frames to all of them."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def add(self, connection: Connection) -> None:
        self._connections[connection.conn_id] = connection

    def discard(self, connection: Connection) -> None:
        self._connections.pop(connection.conn_id, None)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def broadcast(self, frame: Dict[str, Any]) -> int:
        delivered = 0
        for connection in self.connections():
            if connection.send(frame):
                delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._connections)
