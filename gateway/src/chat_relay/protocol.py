"""Event names and frame builders for the relay's WebSocket protocol."""

from __future__ import annotations

from typing import Any, Dict

PROTOCOL_VERSION = 1

# client -> server
JOIN = "join"
SEND_MESSAGE = "sendMessage"
TYPING = "typing"
PING = "ping"
PONG = "pong"

# server -> client
JOINED = "joined"
USER_ONLINE = "userOnline"
USER_OFFLINE = "userOffline"
MESSAGE_SENT = "messageSent"
RECEIVE_MESSAGE = "receiveMessage"
USER_TYPING = "userTyping"
ERROR = "error"

INVALID_REQUEST = "invalid_request"
INTERNAL_ERROR = "internal_error"


def frame(event: str, body: Dict[str, Any] | None = None, *, request_id: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"v": PROTOCOL_VERSION, "t": event, "body": body or {}}
    if request_id is not None:
        payload["id"] = request_id
    return payload


def error_frame(
    code: str,
    message: str,
    *,
    detail: str | None = None,
    request_id: Any = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": code, "message": message}
    if detail is not None:
        body["error"] = detail
    return frame(ERROR, body, request_id=request_id)
