from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_MAX_TEXT_LENGTH = 5000


@dataclass(frozen=True)
class RelayConfig:
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH
    auth_timeout_s: int = 0
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576
    outbound_queue_size: int = 1000
    db_path: str | None = None
    log_level: str = "INFO"

    @property
    def auth_timeout_enabled(self) -> bool:
        return self.auth_timeout_s > 0


def _parse_non_negative_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ValueError(f"{name} must be non-negative")
    return parsed


def _parse_positive_int(name: str, default: int) -> int:
    parsed = _parse_non_negative_int(name, default)
    if parsed == 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_optional_str(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw


def _parse_log_level(name: str, default: str) -> str:
    raw = (os.environ.get(name) or default).upper()
    if not isinstance(logging.getLevelName(raw), int):
        raise ValueError(f"{name} must be a logging level name")
    return raw


def load_config_from_env() -> RelayConfig:
    return RelayConfig(
        jwt_secret=_parse_optional_str("CHAT_RELAY_JWT_SECRET"),
        jwt_algorithm=os.environ.get("CHAT_RELAY_JWT_ALGORITHM") or "HS256",
        max_text_length=_parse_positive_int("CHAT_RELAY_MAX_TEXT_LENGTH", DEFAULT_MAX_TEXT_LENGTH),
        auth_timeout_s=_parse_non_negative_int("CHAT_RELAY_AUTH_TIMEOUT_S", 0),
        ping_interval_s=_parse_positive_int("CHAT_RELAY_PING_INTERVAL_S", 30),
        ping_miss_limit=_parse_non_negative_int("CHAT_RELAY_PING_MISS_LIMIT", 2),
        max_msg_size=_parse_positive_int("CHAT_RELAY_MAX_MSG_SIZE", 1_048_576),
        outbound_queue_size=_parse_positive_int("CHAT_RELAY_OUTBOUND_QUEUE_SIZE", 1000),
        db_path=_parse_optional_str("CHAT_RELAY_DB_PATH"),
        log_level=_parse_log_level("CHAT_RELAY_LOG_LEVEL", "INFO"),
    )
