"""Real-time presence and message relay for two-party chat."""

from .auth import JWTVerifier, StaticTokenVerifier, TokenVerifier, issue_token
from .config import RelayConfig, load_config_from_env
from .errors import AuthenticationFailure, PersistenceFailure, RelayError, ValidationFailure
from .gateway import ConnectionGateway
from .hub import ConnectionHub
from .messages import InMemoryMessageStore, Message, MessageStore, SQLiteMessageStore
from .presence import PresenceDirectory
from .relay import MessageRelay, TypingRelay
from .server import main, simulate
from .session import Connection, SessionState

__all__ = [
    "AuthenticationFailure",
    "Connection",
    "ConnectionGateway",
    "ConnectionHub",
    "InMemoryMessageStore",
    "JWTVerifier",
    "Message",
    "MessageRelay",
    "MessageStore",
    "PersistenceFailure",
    "PresenceDirectory",
    "RelayConfig",
    "RelayError",
    "SQLiteMessageStore",
    "SessionState",
    "StaticTokenVerifier",
    "TokenVerifier",
    "TypingRelay",
    "ValidationFailure",
    "issue_token",
    "load_config_from_env",
    "main",
    "simulate",
]
