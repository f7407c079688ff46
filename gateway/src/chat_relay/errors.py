from __future__ import annotations


class RelayError(Exception):
    """Base class for failures that are reported back to a single connection."""

    code = "relay_error"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class AuthenticationFailure(RelayError):
    code = "unauthorized"


class ValidationFailure(RelayError):
    code = "invalid_request"


class PersistenceFailure(RelayError):
    code = "persistence_failed"
