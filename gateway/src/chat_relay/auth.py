from __future__ import annotations

import time
from typing import Dict

import jwt

from .errors import AuthenticationFailure

DEFAULT_TOKEN_TTL_S = 7 * 24 * 60 * 60


class TokenVerifier:
    """Resolves an opaque credential to the user id that owns it."""

    async def verify(self, token: str) -> str:
        raise NotImplementedError

    async def verify_as(self, token: object, claimed_user_id: object) -> str:
        """Verify ``token`` and require that it belongs to ``claimed_user_id``."""

        if not isinstance(token, str) or not token:
            raise AuthenticationFailure("Invalid authentication")
        user_id = await self.verify(token)
        if user_id != claimed_user_id:
            raise AuthenticationFailure("Invalid authentication")
        return user_id


class JWTVerifier(TokenVerifier):
    """Verifies signed tokens whose ``id`` claim names the user."""

    def __init__(self, secret: str, *, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> str:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationFailure("Invalid authentication", detail="token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationFailure("Invalid authentication", detail="token invalid") from exc
        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationFailure("Invalid authentication", detail="token has no subject")
        return user_id


class StaticTokenVerifier(TokenVerifier):
    """Token table verifier used by the simulator and tests."""

    def __init__(self, tokens: Dict[str, str] | None = None) -> None:
        self._tokens: Dict[str, str] = dict(tokens or {})

    def add(self, token: str, user_id: str) -> None:
        self._tokens[token] = user_id

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    async def verify(self, token: str) -> str:
        user_id = self._tokens.get(token)
        if user_id is None:
            raise AuthenticationFailure("Invalid authentication")
        return user_id


def issue_token(
    user_id: str,
    secret: str,
    *,
    algorithm: str = "HS256",
    ttl_s: int = DEFAULT_TOKEN_TTL_S,
    now_s: float | None = None,
) -> str:
    """Sign a development token for ``user_id``."""

    issued_at = int(now_s if now_s is not None else time.time())
    payload = {"id": user_id, "iat": issued_at, "exp": issued_at + ttl_s}
    return jwt.encode(payload, secret, algorithm=algorithm)
