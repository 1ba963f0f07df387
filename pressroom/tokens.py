"""Signed, time-bounded identity tokens.

Tokens are HS256 JWTs carrying ``user_id``, ``username``, ``iat``, ``exp`` and
``iss``. Validation is stateless: a correctly signed, unexpired token is always
accepted, there is no revocation list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

from jose import jwt
from jose.exceptions import JWTClaimsError, JWTError

from .config import DEFAULT_TOKEN_ISSUER


__all__ = [
    "AuthError",
    "TokenMalformed",
    "TokenBadSignature",
    "TokenExpired",
    "Claims",
    "TokenService",
]


ALGORITHM = "HS256"

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base error for token validation failures."""


class TokenMalformed(AuthError):
    """The token cannot be parsed, decoded, or lacks the identity claims."""


class TokenBadSignature(AuthError):
    """The token decodes but its MAC does not match the shared secret."""


class TokenExpired(AuthError):
    """The token is correctly signed but past its expiry."""


@dataclass(frozen=True)
class Claims:
    user_id: int
    username: str
    issued_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenService:
    def __init__(
        self,
        secret: str,
        *,
        ttl: timedelta = timedelta(days=7),
        issuer: str = DEFAULT_TOKEN_ISSUER,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self._ttl = ttl
        self._issuer = issuer
        self._clock = clock

    def issue(self, user_id: int, username: str) -> str:
        issued_at = self._clock()
        expires_at = issued_at + self._ttl
        payload = {
            "user_id": int(user_id),
            "username": username,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self._issuer,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def validate(self, token: str) -> Claims:
        unverified = self._unverified_claims(token)
        try:
            payload: Dict[str, Any] = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise TokenMalformed(str(exc)) from exc
        except JWTError as exc:
            raise TokenBadSignature(str(exc)) from exc

        expires_at = _from_timestamp(unverified["exp"])
        if self._clock() > expires_at:
            raise TokenExpired(f"token expired at {expires_at.isoformat()}")
        if "iat" in payload:
            issued_at = _from_timestamp(payload["iat"])
        else:
            issued_at = expires_at - self._ttl
        return Claims(
            user_id=int(payload["user_id"]),
            username=str(payload["username"]),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    @staticmethod
    def _unverified_claims(token: str) -> Dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise TokenMalformed("empty token")
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed(str(exc)) from exc
        user_id = claims.get("user_id")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise TokenMalformed("token carries no user_id")
        if not isinstance(claims.get("username"), str):
            raise TokenMalformed("token carries no username")
        if not isinstance(claims.get("exp"), (int, float)):
            raise TokenMalformed("token carries no expiry")
        return claims
