from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask_login import UserMixin

from .errors import Unauthorized
from .tokens import AuthError, TokenService


BEARER_PREFIX = "Bearer"

logger = logging.getLogger(__name__)


@dataclass
class Identity(UserMixin):
    """The caller resolved from a valid bearer token."""

    user_id: int
    username: str

    def get_id(self) -> str:  # type: ignore[override]
        return str(self.user_id)


class AccessGate:
    def __init__(self, tokens: TokenService):
        self._tokens = tokens

    def authenticate(self, header: Optional[str]) -> Identity:
        """Resolve an ``Authorization`` header value or raise :class:`Unauthorized`.

        Every token failure maps to the same message so callers cannot tell
        an expired token from a forged one.
        """
        parts = (header or "").split(" ", 1)
        if len(parts) != 2 or parts[0] != BEARER_PREFIX or not parts[1]:
            raise Unauthorized("malformed header")
        try:
            claims = self._tokens.validate(parts[1])
        except AuthError as exc:
            logger.debug("Token rejected: %s: %s", type(exc).__name__, exc)
            raise Unauthorized("invalid token") from exc
        return Identity(user_id=claims.user_id, username=claims.username)
