from __future__ import annotations

import logging
from typing import Optional

from .datastore import DEFAULT_ROLE, DataStore, User
from .errors import Conflict, NotFound, Unauthorized, ValidationError
from .passwords import PasswordHasher
from .tokens import TokenService


MIN_USERNAME_LENGTH = 4
MIN_PASSWORD_LENGTH = 6
BAD_CREDENTIALS = "bad credentials"

logger = logging.getLogger(__name__)


class IdentityService:
    """Account registration and login."""

    def __init__(self, datastore: DataStore, hasher: PasswordHasher, tokens: TokenService):
        self._datastore = datastore
        self._hasher = hasher
        self._tokens = tokens

    def sign_up(
        self,
        username: str,
        password: str,
        *,
        nickname: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        if len(username or "") < MIN_USERNAME_LENGTH or len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"username must be at least {MIN_USERNAME_LENGTH} and password at least "
                f"{MIN_PASSWORD_LENGTH} characters"
            )
        # Check and insert are not one transaction; the UNIQUE constraint on
        # users.username decides concurrent signups.
        if self._datastore.find_user(username) is not None:
            logger.info("Refused signup for taken username %s", username)
            raise Conflict("username taken")
        password_hash = self._hasher.hash(password)
        user = self._datastore.insert_user(
            username,
            password_hash,
            nickname=(nickname or "").strip(),
            email=(email or "").strip() or None,
            role=DEFAULT_ROLE,
        )
        logger.info("Registered user %s (id=%s)", user.username, user.id)
        return user

    def login(self, username: str, password: str) -> str:
        user = self._datastore.find_user(username or "")
        if user is None or not self._hasher.verify(user.password_hash, password or ""):
            logger.info("Rejected login attempt")
            raise Unauthorized(BAD_CREDENTIALS)
        return self._tokens.issue(user.id, user.username)

    def profile(self, user_id: int) -> User:
        user = self._datastore.get_user(user_id)
        if user is None:
            raise NotFound("user not found")
        return user
