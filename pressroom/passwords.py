from __future__ import annotations

import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash


logger = logging.getLogger(__name__)


class PasswordHasher:
    """Salted one-way hashing backed by werkzeug.

    ``generate_password_hash`` draws a fresh salt on every call, so hashing the
    same password twice yields different digests. ``check_password_hash``
    compares with ``hmac.compare_digest``.
    """

    def __init__(self, method: Optional[str] = None):
        self._method = method

    def hash(self, plaintext: str) -> str:
        if self._method:
            return generate_password_hash(plaintext, method=self._method)
        return generate_password_hash(plaintext)

    def verify(self, digest: str, plaintext: str) -> bool:
        if not digest:
            return False
        try:
            return check_password_hash(digest, plaintext)
        except ValueError:
            logger.warning("Unrecognised password hash format")
            return False
