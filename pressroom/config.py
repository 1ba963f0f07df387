from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional


DEFAULT_DATABASE_PATH = "data/pressroom.sqlite3"
DEFAULT_TOKEN_ISSUER = "gopress"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, immutable once the app is built."""

    secret_key: str = "dev-secret-key"
    jwt_secret: str = "dev-jwt-secret"
    token_issuer: str = DEFAULT_TOKEN_ISSUER
    token_ttl: timedelta = timedelta(days=7)
    database_path: Path = Path(DEFAULT_DATABASE_PATH)
    conn_max_lifetime: float = 3600.0
    busy_timeout_ms: int = 5000
    password_hash_method: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            secret_key=os.getenv("SECRET_KEY", "dev-secret-key"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-jwt-secret"),
            token_issuer=os.getenv("TOKEN_ISSUER", DEFAULT_TOKEN_ISSUER),
            token_ttl=timedelta(hours=_env_int("TOKEN_TTL_HOURS", 7 * 24)),
            database_path=Path(os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)),
            conn_max_lifetime=float(_env_int("DB_CONN_MAX_LIFETIME", 3600)),
            busy_timeout_ms=_env_int("DB_BUSY_TIMEOUT_MS", 5000),
            password_hash_method=os.getenv("PASSWORD_HASH_METHOD") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
