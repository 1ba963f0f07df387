from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock, Thread, current_thread, local
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import Conflict, ValidationError


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
DEFAULT_ROLE = "user"

# Range of an SQLite INTEGER; ids outside it can never match a row.
MIN_SQLITE_INTEGER = -(2**63)
MAX_SQLITE_INTEGER = 2**63 - 1
SLOW_QUERY_MS = 200

NAMED_TABLES = ("categories", "tags")
SINGULAR = {"categories": "category", "tags": "tag"}

POST_SELECT = """
    SELECT p.id, p.title, p.content, p.summary, p.status, p.user_id, p.category_id,
           p.created_at, p.updated_at,
           u.username AS user_username, u.nickname AS user_nickname,
           c.name AS category_name
    FROM posts p
    LEFT JOIN users u ON u.id = p.user_id
    LEFT JOIN categories c ON c.id = p.category_id
"""


logger = logging.getLogger(__name__)


def utcnow_str() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def name_taken_message(table: str) -> str:
    return f"{SINGULAR[table]} name already exists"


def fits_integer(value: int) -> bool:
    return MIN_SQLITE_INTEGER <= value <= MAX_SQLITE_INTEGER


class TracedConnection(sqlite3.Connection):
    """Connection that logs every statement with its elapsed time."""

    def execute(self, sql, parameters=()):
        started = time.perf_counter()
        try:
            cursor = super().execute(sql, parameters)
        except sqlite3.Error as exc:
            _log_statement(sql, started, exc)
            raise
        _log_statement(sql, started)
        return cursor

    def executemany(self, sql, seq_of_parameters):
        started = time.perf_counter()
        try:
            cursor = super().executemany(sql, seq_of_parameters)
        except sqlite3.Error as exc:
            _log_statement(sql, started, exc)
            raise
        _log_statement(sql, started)
        return cursor


def _log_statement(sql: str, started: float, error: Optional[sqlite3.Error] = None) -> None:
    elapsed_ms = (time.perf_counter() - started) * 1000
    statement = " ".join(sql.split())
    if isinstance(error, sqlite3.IntegrityError):
        # Constraint violations are turned into Conflict by the caller.
        logger.info("SQL rejected (%.1fms): %s: %s", elapsed_ms, error, statement)
    elif error is not None:
        logger.error("SQL failed (%.1fms): %s: %s", elapsed_ms, error, statement)
    elif elapsed_ms > SLOW_QUERY_MS:
        logger.warning("Slow SQL (%.1fms): %s", elapsed_ms, statement)
    elif logger.isEnabledFor(logging.DEBUG):
        logger.debug("SQL (%.1fms): %s", elapsed_ms, statement)


class SQLiteConnectionManager:
    """One connection per worker thread, recycled once it outlives ``max_lifetime``.

    Connections run in autocommit mode; multi-statement work goes through
    :meth:`DataStore.transaction`, which issues ``BEGIN IMMEDIATE`` itself.
    Connections left behind by finished threads are closed whenever another
    thread opens one.
    """

    def __init__(self, db_path: Path, *, max_lifetime: float = 3600.0, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_lifetime = max_lifetime
        self.busy_timeout_ms = busy_timeout_ms
        self._local = local()
        self._registry_lock = Lock()
        self._open: List[Tuple[Thread, sqlite3.Connection]] = []

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is not None and self._expired() and not conn.in_transaction:
            logger.debug("Recycling SQLite connection older than %ss", self.max_lifetime)
            self.close_connection()
            conn = None
        if conn is None:
            self._close_orphans()
            conn = sqlite3.connect(
                self.db_path,
                detect_types=sqlite3.PARSE_DECLTYPES,
                check_same_thread=False,
                isolation_level=None,
                factory=TracedConnection,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA temp_store=MEMORY")
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            self._local.connection = conn
            self._local.opened_at = time.monotonic()
            with self._registry_lock:
                self._open.append((current_thread(), conn))
        return conn

    @property
    def open_count(self) -> int:
        with self._registry_lock:
            return len(self._open)

    def _close_orphans(self) -> None:
        with self._registry_lock:
            orphans = [conn for thread, conn in self._open if not thread.is_alive()]
            self._open = [(thread, conn) for thread, conn in self._open if thread.is_alive()]
        for conn in orphans:
            conn.close()
        if orphans:
            logger.debug("Closed %d connection(s) left by finished threads", len(orphans))

    def _expired(self) -> bool:
        opened_at = getattr(self._local, "opened_at", None)
        if opened_at is None or self.max_lifetime <= 0:
            return False
        return time.monotonic() - opened_at > self.max_lifetime

    def close_connection(self) -> None:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            with self._registry_lock:
                self._open = [entry for entry in self._open if entry[1] is not conn]
            self._local.connection = None
            self._local.opened_at = None

    def close_all(self) -> None:
        with self._registry_lock:
            entries, self._open = self._open, []
        for _, conn in entries:
            conn.close()
        self._local.connection = None
        self._local.opened_at = None


@dataclass
class User:
    id: int
    username: str
    password_hash: str
    nickname: str = ""
    email: Optional[str] = None
    role: str = DEFAULT_ROLE
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "nickname": self.nickname,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class DataStore:
    """SQLite persistence shared by the identity and content services."""

    def __init__(self, db_path: Path, *, max_lifetime: float = 3600.0, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self._connection_manager = SQLiteConnectionManager(
            self.db_path,
            max_lifetime=max_lifetime,
            busy_timeout_ms=busy_timeout_ms,
        )
        self._setup_lock = RLock()
        self._setup_complete = False
        self._setup_database()

    def _conn(self) -> sqlite3.Connection:
        return self._connection_manager.get_connection()

    def close(self) -> None:
        self._connection_manager.close_all()

    def _setup_database(self) -> None:
        if self._setup_complete:
            return
        with self._setup_lock:
            if self._setup_complete:
                return
            self._ensure_schema(self._conn())
            self._setup_complete = True

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            BEGIN;

            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                nickname TEXT NOT NULL DEFAULT '',
                email TEXT UNIQUE,
                role TEXT NOT NULL DEFAULT 'user',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS posts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                summary TEXT NOT NULL DEFAULT '',
                status INTEGER NOT NULL DEFAULT 1 CHECK (status IN (0, 1)),
                user_id INTEGER NOT NULL,
                category_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(user_id) REFERENCES users(id),
                FOREIGN KEY(category_id) REFERENCES categories(id)
            );

            CREATE INDEX IF NOT EXISTS idx_posts_created_at ON posts(created_at);
            CREATE INDEX IF NOT EXISTS idx_posts_category ON posts(category_id);
            CREATE INDEX IF NOT EXISTS idx_posts_user ON posts(user_id);

            CREATE TABLE IF NOT EXISTS post_tags (
                post_id INTEGER NOT NULL,
                tag_id INTEGER NOT NULL,
                PRIMARY KEY (post_id, tag_id),
                FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE,
                FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_post_tags_tag ON post_tags(tag_id);

            COMMIT;
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements atomically on this thread's connection.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so the checks made
        inside the block hold until commit.
        """
        conn = self._conn()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    # Users ------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        if not fits_integer(user_id):
            return None
        row = self._conn().execute(
            "SELECT id, username, password_hash, nickname, email, role, created_at, updated_at FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        return self._user_from_row(row) if row else None

    def find_user(self, username: str) -> Optional[User]:
        row = self._conn().execute(
            "SELECT id, username, password_hash, nickname, email, role, created_at, updated_at FROM users WHERE username = ?",
            (username,),
        ).fetchone()
        return self._user_from_row(row) if row else None

    def insert_user(
        self,
        username: str,
        password_hash: str,
        *,
        nickname: str = "",
        email: Optional[str] = None,
        role: str = DEFAULT_ROLE,
    ) -> User:
        timestamp = utcnow_str()
        try:
            cursor = self._conn().execute(
                """
                INSERT INTO users (username, password_hash, nickname, email, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (username, password_hash, nickname, email, role, timestamp, timestamp),
            )
        except sqlite3.IntegrityError as exc:
            if "users.email" in str(exc):
                raise Conflict("email taken") from exc
            raise Conflict("username taken") from exc
        return User(
            id=int(cursor.lastrowid),
            username=username,
            password_hash=password_hash,
            nickname=nickname,
            email=email,
            role=role,
            created_at=timestamp,
            updated_at=timestamp,
        )

    # Categories and tags ---------------------------------------------

    def get_named(self, table: str, item_id: int) -> Optional[Dict[str, Any]]:
        if not fits_integer(item_id):
            return None
        row = self._conn().execute(
            f"SELECT id, name, created_at, updated_at FROM {self._named(table)} WHERE id = ?",
            (item_id,),
        ).fetchone()
        return self._named_from_row(row) if row else None

    def find_named(self, table: str, name: str, *, exclude_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        sql = f"SELECT id, name, created_at, updated_at FROM {self._named(table)} WHERE name = ?"
        params: List[Any] = [name]
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        row = self._conn().execute(sql, params).fetchone()
        return self._named_from_row(row) if row else None

    def list_named(self, table: str) -> List[Dict[str, Any]]:
        rows = self._conn().execute(
            f"SELECT id, name, created_at, updated_at FROM {self._named(table)} ORDER BY created_at DESC, id ASC"
        ).fetchall()
        return [self._named_from_row(row) for row in rows]

    def insert_named(self, table: str, name: str) -> Dict[str, Any]:
        timestamp = utcnow_str()
        try:
            cursor = self._conn().execute(
                f"INSERT INTO {self._named(table)} (name, created_at, updated_at) VALUES (?, ?, ?)",
                (name, timestamp, timestamp),
            )
        except sqlite3.IntegrityError as exc:
            raise Conflict(name_taken_message(table)) from exc
        return {"id": int(cursor.lastrowid), "name": name, "created_at": timestamp, "updated_at": timestamp}

    def rename_named(self, table: str, item_id: int, name: str) -> int:
        try:
            cursor = self._conn().execute(
                f"UPDATE {self._named(table)} SET name = ?, updated_at = ? WHERE id = ?",
                (name, utcnow_str(), item_id),
            )
        except sqlite3.IntegrityError as exc:
            raise Conflict(name_taken_message(table)) from exc
        return cursor.rowcount

    def delete_named(self, table: str, item_id: int) -> int:
        if not fits_integer(item_id):
            return 0
        try:
            cursor = self._conn().execute(f"DELETE FROM {self._named(table)} WHERE id = ?", (item_id,))
        except sqlite3.IntegrityError as exc:
            # posts.category_id has no cascade
            raise Conflict(f"{SINGULAR[table]} in use") from exc
        return cursor.rowcount

    def count_tags(self, tag_ids: Sequence[int]) -> int:
        tag_ids = [tag_id for tag_id in tag_ids if fits_integer(tag_id)]
        if not tag_ids:
            return 0
        placeholders = ",".join(["?"] * len(tag_ids))
        row = self._conn().execute(
            f"SELECT COUNT(*) AS count FROM tags WHERE id IN ({placeholders})",
            list(tag_ids),
        ).fetchone()
        return int(row["count"])

    def count_posts_in_category(self, category_id: int) -> int:
        if not fits_integer(category_id):
            return 0
        row = self._conn().execute(
            "SELECT COUNT(*) AS count FROM posts WHERE category_id = ?",
            (category_id,),
        ).fetchone()
        return int(row["count"])

    # Posts ------------------------------------------------------------

    def get_post_row(self, post_id: int) -> Optional[Dict[str, Any]]:
        if not fits_integer(post_id):
            return None
        row = self._conn().execute(
            """
            SELECT id, title, content, summary, status, user_id, category_id, created_at, updated_at
            FROM posts
            WHERE id = ?
            """,
            (post_id,),
        ).fetchone()
        return dict(row) if row else None

    def insert_post(
        self,
        *,
        title: str,
        content: str,
        summary: str,
        status: int,
        user_id: int,
        category_id: int,
    ) -> int:
        timestamp = utcnow_str()
        try:
            cursor = self._conn().execute(
                """
                INSERT INTO posts (title, content, summary, status, user_id, category_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (title, content, summary, status, user_id, category_id, timestamp, timestamp),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("invalid post reference") from exc
        return int(cursor.lastrowid)

    def save_post(
        self,
        post_id: int,
        *,
        title: str,
        content: str,
        summary: str,
        status: int,
        category_id: int,
    ) -> None:
        self._conn().execute(
            """
            UPDATE posts
            SET title = ?, content = ?, summary = ?, status = ?, category_id = ?, updated_at = ?
            WHERE id = ?
            """,
            (title, content, summary, status, category_id, utcnow_str(), post_id),
        )

    def post_tag_ids(self, post_id: int) -> List[int]:
        rows = self._conn().execute(
            "SELECT tag_id FROM post_tags WHERE post_id = ? ORDER BY tag_id",
            (post_id,),
        ).fetchall()
        return [int(row["tag_id"]) for row in rows]

    def replace_post_tags(self, post_id: int, tag_ids: Iterable[int]) -> None:
        """Make the post's tag set exactly ``tag_ids``, touching only the difference."""
        target = list(dict.fromkeys(tag_ids))
        current = set(self.post_tag_ids(post_id))
        conn = self._conn()
        stale = current.difference(target)
        if stale:
            conn.executemany(
                "DELETE FROM post_tags WHERE post_id = ? AND tag_id = ?",
                [(post_id, tag_id) for tag_id in sorted(stale)],
            )
        fresh = [tag_id for tag_id in target if tag_id not in current]
        if fresh:
            conn.executemany(
                "INSERT INTO post_tags (post_id, tag_id) VALUES (?, ?)",
                [(post_id, tag_id) for tag_id in fresh],
            )

    def clear_post_tags(self, post_id: int) -> None:
        self._conn().execute("DELETE FROM post_tags WHERE post_id = ?", (post_id,))

    def delete_post_row(self, post_id: int) -> int:
        cursor = self._conn().execute("DELETE FROM posts WHERE id = ?", (post_id,))
        return cursor.rowcount

    def count_posts(self) -> int:
        row = self._conn().execute("SELECT COUNT(*) AS count FROM posts").fetchone()
        return int(row["count"])

    def count_post_tag_links(self) -> int:
        row = self._conn().execute("SELECT COUNT(*) AS count FROM post_tags").fetchone()
        return int(row["count"])

    def get_post(self, post_id: int) -> Optional[Dict[str, Any]]:
        if not fits_integer(post_id):
            return None
        row = self._conn().execute(f"{POST_SELECT} WHERE p.id = ?", (post_id,)).fetchone()
        if not row:
            return None
        return self._build_posts_from_rows([row])[0]

    def list_posts(self, *, limit: int, offset: int) -> List[Dict[str, Any]]:
        if offset > MAX_SQLITE_INTEGER:
            return []
        limit = min(limit, MAX_SQLITE_INTEGER)
        rows = self._conn().execute(
            f"{POST_SELECT} ORDER BY p.created_at DESC, p.id ASC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return self._build_posts_from_rows(rows)

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _named(table: str) -> str:
        if table not in NAMED_TABLES:
            raise ValueError(f"unknown table: {table}")
        return table

    @staticmethod
    def _named_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "name": row["name"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            nickname=row["nickname"] or "",
            email=row["email"],
            role=row["role"] or DEFAULT_ROLE,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _build_posts_from_rows(self, rows: Sequence[sqlite3.Row]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        post_ids = [row["id"] for row in rows]
        tags_map = self._load_tags_for_posts(post_ids)
        posts: List[Dict[str, Any]] = []
        for row in rows:
            post_id = row["id"]
            user = None
            if row["user_username"] is not None:
                user = {
                    "id": row["user_id"],
                    "username": row["user_username"],
                    "nickname": row["user_nickname"] or "",
                }
            category = None
            if row["category_name"] is not None:
                category = {"id": row["category_id"], "name": row["category_name"]}
            posts.append(
                {
                    "id": post_id,
                    "title": row["title"],
                    "content": row["content"],
                    "summary": row["summary"],
                    "status": row["status"],
                    "user_id": row["user_id"],
                    "user": user,
                    "category_id": row["category_id"],
                    "category": category,
                    "tags": tags_map.get(post_id, []),
                    "created_at": row["created_at"],
                    "updated_at": row["updated_at"],
                }
            )
        return posts

    def _load_tags_for_posts(self, post_ids: Sequence[int]) -> Dict[int, List[Dict[str, Any]]]:
        if not post_ids:
            return {}
        placeholders = ",".join(["?"] * len(post_ids))
        rows = self._conn().execute(
            f"""
            SELECT pt.post_id, t.id, t.name
            FROM post_tags pt
            JOIN tags t ON t.id = pt.tag_id
            WHERE pt.post_id IN ({placeholders})
            ORDER BY t.name, t.id
            """,
            list(post_ids),
        ).fetchall()
        result: Dict[int, List[Dict[str, Any]]] = {post_id: [] for post_id in post_ids}
        for row in rows:
            result.setdefault(row["post_id"], []).append({"id": row["id"], "name": row["name"]})
        return result
