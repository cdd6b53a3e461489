"""
qdb.store
~~~~~~~~~
sqlite3 persistence for users and quotes.  Schema is created on first use;
there are no migrations.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


# sqlite INTEGER is a signed 64-bit value
SQLITE_MAX_INT = 2**63 - 1


class PersistenceError(Exception):
    pass


class DuplicateUser(PersistenceError):
    pass


@dataclass
class User:
    id: Optional[int]
    name: str
    password: str
    flags: int = 0


@dataclass
class Quote:
    id: Optional[int]
    quote: str
    author: str
    approved: bool = False


class Store:
    def __init__(self, db_path: str, page_size: int = 10):
        self.db_path = db_path
        self.page_size = page_size
        self.conn = None
        self._lock = threading.Lock()

    def _get_conn(self):
        if not self.conn:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
        return self.conn

    def _execute(self, sql: str, params: tuple = (), fetch: Optional[str] = None):
        """Run one statement and commit.  Returns rows for *fetch*, else the cursor."""
        with self._lock:
            try:
                conn = self._get_conn()
                cursor = conn.execute(sql, params)
                if fetch == "one":
                    result = cursor.fetchone()
                elif fetch == "all":
                    result = cursor.fetchall()
                else:
                    result = cursor
                conn.commit()
                return result
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e):
                    raise DuplicateUser(str(e)) from e
                raise PersistenceError(str(e)) from e
            except (sqlite3.Error, OverflowError) as e:
                logger.error("store error: %s", e)
                raise PersistenceError(str(e)) from e

    def initialize_db(self):
        """Create the users and quotes tables if they don't exist."""
        self._execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                flags INTEGER NOT NULL DEFAULT 0
            )
        """)
        self._execute("""
            CREATE TABLE IF NOT EXISTS quotes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                quote TEXT NOT NULL,
                author TEXT NOT NULL,
                approved INTEGER NOT NULL DEFAULT 0
            )
        """)
        logger.info("Database initialized at %s", self.db_path)

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    # ------------------------------------------------------------------ #
    # users
    # ------------------------------------------------------------------ #

    def find_user_by_name(self, name: str) -> Optional[User]:
        row = self._execute("SELECT * FROM users WHERE name = ?", (name,), fetch="one")
        return _user(row) if row else None

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        if not _fits(user_id):
            return None
        row = self._execute("SELECT * FROM users WHERE id = ?", (user_id,), fetch="one")
        return _user(row) if row else None

    def create_user(self, name: str, password_hash: str, flags: int = 0) -> User:
        cursor = self._execute(
            "INSERT INTO users (name, password, flags) VALUES (?, ?, ?)",
            (name, password_hash, flags),
        )
        return User(id=cursor.lastrowid, name=name, password=password_hash, flags=flags)

    def persist(self, user: User) -> bool:
        """Write *user* back.  False if the row no longer exists."""
        cursor = self._execute(
            "UPDATE users SET name = ?, password = ?, flags = ? WHERE id = ?",
            (user.name, user.password, user.flags, user.id),
        )
        return cursor.rowcount == 1

    def delete_user(self, user_id: int) -> bool:
        if not _fits(user_id):
            return False
        cursor = self._execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cursor.rowcount == 1

    def list_users(self, page: int = 1) -> List[User]:
        rows = self._execute(
            "SELECT * FROM users ORDER BY id LIMIT ? OFFSET ?",
            (self.page_size, _offset(page, self.page_size)),
            fetch="all",
        )
        return [_user(r) for r in rows]

    # ------------------------------------------------------------------ #
    # quotes
    # ------------------------------------------------------------------ #

    def create_quote(self, quote: str, author: str) -> Quote:
        cursor = self._execute(
            "INSERT INTO quotes (quote, author, approved) VALUES (?, ?, 0)",
            (quote, author),
        )
        return Quote(id=cursor.lastrowid, quote=quote, author=author)

    def find_quote(self, quote_id: int) -> Optional[Quote]:
        if not _fits(quote_id):
            return None
        row = self._execute("SELECT * FROM quotes WHERE id = ?", (quote_id,), fetch="one")
        return _quote(row) if row else None

    def save_quote(self, quote: Quote) -> bool:
        cursor = self._execute(
            "UPDATE quotes SET quote = ?, author = ?, approved = ? WHERE id = ?",
            (quote.quote, quote.author, int(quote.approved), quote.id),
        )
        return cursor.rowcount == 1

    def delete_quote(self, quote_id: int) -> bool:
        if not _fits(quote_id):
            return False
        cursor = self._execute("DELETE FROM quotes WHERE id = ?", (quote_id,))
        return cursor.rowcount == 1

    def list_approved(self, page: int = 1) -> List[Quote]:
        rows = self._execute(
            "SELECT * FROM quotes WHERE approved = 1 ORDER BY id LIMIT ? OFFSET ?",
            (self.page_size, _offset(page, self.page_size)),
            fetch="all",
        )
        return [_quote(r) for r in rows]

    def moderation_queue(self) -> List[Quote]:
        rows = self._execute("SELECT * FROM quotes WHERE approved = 0 ORDER BY id", fetch="all")
        return [_quote(r) for r in rows]


def _fits(value: int) -> bool:
    return -SQLITE_MAX_INT - 1 <= value <= SQLITE_MAX_INT


def _offset(page: int, page_size: int) -> int:
    return min((max(page, 1) - 1) * page_size, SQLITE_MAX_INT)


def _user(row: sqlite3.Row) -> User:
    return User(id=row["id"], name=row["name"], password=row["password"], flags=row["flags"])


def _quote(row: sqlite3.Row) -> Quote:
    return Quote(
        id=row["id"], quote=row["quote"], author=row["author"], approved=bool(row["approved"])
    )
