from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from domain.errors import StorageError
from domain.models import User, UserClass, format_link_value, merge_users, new_identifier
from domain.repositories import IdentityRepository


class SqliteIdentityRepository(IdentityRepository):
    """
    SQLite-backed implementation of `IdentityRepository`.

    Users live in a `users` table; their external identities are mapped
    in a `user_identities` table keyed by (platform, platform_user_id), so
    every external identity belongs to at most one user. The repository is
    self-initialising: tables are created if needed.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=10)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection whose statements commit together on success.

        Any exception rolls the whole block back; driver errors surface as
        `StorageError`.
        """

        conn = self._get_connection()
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    api_key TEXT NOT NULL UNIQUE,
                    user_class TEXT NOT NULL DEFAULT 'user',
                    link_token TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_identities (
                    platform TEXT NOT NULL,
                    platform_user_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (platform, platform_user_id)
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS user_identities_user_id ON user_identities (user_id)"
            )

    @staticmethod
    def _load_user(conn: sqlite3.Connection, user_id: str) -> Optional[User]:
        cur = conn.cursor()
        cur.execute(
            "SELECT id, api_key, user_class, link_token FROM users WHERE id = ?",
            (user_id,),
        )
        row = cur.fetchone()
        if not row:
            return None

        cur.execute(
            "SELECT platform, platform_user_id FROM user_identities WHERE user_id = ?",
            (user_id,),
        )
        platform_ids = {str(platform): str(pid) for platform, pid in cur.fetchall()}
        return User(
            id=str(row[0]),
            api_key=row[1],
            user_class=UserClass(row[2]),
            platform_ids=platform_ids,
            link_token=row[3],
        )

    def _find_user(self, query: str, params: tuple) -> Optional[User]:
        with self._transaction() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            row = cur.fetchone()
            if not row:
                return None
            return self._load_user(conn, str(row[0]))

    def _insert_user(self, conn: sqlite3.Connection, user: User) -> None:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO users (id, api_key, user_class, link_token)
            VALUES (?, ?, ?, ?)
            """,
            (user.id, user.api_key, user.user_class.value, user.link_token),
        )
        cur.executemany(
            """
            INSERT INTO user_identities (platform, platform_user_id, user_id)
            VALUES (?, ?, ?)
            """,
            [(platform, pid, user.id) for platform, pid in user.platform_ids.items()],
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._transaction() as conn:
            return self._load_user(conn, user_id)

    def find_by_platform_id(
        self,
        platform: str,
        platform_user_id: str,
    ) -> Optional[User]:
        return self._find_user(
            """
            SELECT user_id
            FROM user_identities
            WHERE platform = ? AND platform_user_id = ?
            """,
            (platform, platform_user_id),
        )

    def get_or_create_by_platform_id(
        self,
        platform: str,
        platform_user_id: str,
    ) -> User:
        existing = self.find_by_platform_id(platform, platform_user_id)
        if existing is not None:
            return existing

        user = User(
            id=new_identifier(),
            api_key=new_identifier(),
            platform_ids={platform: platform_user_id},
        )
        try:
            with self._transaction() as conn:
                self._insert_user(conn, user)
        except StorageError:
            # A concurrent first contact may have created the mapping already.
            winner = self.find_by_platform_id(platform, platform_user_id)
            if winner is None:
                raise
            return winner
        return user

    def find_by_api_key(self, api_key: str) -> Optional[User]:
        return self._find_user("SELECT id FROM users WHERE api_key = ?", (api_key,))

    def issue_link_token(self, user: User, target_username: str) -> str:
        token = new_identifier()
        link_value = format_link_value(target_username, token)
        self._update_user(user, "link_token", link_value)
        user.link_token = link_value
        return token

    def find_by_link_token(self, username: str, token: str) -> Optional[User]:
        return self._find_user(
            "SELECT id FROM users WHERE link_token = ?",
            (format_link_value(username, token),),
        )

    def rotate_api_key(self, user: User) -> str:
        api_key = new_identifier()
        self._update_user(user, "api_key", api_key)
        user.api_key = api_key
        return api_key

    def _update_user(self, user: User, column: str, value: str) -> None:
        # `column` is always one of our own literals, never user input.
        with self._transaction() as conn:
            cur = conn.cursor()
            cur.execute(f"UPDATE users SET {column} = ? WHERE id = ?", (value, user.id))
            if cur.rowcount != 1:
                raise StorageError(f"User {user.id} no longer exists.")

    def link_accounts(self, first: User, second: User) -> User:
        merged = merge_users(first, second)
        source_ids = (first.id, second.id)

        with self._transaction() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM users WHERE id IN (?, ?)", source_ids)
            if cur.rowcount != 2:
                raise StorageError("One of the accounts to link no longer exists.")
            cur.execute("DELETE FROM user_identities WHERE user_id IN (?, ?)", source_ids)
            self._insert_user(conn, merged)

        return merged
