from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2

from domain.errors import StorageError
from domain.models import User, UserClass, format_link_value, merge_users, new_identifier
from domain.repositories import IdentityRepository


class PostgresIdentityRepository(IdentityRepository):
    """
    Postgres-backed implementation of `IdentityRepository`.

    Uses the same two-table layout as the SQLite repository: `users` for
    the records themselves and `user_identities` mapping
    (platform, platform_user_id) to `users.id`.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._ensure_tables()

    def _get_connection(self):
        return psycopg2.connect(self._dsn)

    @contextmanager
    def _transaction(self) -> Iterator:
        conn = self._get_connection()
        try:
            # psycopg2 commits on clean exit and rolls back on exceptions.
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as cur:
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

    @staticmethod
    def _load_user(cur, user_id: str) -> Optional[User]:
        cur.execute(
            "SELECT id, api_key, user_class, link_token FROM users WHERE id = %s",
            (user_id,),
        )
        row = cur.fetchone()
        if not row:
            return None

        cur.execute(
            "SELECT platform, platform_user_id FROM user_identities WHERE user_id = %s",
            (user_id,),
        )
        return User(
            id=str(row[0]),
            api_key=row[1],
            user_class=UserClass(row[2]),
            platform_ids={str(p): str(pid) for p, pid in cur.fetchall()},
            link_token=row[3],
        )

    def _find_user(self, query: str, params: tuple) -> Optional[User]:
        with self._transaction() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
            if not row:
                return None
            return self._load_user(cur, str(row[0]))

    @staticmethod
    def _insert_user(cur, user: User) -> None:
        cur.execute(
            """
            INSERT INTO users (id, api_key, user_class, link_token)
            VALUES (%s, %s, %s, %s)
            """,
            (user.id, user.api_key, user.user_class.value, user.link_token),
        )
        for platform, platform_user_id in user.platform_ids.items():
            cur.execute(
                """
                INSERT INTO user_identities (platform, platform_user_id, user_id)
                VALUES (%s, %s, %s)
                """,
                (platform, platform_user_id, user.id),
            )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._transaction() as cur:
            return self._load_user(cur, user_id)

    def find_by_platform_id(
        self,
        platform: str,
        platform_user_id: str,
    ) -> Optional[User]:
        return self._find_user(
            """
            SELECT user_id
            FROM user_identities
            WHERE platform = %s AND platform_user_id = %s
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
            with self._transaction() as cur:
                self._insert_user(cur, user)
        except StorageError:
            winner = self.find_by_platform_id(platform, platform_user_id)
            if winner is None:
                raise
            return winner
        return user

    def find_by_api_key(self, api_key: str) -> Optional[User]:
        return self._find_user("SELECT id FROM users WHERE api_key = %s", (api_key,))

    def issue_link_token(self, user: User, target_username: str) -> str:
        token = new_identifier()
        link_value = format_link_value(target_username, token)
        with self._transaction() as cur:
            cur.execute(
                "UPDATE users SET link_token = %s WHERE id = %s",
                (link_value, user.id),
            )
            if cur.rowcount != 1:
                raise StorageError(f"User {user.id} no longer exists.")
        user.link_token = link_value
        return token

    def find_by_link_token(self, username: str, token: str) -> Optional[User]:
        return self._find_user(
            "SELECT id FROM users WHERE link_token = %s",
            (format_link_value(username, token),),
        )

    def rotate_api_key(self, user: User) -> str:
        api_key = new_identifier()
        with self._transaction() as cur:
            cur.execute(
                "UPDATE users SET api_key = %s WHERE id = %s",
                (api_key, user.id),
            )
            if cur.rowcount != 1:
                raise StorageError(f"User {user.id} no longer exists.")
        user.api_key = api_key
        return api_key

    def link_accounts(self, first: User, second: User) -> User:
        merged = merge_users(first, second)
        source_ids = (first.id, second.id)

        with self._transaction() as cur:
            # Lock both rows so a concurrent link of either source waits for us.
            cur.execute(
                "SELECT id FROM users WHERE id IN (%s, %s) FOR UPDATE",
                source_ids,
            )
            if len(cur.fetchall()) != 2:
                raise StorageError("One of the accounts to link no longer exists.")
            cur.execute("DELETE FROM user_identities WHERE user_id IN (%s, %s)", source_ids)
            cur.execute("DELETE FROM users WHERE id IN (%s, %s)", source_ids)
            self._insert_user(cur, merged)

        return merged
