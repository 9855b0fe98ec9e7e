from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class Settings:
    """
    Runtime configuration, read from the environment (and a `.env` file).

    Gateway tokens are optional here; each entry point checks the one it
    needs.
    """

    discord_token: Optional[str] = None
    discord_cmd_prefix: str = "!"
    telegram_token: Optional[str] = None
    telegram_cmd_prefix: str = "/"
    db_backend: str = "sqlite"
    db_path: str = "netbot.db"
    database_url: Optional[str] = None
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv()

        log_dir = os.environ.get("LOG_DIR")
        return cls(
            discord_token=os.environ.get("DISCORD_TOKEN"),
            discord_cmd_prefix=os.environ.get("DISCORD_CMD_PREFIX") or "!",
            telegram_token=os.environ.get("TELEGRAM_TOKEN"),
            telegram_cmd_prefix=os.environ.get("TELEGRAM_CMD_PREFIX") or "/",
            db_backend=os.environ.get("DB_BACKEND", "sqlite").lower(),
            db_path=os.environ.get("DB_PATH", "netbot.db"),
            database_url=os.environ.get("DATABASE_URL"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_dir=Path(log_dir) if log_dir else None,
        )


def create_identity_repository(settings: Settings):
    """Open the identity store selected by `DB_BACKEND`."""

    if settings.db_backend == "postgres":
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL environment variable is not set.")
        from infrastructure.db.identity_repository_postgres import PostgresIdentityRepository

        return PostgresIdentityRepository(settings.database_url)

    if settings.db_backend == "sqlite":
        from infrastructure.db.identity_repository_sqlite import SqliteIdentityRepository

        return SqliteIdentityRepository(settings.db_path)

    raise RuntimeError(f"Unknown DB_BACKEND {settings.db_backend!r}.")
