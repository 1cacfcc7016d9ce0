from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from grade_portal.models.config_models import DatabaseConfig

from .store import PostgresStore, StoreError

"""Database connection helpers.

Connection settings are resolved in this order:
    1. ``.env`` (loaded with override, so it wins over the process environment)
    2. process environment: DATABASE_URL / PGDSN as a full DSN, otherwise
       PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the ``database`` section of config/portal.yml for whatever is missing
"""

__all__ = [
    "load_env_file",
    "open_store",
    "resolve_dsn",
]

logger = logging.getLogger(__name__)


def load_env_file(path: Path = Path(".env"), override: bool = True) -> bool:
    """Load .env via python-dotenv. Returns True when a file was loaded."""
    if not path.exists():
        return False
    return load_dotenv(dotenv_path=path, override=override)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def open_store(db_cfg: DatabaseConfig) -> Iterator[PostgresStore]:
    """Open a psycopg2 connection and wrap it in a PostgresStore."""
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.Error as e:
        raise StoreError(f"cannot connect to database: {e}") from e
    conn.autocommit = False  # 各 verb が自前でトランザクション境界を持つ
    store = PostgresStore(conn)
    try:
        yield store
    finally:
        store.close()
