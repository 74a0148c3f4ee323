"""
Async database access helpers (raw SQL) using asyncpg.

`Database` owns the connection pool. FastAPI creates one on startup, stores it
on `app.state.database` and closes it on shutdown (see `api/main.py`). Routes
receive it through `Depends(get_database)`, so tests can swap in a substitute.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import asyncpg
from fastapi import Request

from . import settings


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _url_from_pg_vars() -> str:
    host = os.environ.get("PG_HOST", "").strip()
    database = os.environ.get("PG_DATABASE", "").strip()
    if not host or not database:
        return ""

    user = quote(os.environ.get("PG_USER", "").strip(), safe="")
    password = quote(os.environ.get("PG_PASSWORD", ""), safe="")
    port = os.environ.get("PG_PORT", "").strip() or "5432"
    credentials = f"{user}:{password}@" if password else (f"{user}@" if user else "")
    return f"postgresql://{credentials}{host}:{port}/{quote(database, safe='')}"


def database_url() -> str:
    """
    DATABASE_URL wins; otherwise the DSN is assembled from PG_HOST, PG_PORT,
    PG_USER, PG_PASSWORD and PG_DATABASE.
    """
    url = os.environ.get("DATABASE_URL", "").strip() or _url_from_pg_vars()
    if not url:
        raise RuntimeError("DATABASE_URL is not set (and PG_HOST/PG_DATABASE are missing).")
    return _sanitize_database_url(url)


def database_ssl() -> str | None:
    """
    Cloud-hosted Postgres needs TLS but rarely ships a verifiable cert chain,
    so the default is asyncpg's `require` (encrypt, don't verify).
    """
    mode = settings.env_str("DATABASE_SSL", "require").lower()
    if mode in {"disable", "off", "false", "0"}:
        return None
    if mode not in {"require", "prefer", "allow", "verify-ca", "verify-full"}:
        raise RuntimeError(f"Invalid DATABASE_SSL '{mode}'.")
    return mode


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


class Database:
    """
    Thin handle over an asyncpg pool.

    Construct with `await Database.connect()` and pass it around explicitly;
    repositories take it as their first argument.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, dsn: str | None = None) -> "Database":
        pool = await asyncpg.create_pool(
            dsn=dsn or database_url(),
            min_size=settings.env_int("DB_POOL_MIN_SIZE", 1),
            max_size=settings.env_int("DB_POOL_MAX_SIZE", 5),
            command_timeout=settings.env_int("DB_COMMAND_TIMEOUT", 30),
            ssl=database_ssl(),
        )
        return cls(pool)

    async def close(self) -> None:
        await self._pool.close()

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """
        Run a query and return all rows as a list of dicts.
        """
        rows = await self._pool.fetch(sql, *args)
        return [_record_to_dict(r) for r in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Hold one pooled connection inside one transaction.

        Commits when the block exits normally, rolls back when it raises. The
        connection goes back to the pool either way.
        """
        async with self._pool.acquire() as conn:  # type: asyncpg.Connection
            async with conn.transaction():
                yield conn


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not initialized. It is created in the app lifespan.")
    return database
