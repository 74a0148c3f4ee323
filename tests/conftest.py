"""Pytest configuration and fixtures for the facility registry API."""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterator

import pytest
from fastapi.testclient import TestClient

from core.db import get_database

INSERT_RE = re.compile(r"^INSERT INTO temp_upload \((?P<columns>.*)\) VALUES \((?P<values>.*)\)$")
QUOTED_COLUMN_RE = re.compile(r'"((?:[^"]|"")*)"')
PLACEHOLDER_RE = re.compile(r"^\$\d+(?:::text::(?P<cast>.+))?$")

COLUMN_TYPES_SQL = (
    "SELECT a.attname AS column_name, format_type(a.atttypid, a.atttypmod) AS data_type "
    "FROM pg_attribute a WHERE a.attrelid = to_regclass($1) AND a.attnum > 0 AND NOT a.attisdropped"
)


class FakeStoreError(Exception):
    """Stands in for an asyncpg error raised by the server."""


def _normalize(sql: str) -> str:
    return " ".join(sql.split())


class FakeConnection:
    def __init__(self, database: "FakeDatabase") -> None:
        self._database = database
        self.pending: list[dict[str, Any]] = []

    async def execute(self, sql: str, *args: Any) -> None:
        match = INSERT_RE.match(_normalize(sql))
        if match is None:
            raise AssertionError(f"unexpected statement: {sql}")

        columns = [c.replace('""', '"') for c in QUOTED_COLUMN_RE.findall(match.group("columns"))]
        placeholders = [p.strip() for p in re.split(r",\s*(?=\$)", match.group("values"))]
        assert len(columns) == len(args) == len(placeholders), "placeholder count must match the column count"
        row = dict(zip(columns, args))

        self._database.insert_attempts += 1
        for position, (column, placeholder) in enumerate(zip(columns, placeholders), start=1):
            self._check_parameter(position, column, placeholder, row[column])

        if row.get("uid") in self._database.reject_uids:
            raise FakeStoreError(f'duplicate key value violates unique constraint "temp_upload_uid_key" ({row["uid"]})')
        self.pending.append(row)

    def _check_parameter(self, position: int, column: str, placeholder: str, value: Any) -> None:
        declared = self._database.column_types.get(column)
        if declared is None or declared == "text":
            return
        placeholder_match = PLACEHOLDER_RE.match(placeholder)
        assert placeholder_match is not None, f"unexpected placeholder: {placeholder}"
        if placeholder_match.group("cast") == declared:
            return
        if isinstance(value, str):
            # asyncpg's binary codecs refuse a str for non-text columns.
            raise FakeStoreError(
                f"invalid input for query argument ${position}: {value!r} ({declared} column '{column}' needs a non-str value)"
            )

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        if _normalize(sql) != COLUMN_TYPES_SQL:
            raise AssertionError(f"unexpected query: {sql}")
        assert args == ("temp_upload",)
        return [{"column_name": name, "data_type": kind} for name, kind in self._database.column_types.items()]

    async def executemany(self, sql: str, args: list[tuple[Any, ...]]) -> None:
        for values in args:
            await self.execute(sql, *values)


class FakeDatabase:
    """
    In-memory stand-in for `core.db.Database`.

    Understands exactly the SQL the app issues, applies inserts only when a
    transaction block exits cleanly, and can be told to fail.
    """

    def __init__(self) -> None:
        self.facilities: list[dict[str, Any]] = []
        self.staged: list[dict[str, Any]] = []
        # Declared types of temp_upload columns; anything absent behaves as text.
        self.column_types: dict[str, str] = {}
        self.queries: list[str] = []
        self.reject_uids: set[str] = set()
        self.fail_reads = False
        self.insert_attempts = 0
        self.commits = 0
        self.rollbacks = 0

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        statement = _normalize(sql)
        self.queries.append(statement)
        if self.fail_reads:
            raise FakeStoreError("connection refused")

        if statement == "SELECT * FROM health_facilities":
            return [dict(row) for row in self.facilities]

        if statement == "SELECT DISTINCT facility_type FROM health_facilities WHERE facility_type IS NOT NULL":
            types = dict.fromkeys(
                row.get("facility_type") for row in self.facilities if row.get("facility_type") is not None
            )
            return [{"facility_type": t} for t in types]

        if statement == "SELECT * FROM temp_upload ORDER BY county":
            # Postgres sorts NULLs last in ascending order.
            return [
                dict(row)
                for row in sorted(self.staged, key=lambda r: (r.get("county") is None, r.get("county") or ""))
            ]

        if statement == "SELECT uid FROM temp_upload WHERE uid::text = ANY($1::text[])":
            wanted = set(args[0])
            return [{"uid": row["uid"]} for row in self.staged if row.get("uid") in wanted]

        raise AssertionError(f"unexpected query: {statement}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeConnection]:
        conn = FakeConnection(self)
        try:
            yield conn
        except BaseException:
            self.rollbacks += 1
            raise
        self.staged.extend(conn.pending)
        self.commits += 1


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def upload_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    directory = tmp_path / "uploads"
    monkeypatch.setenv("UPLOAD_DIR", str(directory))
    return directory


@pytest.fixture
def client(fake_db: FakeDatabase, upload_dir: Path) -> Iterator[TestClient]:
    from main import app

    app.dependency_overrides[get_database] = lambda: fake_db
    try:
        # Not used as a context manager: the lifespan (real pool) never runs.
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
