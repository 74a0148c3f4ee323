"""
Ingestion persistence.
This module is where staging-table (`temp_upload`) SQL lives.

CSV values are always strings. asyncpg encodes parameters with the binary
codec of the target column, so a `str` bound to an `integer` or `numeric`
column is rejected client-side. Every value is therefore sent as text and cast
to the column's declared type inside the statement.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from core.db import Database

from .csv_decoder import FacilityRecord

STAGING_TABLE = "temp_upload"

TEXT_TYPES = {"text"}

COLUMN_TYPES_SQL = """
SELECT a.attname AS column_name,
       format_type(a.atttypid, a.atttypmod) AS data_type
FROM pg_attribute a
WHERE a.attrelid = to_regclass($1)
  AND a.attnum > 0
  AND NOT a.attisdropped
"""


def quote_identifier(name: str) -> str:
    """
    Quote a CSV header name for use as a column identifier.

    Column names come straight from the uploaded header, so they can never be
    interpolated raw. Embedded double quotes are doubled, Postgres-style.
    """
    if not name or "\x00" in name:
        raise ValueError(f"Invalid column name: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def _placeholder(position: int, data_type: str | None) -> str:
    if data_type is None or data_type in TEXT_TYPES:
        return f"${position}"
    # `data_type` comes from format_type() in the catalog, never from the upload.
    return f"${position}::text::{data_type}"


def build_insert_sql(columns: Sequence[str], column_types: Mapping[str, str] | None = None) -> str:
    """
    INSERT INTO temp_upload ("a", "b") VALUES ($1, $2::text::integer)

    Columns missing from `column_types` get a bare placeholder; Postgres then
    reports the unknown column itself.
    """
    if not columns:
        raise ValueError("Cannot build an INSERT without columns.")
    types = column_types or {}
    column_list = ", ".join(quote_identifier(c) for c in columns)
    placeholders = ", ".join(_placeholder(i, types.get(c)) for i, c in enumerate(columns, start=1))
    return f"INSERT INTO {STAGING_TABLE} ({column_list}) VALUES ({placeholders})"


async def fetch_column_types(conn: Any) -> dict[str, str]:
    """
    Map each staging-table column to its declared SQL type.
    """
    rows = await conn.fetch(COLUMN_TYPES_SQL, STAGING_TABLE)
    return {str(row["column_name"]): str(row["data_type"]) for row in rows}


async def find_existing_uids(database: Database, uids: list[str]) -> list[str]:
    """
    Return the subset of `uids` already present in the staging table.

    The comparison is done on `uid::text` so it works whatever type the
    column was declared with.
    """
    rows = await database.fetch_all(
        f"SELECT uid FROM {STAGING_TABLE} WHERE uid::text = ANY($1::text[])",
        uids,
    )
    return [str(row["uid"]) for row in rows]


async def insert_records(database: Database, records: Sequence[FacilityRecord]) -> int:
    """
    Insert every record, in order, in a single transaction.

    Any failure rolls the whole batch back and re-raises. Returns the number of
    rows inserted.
    """
    if not records:
        return 0

    async with database.transaction() as conn:
        column_types = await fetch_column_types(conn)
        # One upload shares one header, so every record has the same columns.
        sql = build_insert_sql(records[0].columns, column_types)
        await conn.executemany(sql, [record.values_in_order for record in records])
    return len(records)
