"""
Facility read queries (raw SQL).

`health_facilities` is the canonical table and is read-only here;
`temp_upload` is the staging table that CSV uploads append to.
"""

from __future__ import annotations

from typing import Any

from core.db import Database


async def list_facilities(database: Database) -> list[dict[str, Any]]:
    return await database.fetch_all("SELECT * FROM health_facilities")


async def list_facility_types(database: Database) -> list[dict[str, Any]]:
    return await database.fetch_all(
        """
        SELECT DISTINCT facility_type
        FROM health_facilities
        WHERE facility_type IS NOT NULL
        """
    )


async def list_uploaded_facilities(database: Database) -> list[dict[str, Any]]:
    return await database.fetch_all("SELECT * FROM temp_upload ORDER BY county")
