"""
Read-only facility endpoints.

Each one is a straight pass-through to the store. Failures are logged with the
full error; the caller only gets a generic message.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends

from core.db import Database, get_database
from core.errors import FetchError

from . import repository

router = APIRouter()

logger = logging.getLogger(__name__)


async def _fetch(
    what: str,
    query: Callable[[Database], Awaitable[list[dict[str, Any]]]],
    database: Database,
) -> list[dict[str, Any]]:
    try:
        return await query(database)
    except Exception as e:
        logger.exception("fetch_failed what=%s", what)
        raise FetchError(what) from e


@router.get("/facilities")
async def list_facilities(database: Database = Depends(get_database)) -> list[dict[str, Any]]:
    return await _fetch("facilities", repository.list_facilities, database)


@router.get("/facility-types")
async def list_facility_types(database: Database = Depends(get_database)) -> list[dict[str, Any]]:
    return await _fetch("facility types", repository.list_facility_types, database)


@router.get("/uploaded-facilities")
async def list_uploaded_facilities(database: Database = Depends(get_database)) -> list[dict[str, Any]]:
    """
    Staged upload rows, ordered by county.
    """
    return await _fetch("uploaded facilities", repository.list_uploaded_facilities, database)
