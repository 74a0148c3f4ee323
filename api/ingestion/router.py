"""
FastAPI router for ingestion endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile

from core.db import Database, get_database

from . import service

router = APIRouter()


@router.post("/upload-csv")
async def upload_csv(
    file: UploadFile | None = File(default=None),
    database: Database = Depends(get_database),
) -> dict:
    """
    Upload a CSV of facilities into the staging table.

    The batch is all-or-nothing: duplicate uids, missing required fields, or
    any insert failure leave the table untouched.
    """
    try:
        result = await service.ingest_csv(database, file)
    finally:
        if file is not None:
            await file.close()

    return {
        "message": "CSV data successfully uploaded",
        "rowsProcessed": result.rows_processed,
    }
