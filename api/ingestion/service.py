"""
Ingestion "service layer".

This file contains logic that is independent of FastAPI's routing layer:
- Validate uploads (CSV content type only)
- Stage the upload to a temporary file with a size limit
- Decode, validate and insert the rows in one transaction
- Remove the staged file on every exit path
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from core import settings
from core.db import Database
from core.errors import ApiError

from . import repository
from .csv_decoder import CSVDecodeError, UploadBatch, decode_csv
from .validation import check_for_duplicate_uids, validate_required_fields

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"text/csv", "application/csv"}

DUPLICATE_UIDS_MESSAGE = "The following UIDs already exist in the database or are duplicated in the CSV:"


class MissingFileError(ApiError):
    status_code = 400
    error = "No file uploaded"


class InvalidFileTypeError(ApiError):
    status_code = 400
    error = "Invalid file type"

    def __init__(self, content_type: str | None) -> None:
        super().__init__("Only CSV files are allowed")
        self.content_type = content_type


class UploadTooLargeError(ApiError):
    status_code = 413
    error = "File too large"


class CSVProcessingError(ApiError):
    status_code = 500
    error = "CSV processing error"


class DuplicateUIDsError(ApiError):
    status_code = 400
    error = "Duplicate UIDs detected"

    def __init__(self, duplicates: tuple[str, ...]) -> None:
        super().__init__({"message": DUPLICATE_UIDS_MESSAGE, "duplicateUIDs": list(duplicates)})
        self.duplicates = duplicates


class RowValidationError(ApiError):
    status_code = 400
    error = "Validation errors"


class DatabaseError(ApiError):
    status_code = 500
    error = "Database error"


@dataclass(frozen=True)
class IngestionResult:
    rows_processed: int


def _content_type(file: UploadFile) -> str:
    return (file.content_type or "").split(";", 1)[0].strip().lower()


def validate_upload(file: UploadFile | None) -> UploadFile:
    """
    Accept only CSV uploads. Runs before anything touches the disk.
    """
    if file is None:
        raise MissingFileError()

    if _content_type(file) not in ALLOWED_CONTENT_TYPES:
        logger.info("upload_rejected reason=content_type content_type=%s", file.content_type)
        raise InvalidFileTypeError(file.content_type)

    return file


def _create_staged_file(directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix="upload-", suffix=".csv", dir=directory)
    os.close(fd)
    return Path(name)


async def stage_upload(file: UploadFile, directory: Path, max_bytes: int) -> Path:
    """
    Copy the upload to a temporary file under `directory`, enforcing a
    maximum size. The caller owns the returned path and must remove it.
    """
    chunk_size = 1024 * 1024  # 1 MiB
    path = await run_in_threadpool(_create_staged_file, directory)
    try:
        written = 0
        with open(path, "wb") as out:
            while True:
                chunk = await file.read(chunk_size)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadTooLargeError(f"Max is {max_bytes} bytes.")
                await run_in_threadpool(out.write, chunk)
    except BaseException:
        remove_staged_upload(path)
        raise

    return path


def remove_staged_upload(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("staged_upload_cleanup_failed path=%s", path, exc_info=True)


def _read_and_decode(path: Path) -> UploadBatch:
    return decode_csv(path.read_bytes())


async def load_batch(path: Path) -> UploadBatch:
    """
    Read and decode the staged file on a worker thread, off the event loop.
    """
    try:
        return await run_in_threadpool(_read_and_decode, path)
    except (OSError, CSVDecodeError) as e:
        logger.warning("csv_decode_failed path=%s error=%s", path, e)
        raise CSVProcessingError(str(e)) from e


async def ingest_batch(database: Database, batch: UploadBatch) -> IngestionResult:
    """
    Validate a decoded batch and persist it atomically.

    Gates, in order: duplicate uids, required fields, transactional insert.
    Nothing is written unless every gate passes.
    """
    try:
        duplicate_check = await check_for_duplicate_uids(
            batch,
            lookup=partial(repository.find_existing_uids, database),
        )
    except Exception as e:
        logger.exception("duplicate_lookup_failed rows=%s", len(batch))
        raise CSVProcessingError(str(e)) from e

    if duplicate_check.has_duplicates:
        logger.info("upload_rejected reason=duplicate_uids count=%s", len(duplicate_check.duplicates))
        raise DuplicateUIDsError(duplicate_check.duplicates)

    errors = validate_required_fields(batch)
    if errors:
        logger.info("upload_rejected reason=missing_fields rows=%s", len(errors))
        raise RowValidationError(errors)

    try:
        inserted = await repository.insert_records(database, batch.records)
    except Exception as e:
        logger.exception("staging_insert_failed rows=%s", len(batch))
        raise DatabaseError(str(e)) from e

    logger.info("upload_committed rows=%s", inserted)
    return IngestionResult(rows_processed=inserted)


async def ingest_csv(database: Database, file: UploadFile | None) -> IngestionResult:
    """
    High-level ingestion step for a single uploaded CSV file.

    This is what the FastAPI router should call.
    """
    file = validate_upload(file)
    path = await stage_upload(file, settings.upload_dir(), settings.max_upload_bytes())
    try:
        batch = await load_batch(path)
        return await ingest_batch(database, batch)
    finally:
        remove_staged_upload(path)
