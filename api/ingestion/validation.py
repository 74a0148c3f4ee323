"""
Batch validation for facility uploads.

Two checks, always in this order:
1. duplicate uids (inside the batch, then against the staging table)
2. required fields per row

The duplicate check is a gate for the whole batch: row validation only runs
once it passes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Mapping

IDENTIFIER_FIELD = "uid"
REQUIRED_FIELDS: tuple[str, ...] = (IDENTIFIER_FIELD, "name", "facility_type")

ExistingUidLookup = Callable[[list[str]], Awaitable[Iterable[str]]]


@dataclass(frozen=True)
class DuplicateCheck:
    has_duplicates: bool
    duplicates: tuple[str, ...] = ()


def _identifier(record: Mapping[str, str]) -> str:
    return (record.get(IDENTIFIER_FIELD) or "").strip()


def find_batch_duplicates(uids: Iterable[str]) -> list[str]:
    """
    Return every uid that occurs more than once, once each, in the order the
    first repeat was seen.
    """
    seen: set[str] = set()
    repeated: dict[str, None] = {}
    for uid in uids:
        if uid in seen:
            repeated.setdefault(uid, None)
        seen.add(uid)
    return list(repeated)


async def check_for_duplicate_uids(
    records: Iterable[Mapping[str, str]],
    lookup: ExistingUidLookup,
) -> DuplicateCheck:
    """
    Reject a batch whose uids repeat, either within itself or against uids the
    store already holds.

    Blank uids are skipped here; the required-field check reports them with
    their row numbers.
    """
    uids = [uid for uid in (_identifier(r) for r in records) if uid]

    in_batch = find_batch_duplicates(uids)
    if in_batch:
        return DuplicateCheck(has_duplicates=True, duplicates=tuple(in_batch))

    if not uids:
        return DuplicateCheck(has_duplicates=False)

    existing = set(await lookup(uids))
    # Report in batch order rather than whatever order the store returned.
    collisions = [uid for uid in uids if uid in existing]
    if collisions:
        return DuplicateCheck(has_duplicates=True, duplicates=tuple(collisions))

    return DuplicateCheck(has_duplicates=False)


def missing_required_fields(record: Mapping[str, str]) -> list[str]:
    return [field for field in REQUIRED_FIELDS if not (record.get(field) or "").strip()]


def validate_required_fields(
    records: Iterable[Mapping[str, str]],
    *,
    first_row_number: int = 2,
) -> list[str]:
    """
    One message per row that lacks any required field, for the whole batch.

    Row numbers come from `record.row_number` when present, otherwise they
    count up from `first_row_number` (the header is row 1).
    """
    errors: list[str] = []
    for offset, record in enumerate(records):
        missing = missing_required_fields(record)
        if not missing:
            continue
        row_number = getattr(record, "row_number", first_row_number + offset)
        errors.append(f"Row {row_number}: Missing required fields: {', '.join(missing)}")
    return errors
