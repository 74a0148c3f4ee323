"""
CSV decoding for facility uploads.

The first line is the header and defines the column names; every later
non-blank line becomes one `FacilityRecord`, in file order, with each value
trimmed. Any malformed input fails the whole decode: callers never see a
partial batch.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

# Row 1 is the header, so the first data row is row 2.
FIRST_DATA_ROW = 2


class CSVDecodeError(ValueError):
    pass


class FacilityRecord(Mapping[str, str]):
    """
    One uploaded row: an immutable, ordered column -> value mapping.

    There is no fixed schema; whatever the header declared is carried through
    to the staging table as-is.
    """

    __slots__ = ("row_number", "_values")

    def __init__(self, row_number: int, values: Iterable[tuple[str, str]]) -> None:
        self.row_number = row_number
        self._values = MappingProxyType(dict(values))

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"FacilityRecord(row_number={self.row_number}, values={dict(self._values)!r})"

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self._values)

    @property
    def values_in_order(self) -> tuple[str, ...]:
        return tuple(self._values.values())


@dataclass(frozen=True)
class UploadBatch:
    columns: tuple[str, ...]
    records: tuple[FacilityRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[FacilityRecord]:
        return iter(self.records)


def _decode_text(data: bytes) -> str:
    # utf-8-sig drops the BOM that spreadsheet exports like to prepend.
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise CSVDecodeError(f"File is not valid UTF-8 text (byte offset {e.start}).") from e


def _parse_header(raw: list[str]) -> tuple[str, ...]:
    header = tuple(name.strip() for name in raw)
    for position, name in enumerate(header, start=1):
        if not name:
            raise CSVDecodeError(f"Header column {position} has no name.")

    seen: set[str] = set()
    for name in header:
        if name in seen:
            raise CSVDecodeError(f"Header column '{name}' appears more than once.")
        seen.add(name)

    return header


def _is_blank_line(fields: list[str]) -> bool:
    # A line of only spaces parses as one blank field.
    return not fields or (len(fields) == 1 and not fields[0].strip())


def decode_csv(data: bytes) -> UploadBatch:
    """
    Turn raw CSV bytes into an `UploadBatch`.

    Raises `CSVDecodeError` on bad encoding, a missing/invalid header, a row
    whose field count differs from the header, or a CSV syntax error.
    """
    text = _decode_text(data)
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)

    try:
        raw_header = next(reader, None)
        if not raw_header:
            raise CSVDecodeError("CSV file has no header row.")
        header = _parse_header(raw_header)

        records: list[FacilityRecord] = []
        for fields in reader:
            if _is_blank_line(fields):
                continue

            row_number = FIRST_DATA_ROW + len(records)
            if len(fields) != len(header):
                raise CSVDecodeError(
                    f"Row {row_number}: expected {len(header)} fields, found {len(fields)}."
                )
            records.append(
                FacilityRecord(row_number, zip(header, (value.strip() for value in fields)))
            )
    except csv.Error as e:
        raise CSVDecodeError(f"Malformed CSV near line {reader.line_num}: {e}") from e

    return UploadBatch(columns=header, records=tuple(records))

