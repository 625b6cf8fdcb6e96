"""CSV persistence for generated key records."""

import csv
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Protocol, Tuple

from .models import KeyRecord, normalize_private_key

logger = logging.getLogger(__name__)

HEADER = ("PrivateKey", "Address")
LEGACY_HEADER = ("Privkey", "PubKey")


class PersistenceError(OSError):
    """Raised when a key file cannot be written or read."""


class MalformedRecord(ValueError):
    """Raised when a key file row cannot be parsed into a KeyRecord."""

    def __init__(self, row_number: int, reason: str) -> None:
        self.row_number = row_number
        self.reason = reason
        self.errors: Tuple["MalformedRecord", ...] = ()
        super().__init__(f"Row {row_number}: {reason}")


@dataclass(frozen=True)
class KeyScan:
    records: Tuple[KeyRecord, ...]
    errors: Tuple[MalformedRecord, ...]


class KeyStore(Protocol):
    def write(self, records: Iterable[KeyRecord], destination: Path) -> None:
        ...

    def read(self, source: Path) -> Tuple[KeyRecord, ...]:
        ...


class CsvKeyStore:
    """Two-column CSV key file; row order is the record index."""

    def write(self, records: Iterable[KeyRecord], destination: Path) -> None:
        destination = Path(destination)
        rows = _rows_for(records)
        directory = destination.parent if str(destination.parent) else Path(".")
        try:
            handle, temp_name = tempfile.mkstemp(
                prefix=f".{destination.name}.", suffix=".tmp", dir=directory
            )
        except OSError as exc:
            raise PersistenceError(f"Cannot write key file {destination}: {exc}") from exc

        try:
            with os.fdopen(handle, "w", encoding="utf-8", newline="") as stream:
                writer = csv.writer(stream)
                writer.writerow(HEADER)
                writer.writerows(rows)
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(temp_name, destination)
        except OSError as exc:
            _discard(temp_name)
            raise PersistenceError(f"Cannot write key file {destination}: {exc}") from exc
        except BaseException:
            _discard(temp_name)
            raise
        logger.info(f"Wrote {len(rows)} key records to {destination}")

    def read(self, source: Path) -> Tuple[KeyRecord, ...]:
        scan = self.scan(source)
        if scan.errors:
            first = scan.errors[0]
            first.errors = scan.errors
            raise first
        return scan.records

    def scan(self, source: Path) -> KeyScan:
        source = Path(source)
        try:
            with source.open("r", encoding="utf-8", newline="") as stream:
                rows = list(csv.reader(stream))
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Cannot read key file {source}: {exc}") from exc

        if not rows:
            return KeyScan(records=(), errors=())

        header = tuple(cell.strip() for cell in rows[0])
        if header not in (HEADER, LEGACY_HEADER):
            return KeyScan(
                records=(),
                errors=(MalformedRecord(1, f"Unexpected header: {','.join(header)}"),),
            )

        records: List[KeyRecord] = []
        errors: List[MalformedRecord] = []
        position = 0
        for row_number, row in enumerate(rows[1:], start=2):
            if not any(cell.strip() for cell in row):
                continue
            index, position = position, position + 1
            try:
                records.append(_parse_row(index, row_number, row))
            except MalformedRecord as exc:
                logger.warning(f"Skipping malformed row in {source}: {exc}")
                errors.append(exc)
        return KeyScan(records=tuple(records), errors=tuple(errors))


def _rows_for(records: Iterable[KeyRecord]) -> List[Tuple[str, str]]:
    rows = []
    for position, record in enumerate(records):
        if record.index != position:
            raise ValueError(
                f"Record index {record.index} does not match its row position {position}."
            )
        rows.append((record.private_key, record.address))
    return rows


def _parse_row(index: int, row_number: int, row: List[str]) -> KeyRecord:
    if len(row) != len(HEADER):
        raise MalformedRecord(row_number, f"Expected {len(HEADER)} fields, found {len(row)}.")
    raw_key, raw_address = (cell.strip() for cell in row)
    try:
        private_key = normalize_private_key(raw_key)
    except ValueError as exc:
        raise MalformedRecord(row_number, str(exc)) from exc
    record = KeyRecord(index=index, private_key=private_key, address=raw_address)
    try:
        key_pair = record.to_key_pair()
    except ValueError as exc:
        raise MalformedRecord(row_number, str(exc)) from exc
    return KeyRecord(index=index, private_key=private_key, address=key_pair.address)


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
