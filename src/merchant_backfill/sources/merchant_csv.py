"""
sources/merchant_csv.py — Streaming reader for the retailer branch-count file.

File format: delimited text, no header, two columns per line:

    retailer_id,branch_count
    42,7
    43,9

Records are yielded one at a time in file order, so memory use does not
grow with the file. The first malformed line ends the stream with a
RecordParseError; nothing after it is read.

Usage:
    from merchant_backfill.config import SourceConfig
    from merchant_backfill.sources.merchant_csv import MerchantCsvSource

    source = MerchantCsvSource(SourceConfig(path=Path("retail.csv")))
    for record in source.iter_records():
        print(record.retailer_id, record.branch_count)
"""

from __future__ import annotations

import csv
import re
from collections.abc import Iterator

from pydantic import ValidationError

from merchant_backfill.config import SourceConfig
from merchant_backfill.models import MerchantUpdateRecord
from merchant_backfill.utils.logging import get_logger

log = get_logger(__name__)

_INTEGER_RE = re.compile(r"^[+-]?[0-9]+$")


class RecordSourceError(Exception):
    """The input file could not be opened or read."""


class RecordParseError(RecordSourceError):
    """A line of the input file does not hold two integer fields."""

    def __init__(self, message: str, line_number: int) -> None:
        super().__init__(f"line {line_number}: {message}")
        self.line_number = line_number


def parse_integer(raw: str, field_name: str, line_number: int) -> int:
    """Parse a base-10 integer field; whitespace around the digits is ignored."""
    text = raw.strip()
    if not _INTEGER_RE.match(text):
        raise RecordParseError(f"{field_name} is not an integer: {raw!r}", line_number)
    return int(text)


def parse_line(fields: list[str], line_number: int) -> MerchantUpdateRecord:
    """
    Turn the fields of one line into a MerchantUpdateRecord.

    Raises:
        RecordParseError: fewer than two fields, a non-integer field, or a
                          value outside int64 (retailer_id) / int32
                          (branch_count).
    """
    if len(fields) < 2:
        raise RecordParseError(
            f"expected 2 fields, got {len(fields)}", line_number
        )

    retailer_id = parse_integer(fields[0], "retailer_id", line_number)
    branch_count = parse_integer(fields[1], "branch_count", line_number)

    try:
        return MerchantUpdateRecord(
            retailer_id=retailer_id,
            branch_count=branch_count,
            line_number=line_number,
        )
    except ValidationError as exc:
        bad = ", ".join(str(e["loc"][0]) for e in exc.errors())
        raise RecordParseError(f"value out of range for {bad}", line_number) from exc


class MerchantCsvSource:
    """Lazy, non-restartable sequence of MerchantUpdateRecord read from disk."""

    name = "merchant_csv"

    def __init__(self, config: SourceConfig) -> None:
        self._config = config
        self._log = log.bind(source_name=self.name, path=str(config.path))

    def iter_records(self) -> Iterator[MerchantUpdateRecord]:
        """
        Yield one record per non-blank line, in file order.

        The file is opened on first iteration and closed when the generator
        finishes, raises, or is closed by the caller.

        Raises:
            RecordParseError:  on the first malformed line.
            RecordSourceError: when the file cannot be opened or decoded.
        """
        path = self._config.path
        count = 0
        try:
            with open(path, newline="", encoding="utf-8") as fh:
                self._log.info("source_open")
                reader = csv.reader(fh, delimiter=self._config.delimiter)
                for fields in reader:
                    if not fields or all(not f.strip() for f in fields):
                        continue
                    record = parse_line(fields, reader.line_num)
                    count += 1
                    yield record
        except RecordParseError as exc:
            self._log.error(
                "record_parse_failed",
                line_number=exc.line_number,
                records_read=count,
                error=str(exc),
            )
            raise
        except (OSError, csv.Error, UnicodeDecodeError) as exc:
            self._log.error("source_read_failed", records_read=count, error=str(exc))
            raise RecordSourceError(f"cannot read {path}: {exc}") from exc

        self._log.info("source_exhausted", records_read=count)
