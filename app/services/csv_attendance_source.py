from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# Column layout of the attendance exports produced by the IT department.
CSV_COLUMNS = (
    "meeting_id",
    "meeting_title",
    "meeting_start",
    "meeting_end",
    "student_email",
    "student_name",
    "join_time",
    "leave_time",
    "duration_minutes",
)

REQUIRED_COLUMNS = (
    "meeting_id",
    "meeting_title",
    "meeting_start",
    "meeting_end",
    "student_email",
    "student_name",
    "join_time",
)


class CsvImportError(ValueError):
    """
    Raised when an uploaded file cannot be read as an attendance CSV at all
    (undecodable content, malformed CSV, missing columns).
    """


@dataclass
class CsvParseResult:
    intervals: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class CsvAttendanceSource:
    """
    Turns an IT-department attendance export into raw intervals.

    Rows missing one of REQUIRED_COLUMNS are reported in `errors` with their
    line number and left out of `intervals`; everything else about a row is
    validated later by the reconciler.
    """

    def parse(self, content: bytes | str) -> CsvParseResult:
        text = self._decode(content)
        reader = csv.DictReader(io.StringIO(text))

        try:
            header = reader.fieldnames
        except csv.Error as exc:
            raise CsvImportError(f"CSV parsing failed: {exc}") from exc

        if not header:
            raise CsvImportError("CSV parsing failed: file is empty")

        reader.fieldnames = [name.strip() for name in header]
        missing_columns = [c for c in REQUIRED_COLUMNS if c not in reader.fieldnames]
        if missing_columns:
            raise CsvImportError(
                "CSV parsing failed: missing column(s) " + ", ".join(missing_columns)
            )

        result = CsvParseResult()
        try:
            for row in reader:
                line = reader.line_num
                values = {
                    key: (value or "").strip()
                    for key, value in row.items()
                    if key in CSV_COLUMNS
                }
                if not any(values.values()):
                    continue

                missing = [c for c in REQUIRED_COLUMNS if not values.get(c)]
                if missing:
                    result.errors.append(
                        f"row {line}: missing required field(s) {', '.join(missing)}"
                    )
                    continue

                result.intervals.append(self._to_interval(values, line))
        except csv.Error as exc:
            raise CsvImportError(f"CSV parsing failed at line {reader.line_num}: {exc}") from exc

        logger.info(
            "Parsed %d attendance rows from CSV (%d rejected)",
            len(result.intervals),
            len(result.errors),
        )
        return result

    @staticmethod
    def _decode(content: bytes | str) -> str:
        if isinstance(content, str):
            return content
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CsvImportError("CSV parsing failed: file is not valid UTF-8") from exc

    @staticmethod
    def _to_interval(values: Dict[str, str], line: int) -> Dict[str, Any]:
        return {
            "source_ref": f"row {line}",
            "meeting_external_id": values["meeting_id"],
            "meeting_title": values["meeting_title"],
            "meeting_start": values["meeting_start"],
            "meeting_end": values["meeting_end"],
            "student_email": values["student_email"],
            "student_name": values["student_name"],
            "join_time": values["join_time"],
            "leave_time": values.get("leave_time"),
            "duration_minutes": values.get("duration_minutes"),
        }
