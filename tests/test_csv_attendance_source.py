# tests/test_csv_attendance_source.py
import pytest

from app.services.csv_attendance_source import CsvAttendanceSource, CsvImportError

HEADER = (
    "meeting_id,meeting_title,meeting_start,meeting_end,student_email,"
    "student_name,join_time,leave_time,duration_minutes\n"
)


def test_parse_rows_into_intervals():
    content = (
        HEADER
        + "m-1,Algorithms,2025-01-10T09:00:00Z,2025-01-10T10:00:00Z,ada@school.edu,Ada,"
        "2025-01-10T09:05:00Z,2025-01-10T09:55:00Z,50\n"
    ).encode("utf-8")

    result = CsvAttendanceSource().parse(content)

    assert result.errors == []
    assert result.intervals == [
        {
            "source_ref": "row 2",
            "meeting_external_id": "m-1",
            "meeting_title": "Algorithms",
            "meeting_start": "2025-01-10T09:00:00Z",
            "meeting_end": "2025-01-10T10:00:00Z",
            "student_email": "ada@school.edu",
            "student_name": "Ada",
            "join_time": "2025-01-10T09:05:00Z",
            "leave_time": "2025-01-10T09:55:00Z",
            "duration_minutes": "50",
        }
    ]


def test_rows_missing_required_fields_are_reported_with_line_number():
    content = (
        HEADER
        + "m-1,Algorithms,2025-01-10T09:00:00Z,2025-01-10T10:00:00Z,ada@school.edu,Ada,"
        "2025-01-10T09:05:00Z,,\n"
        + "m-1,Algorithms,2025-01-10T09:00:00Z,2025-01-10T10:00:00Z,,Bob,"
        "2025-01-10T09:06:00Z,,\n"
    )

    result = CsvAttendanceSource().parse(content)

    assert len(result.intervals) == 1
    assert result.errors == ["row 3: missing required field(s) student_email"]


def test_optional_columns_may_be_absent_or_blank():
    header = (
        "meeting_id,meeting_title,meeting_start,meeting_end,"
        "student_email,student_name,join_time\n"
    )
    content = (
        header
        + "m-1,Algorithms,2025-01-10T09:00:00Z,2025-01-10T10:00:00Z,ada@school.edu,Ada,"
        "2025-01-10T09:05:00Z\n"
    )

    result = CsvAttendanceSource().parse(content)

    interval = result.intervals[0]
    assert interval["leave_time"] is None
    assert interval["duration_minutes"] is None


def test_bom_and_padded_headers_are_accepted():
    padded = " meeting_id , meeting_title,meeting_start,meeting_end,student_email,student_name,join_time\n"
    content = "\ufeff" + padded + "m-1,T,2025-01-10T09:00:00Z,2025-01-10T10:00:00Z,a@x.io,A,2025-01-10T09:00:00Z\n"

    result = CsvAttendanceSource().parse(content.encode("utf-8"))

    assert len(result.intervals) == 1
    assert result.intervals[0]["meeting_external_id"] == "m-1"


def test_blank_lines_are_ignored():
    content = HEADER + ",,,,,,,,\n\n"

    result = CsvAttendanceSource().parse(content)

    assert result.intervals == []
    assert result.errors == []


def test_missing_columns_reject_the_whole_file():
    with pytest.raises(CsvImportError, match="student_email"):
        CsvAttendanceSource().parse("meeting_id,meeting_title\nm-1,Algorithms\n")


def test_empty_file_is_rejected():
    with pytest.raises(CsvImportError, match="empty"):
        CsvAttendanceSource().parse(b"")


def test_non_utf8_content_is_rejected():
    with pytest.raises(CsvImportError, match="UTF-8"):
        CsvAttendanceSource().parse(b"\xff\xfe\x00m\x00e")
