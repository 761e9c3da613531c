from __future__ import annotations

import csv
import io
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.datetime_utils import ensure_utc
from app.models.attendance_record import AttendanceRecord
from app.models.meeting import Meeting
from app.models.student import Student
from app.schemas.attendance import AttendanceReportRow, AttendanceStatus
from app.schemas.meeting import MeetingAttendanceSummary, MeetingRead
from app.schemas.student import StudentAttendanceStats

EXPORT_HEADERS = [
    "Student Name",
    "Student Email",
    "Meeting Title",
    "Meeting Start",
    "Join Time",
    "Leave Time",
    "Duration (minutes)",
    "Status",
]


@dataclass
class ReportFilters:
    student_id: Optional[int] = None
    meeting_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[AttendanceStatus] = None


def _report_row(record: AttendanceRecord, student: Student, meeting: Meeting) -> AttendanceReportRow:
    return AttendanceReportRow(
        id=record.id,
        meeting_id=record.meeting_id,
        student_id=record.student_id,
        join_time=record.join_time,
        leave_time=record.leave_time,
        duration_minutes=record.duration_minutes,
        status=record.status,
        created_at=record.created_at,
        student_name=student.name,
        student_email=student.email,
        meeting_title=meeting.title,
        meeting_start=meeting.start_time,
        meeting_end=meeting.end_time,
    )


async def attendance_report(db: AsyncSession, filters: ReportFilters) -> List[AttendanceReportRow]:
    """
    Attendance records joined with their student and meeting, newest
    meetings first and students alphabetically within a meeting.

    start_date / end_date bound the meeting schedule (start >= start_date,
    end <= end_date).
    """
    conditions = []
    if filters.student_id is not None:
        conditions.append(AttendanceRecord.student_id == filters.student_id)
    if filters.meeting_id is not None:
        conditions.append(AttendanceRecord.meeting_id == filters.meeting_id)
    if filters.start_date is not None:
        conditions.append(Meeting.start_time >= ensure_utc(filters.start_date))
    if filters.end_date is not None:
        conditions.append(Meeting.end_time <= ensure_utc(filters.end_date))
    if filters.status is not None:
        conditions.append(AttendanceRecord.status == filters.status.value)

    stmt = (
        select(AttendanceRecord, Student, Meeting)
        .join(Student, AttendanceRecord.student_id == Student.id)
        .join(Meeting, AttendanceRecord.meeting_id == Meeting.id)
        .order_by(Meeting.start_time.desc(), Student.name.asc(), AttendanceRecord.join_time.asc())
    )
    if conditions:
        stmt = stmt.where(and_(*conditions))

    result = await db.execute(stmt)
    return [_report_row(record, student, meeting) for record, student, meeting in result.all()]


async def student_attendance_stats(
    db: AsyncSession,
    student_id: int,
    *,
    now: Optional[datetime] = None,
) -> StudentAttendanceStats:
    """
    Attendance of one student over every meeting that has already ended.

    Rules
    -----
    - total_meetings counts all ended meetings, attended or not.
    - Each status counts at most once per meeting (the earliest record of
      the student in that meeting decides).
    - attendance_rate = (present + late) / total_meetings * 100, or 0.0
      when no meeting has ended yet.
    """
    now = now or datetime.now(tz=timezone.utc)

    meetings_result = await db.execute(select(Meeting.id).where(Meeting.end_time < now))
    ended_meeting_ids = {row[0] for row in meetings_result.all()}

    records_result = await db.execute(
        select(AttendanceRecord)
        .where(AttendanceRecord.student_id == student_id)
        .order_by(AttendanceRecord.join_time.asc())
    )

    status_per_meeting: dict[int, str] = {}
    for record in records_result.scalars().all():
        if record.meeting_id in ended_meeting_ids:
            status_per_meeting.setdefault(record.meeting_id, record.status)

    counts = Counter(status_per_meeting.values())
    total = len(ended_meeting_ids)
    attended = counts[AttendanceStatus.PRESENT.value] + counts[AttendanceStatus.LATE.value]
    rate = round(attended / total * 100, 2) if total else 0.0

    return StudentAttendanceStats(
        total_meetings=total,
        present=counts[AttendanceStatus.PRESENT.value],
        late=counts[AttendanceStatus.LATE.value],
        partial=counts[AttendanceStatus.PARTIAL.value],
        absent=counts[AttendanceStatus.ABSENT.value],
        attendance_rate=rate,
    )


async def meeting_attendance_summary(db: AsyncSession, meeting: Meeting) -> MeetingAttendanceSummary:
    """
    Status counts (one per record) and attendee total for one meeting.
    """
    rows = await attendance_report(db, ReportFilters(meeting_id=meeting.id))
    rows.sort(key=lambda row: row.join_time)
    counts = Counter(row.status.value for row in rows)

    return MeetingAttendanceSummary(
        meeting=MeetingRead.model_validate(meeting),
        total_attendees=len({row.student_id for row in rows}),
        present=counts[AttendanceStatus.PRESENT.value],
        late=counts[AttendanceStatus.LATE.value],
        partial=counts[AttendanceStatus.PARTIAL.value],
        absent=counts[AttendanceStatus.ABSENT.value],
        records=rows,
    )


def render_report_csv(rows: List[AttendanceReportRow]) -> str:
    """
    Render report rows with EXPORT_HEADERS; missing values become 'N/A'.
    """
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)

    for row in rows:
        writer.writerow(
            [
                row.student_name or "N/A",
                row.student_email or "N/A",
                row.meeting_title or "N/A",
                row.meeting_start.isoformat() if row.meeting_start else "N/A",
                row.join_time.isoformat(),
                row.leave_time.isoformat() if row.leave_time else "N/A",
                row.duration_minutes if row.duration_minutes is not None else "N/A",
                row.status.value,
            ]
        )
    return out.getvalue()
