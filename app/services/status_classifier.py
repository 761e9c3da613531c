from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.common.datetime_utils import ensure_utc
from app.core.config import Settings
from app.schemas.attendance import AttendanceStatus


@dataclass(frozen=True)
class ClassificationThresholds:
    """
    Source-specific limits used to classify an attendance interval.

    late_after_minutes:
        Joins later than this many minutes after the meeting start are LATE.
    min_attendance_minutes:
        Known durations below this many minutes are PARTIAL.
    """

    late_after_minutes: float
    min_attendance_minutes: float


def sync_thresholds(settings: Settings) -> ClassificationThresholds:
    """Thresholds applied to intervals pulled live from Graph."""
    return ClassificationThresholds(
        late_after_minutes=settings.SYNC_LATE_THRESHOLD_MINUTES,
        min_attendance_minutes=settings.SYNC_MIN_ATTENDANCE_MINUTES,
    )


def csv_thresholds(settings: Settings) -> ClassificationThresholds:
    """Thresholds applied to intervals imported from IT CSV exports."""
    return ClassificationThresholds(
        late_after_minutes=settings.CSV_LATE_THRESHOLD_MINUTES,
        min_attendance_minutes=settings.CSV_MIN_ATTENDANCE_MINUTES,
    )


class StatusClassifier:
    """
    Derives the attendance status of one interval.

    Rules
    -----
    1) join_time - meeting_start > late_after_minutes     => LATE
    2) Else duration known and < min_attendance_minutes   => PARTIAL
    3) Else                                               => PRESENT

    Note
    ----
    - Lateness wins over duration.
    - Joining before the meeting start is simply on time.
    - ABSENT is never produced here: without an interval there is nothing
      to classify.
    """

    @staticmethod
    def classify(
        join_time: datetime,
        meeting_start: datetime,
        duration_minutes: int | None,
        thresholds: ClassificationThresholds,
    ) -> AttendanceStatus:
        latency = ensure_utc(join_time) - ensure_utc(meeting_start)
        latency_minutes = latency.total_seconds() / 60.0

        if latency_minutes > thresholds.late_after_minutes:
            return AttendanceStatus.LATE

        if duration_minutes is not None and duration_minutes < thresholds.min_attendance_minutes:
            return AttendanceStatus.PARTIAL

        return AttendanceStatus.PRESENT
