from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from app.models.meeting import Meeting
from app.models.student import Student
from app.schemas.attendance import AttendanceInterval
from app.schemas.sync import ReconcileSummary
from app.services.attendance_stores import AttendanceStore, MeetingStore, StudentStore
from app.services.duplicate_matcher import DuplicateMatcher
from app.services.status_classifier import ClassificationThresholds, StatusClassifier

logger = logging.getLogger(__name__)

RawInterval = Mapping[str, Any]
_PairKey = Tuple[int, int]


class IntervalProcessingError(ValueError):
    """
    Raised for an interval that is well-formed but cannot be reconciled,
    e.g. it references an unknown meeting without carrying its schedule.
    """


def describe_validation_error(exc: ValidationError) -> str:
    """
    Flatten a pydantic ValidationError into `field: message; ...`.
    """
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "interval"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class AttendanceReconciler:
    """
    Turns one batch of raw attendance intervals into persisted, classified
    and de-duplicated AttendanceRecords.

    A batch is one synced meeting or one imported CSV file. The reconciler is
    built per batch with the stores it should write to and the thresholds of
    the ingestion source; it keeps no state between batches.

    Per interval
    ------------
    1) Validate / normalize into an AttendanceInterval.
    2) Resolve the Meeting by external id, creating it on first sighting.
    3) Resolve the Student by email, creating it on first sighting.
    4) Classify against the meeting's stored start time.
    5) Skip if a persisted or already staged record for the same
       (meeting, student) joined less than 60 seconds apart.
    6) Otherwise stage the record.

    A failing interval is reported in `errors` as `<source ref>: <step>: <message>`
    (step is one of validation, meeting, student, classification, duplicate check)
    and never aborts the batch.
    Staged records are inserted with a single bulk call at the end.
    """

    def __init__(
        self,
        meetings: MeetingStore,
        students: StudentStore,
        attendance: AttendanceStore,
        thresholds: ClassificationThresholds,
        matcher: Optional[DuplicateMatcher] = None,
    ) -> None:
        self.meetings = meetings
        self.students = students
        self.attendance = attendance
        self.thresholds = thresholds
        self.matcher = matcher or DuplicateMatcher(attendance)

    async def reconcile(self, raw_intervals: Iterable[RawInterval]) -> ReconcileSummary:
        summary = ReconcileSummary()

        meetings: Dict[str, Meeting] = {}
        students: Dict[str, Student] = {}
        persisted_joins: Dict[_PairKey, List[datetime]] = {}
        staged_joins: Dict[_PairKey, List[datetime]] = defaultdict(list)
        staged: List[Dict[str, Any]] = []

        for position, raw in enumerate(raw_intervals, start=1):
            ref = _source_ref(raw, position)
            step = "validation"
            try:
                interval = AttendanceInterval.model_validate(
                    dict(raw) if isinstance(raw, Mapping) else raw
                )
                step = "meeting"
                meeting = await self._resolve_meeting(interval, meetings, summary)
                step = "student"
                student = await self._resolve_student(interval, students, summary)

                step = "classification"
                status = StatusClassifier.classify(
                    join_time=interval.join_time,
                    meeting_start=meeting.start_time,
                    duration_minutes=interval.duration_minutes,
                    thresholds=self.thresholds,
                )

                step = "duplicate check"
                key = (meeting.id, student.id)
                if key not in persisted_joins:
                    persisted_joins[key] = await self.matcher.existing_join_times(*key)

                if self.matcher.is_duplicate(
                    interval.join_time, persisted_joins[key]
                ) or self.matcher.is_duplicate(interval.join_time, staged_joins[key]):
                    summary.skipped += 1
                    logger.debug(
                        "Skipping duplicate attendance for %s in meeting %s at %s",
                        student.email,
                        meeting.external_id,
                        interval.join_time.isoformat(),
                    )
                    continue

                staged_joins[key].append(interval.join_time)
                staged.append(
                    {
                        "meeting_id": meeting.id,
                        "student_id": student.id,
                        "join_time": interval.join_time,
                        "leave_time": interval.leave_time,
                        "duration_minutes": interval.duration_minutes,
                        "status": status.value,
                    }
                )
            except ValidationError as exc:
                self._record_error(summary, ref, f"{step}: {describe_validation_error(exc)}")
            except Exception as exc:  # noqa: BLE001
                self._record_error(summary, ref, f"{step}: {str(exc) or exc.__class__.__name__}")

        await self._persist(staged, summary)

        logger.info(
            "Reconciled batch: %d created, %d skipped, %d errors, "
            "%d meetings created, %d students created",
            summary.created,
            summary.skipped,
            len(summary.errors),
            summary.meetings_created,
            summary.students_created,
        )
        return summary

    async def _resolve_meeting(
        self,
        interval: AttendanceInterval,
        cache: Dict[str, Meeting],
        summary: ReconcileSummary,
    ) -> Meeting:
        external_id = interval.meeting_external_id
        meeting = cache.get(external_id)
        if meeting is not None:
            return meeting

        meeting = await self.meetings.find_by_external_id(external_id)
        if meeting is None:
            if interval.meeting_start is None or interval.meeting_end is None:
                raise IntervalProcessingError(
                    f"Meeting '{external_id}' is not known yet and the interval "
                    "does not carry its start/end time"
                )
            meeting = await self.meetings.create(
                {
                    "external_id": external_id,
                    "title": interval.meeting_title,
                    "start_time": interval.meeting_start,
                    "end_time": interval.meeting_end,
                    "organizer_email": interval.organizer_email,
                    "meeting_url": interval.meeting_url,
                }
            )
            summary.meetings_created += 1
            logger.info("Created meeting %s (%s)", meeting.id, external_id)

        cache[external_id] = meeting
        return meeting

    async def _resolve_student(
        self,
        interval: AttendanceInterval,
        cache: Dict[str, Student],
        summary: ReconcileSummary,
    ) -> Student:
        email = interval.student_email
        student = cache.get(email)
        if student is not None:
            return student

        student = await self.students.find_by_email(email)
        if student is None:
            student = await self.students.create(
                {
                    "email": email,
                    "name": interval.student_name or email,
                    "azure_ad_id": interval.student_azure_ad_id,
                }
            )
            summary.students_created += 1
            logger.info("Created student %s (%s)", student.id, email)

        cache[email] = student
        return student

    async def _persist(self, staged: List[Dict[str, Any]], summary: ReconcileSummary) -> None:
        if not staged:
            return

        try:
            created = await self.attendance.bulk_create(staged)
        except Exception as exc:  # noqa: BLE001
            logger.error("Bulk insert of %d attendance records failed: %s", len(staged), exc)
            summary.errors.append(f"bulk insert of {len(staged)} records failed: {exc}")
            return

        summary.created = len(created)
        # Rows dropped by the store's natural-key conflict handling.
        summary.skipped += len(staged) - len(created)
        summary.record_ids = [record.id for record in created]

    @staticmethod
    def _record_error(summary: ReconcileSummary, ref: str, message: str) -> None:
        logger.warning("Could not process %s: %s", ref, message)
        summary.errors.append(f"{ref}: {message}")


def _source_ref(raw: Any, position: int) -> str:
    if isinstance(raw, Mapping):
        ref = raw.get("source_ref")
        if ref:
            return str(ref)
    return f"interval {position}"
