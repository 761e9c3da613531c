# tests/test_attendance_reconciler.py
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.services.attendance_reconciler import AttendanceReconciler
from app.services.status_classifier import ClassificationThresholds

SYNC = ClassificationThresholds(late_after_minutes=15, min_attendance_minutes=5)


class FakeMeetingStore:
    def __init__(self):
        self.rows = {}

    async def find_by_external_id(self, external_id):
        return self.rows.get(external_id)

    async def create(self, fields):
        meeting = SimpleNamespace(id=len(self.rows) + 1, **fields)
        self.rows[fields["external_id"]] = meeting
        return meeting


class FakeStudentStore:
    def __init__(self):
        self.rows = {}

    async def find_by_email(self, email):
        return self.rows.get(email)

    async def create(self, fields):
        student = SimpleNamespace(id=len(self.rows) + 1, **fields)
        self.rows[fields["email"]] = student
        return student


class FailingStudentStore(FakeStudentStore):
    def __init__(self, failing_email):
        super().__init__()
        self.failing_email = failing_email

    async def create(self, fields):
        if fields["email"] == self.failing_email:
            raise RuntimeError("connection reset while creating student")
        return await super().create(fields)


class FakeAttendanceStore:
    """
    In-memory attendance store enforcing the (meeting, student, join_time)
    natural key like the SQL store does.
    """

    def __init__(self, lookup_error: bool = False, insert_error: bool = False):
        self.rows = []
        self.lookup_error = lookup_error
        self.insert_error = insert_error
        self.bulk_calls = 0

    async def find_by_meeting_and_student(self, meeting_id, student_id):
        if self.lookup_error:
            raise RuntimeError("lookup failed")
        return [
            r for r in self.rows if r.meeting_id == meeting_id and r.student_id == student_id
        ]

    async def bulk_create(self, records):
        self.bulk_calls += 1
        if self.insert_error:
            raise RuntimeError("disk full")
        created = []
        for fields in records:
            key = (fields["meeting_id"], fields["student_id"], fields["join_time"])
            if any((r.meeting_id, r.student_id, r.join_time) == key for r in self.rows):
                continue
            record = SimpleNamespace(id=len(self.rows) + 1, **fields)
            self.rows.append(record)
            created.append(record)
        return created


def _reconciler(attendance=None, meetings=None, students=None):
    return AttendanceReconciler(
        meetings=meetings or FakeMeetingStore(),
        students=students or FakeStudentStore(),
        attendance=attendance or FakeAttendanceStore(),
        thresholds=SYNC,
    )


def _interval(join: str, **overrides):
    data = {
        "meeting_external_id": "meeting-1",
        "meeting_title": "Algorithms",
        "meeting_start": "2025-01-10T09:00:00Z",
        "meeting_end": "2025-01-10T10:00:00Z",
        "student_email": "Ada@School.edu",
        "student_name": "Ada Lovelace",
        "join_time": join,
        "duration_minutes": 45,
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_reconcile_creates_meeting_student_and_classified_records():
    attendance = FakeAttendanceStore()
    reconciler = _reconciler(attendance=attendance)

    summary = await reconciler.reconcile(
        [
            _interval("2025-01-10T09:10:00Z"),
            _interval("2025-01-10T09:20:00Z", student_email="bob@school.edu", student_name="Bob"),
            _interval("2025-01-10T09:02:00Z", student_email="eve@school.edu", duration_minutes=3),
        ]
    )

    assert summary.created == 3
    assert summary.skipped == 0
    assert summary.errors == []
    assert summary.meetings_created == 1
    assert summary.students_created == 3
    assert summary.record_ids == [1, 2, 3]

    statuses = {r.student_id: r.status for r in attendance.rows}
    assert statuses == {1: "present", 2: "late", 3: "partial"}
    # One bulk insert per batch.
    assert attendance.bulk_calls == 1


@pytest.mark.asyncio
async def test_second_join_within_a_minute_in_same_batch_is_skipped():
    attendance = FakeAttendanceStore()
    reconciler = _reconciler(attendance=attendance)

    summary = await reconciler.reconcile(
        [
            _interval("2025-01-10T09:10:00Z"),
            _interval("2025-01-10T09:10:30Z"),
        ]
    )

    assert summary.created == 1
    assert summary.skipped == 1
    assert [r.join_time for r in attendance.rows] == [
        datetime(2025, 1, 10, 9, 10, tzinfo=timezone.utc)
    ]


@pytest.mark.asyncio
async def test_rejoin_after_a_break_is_a_separate_record():
    attendance = FakeAttendanceStore()
    reconciler = _reconciler(attendance=attendance)

    summary = await reconciler.reconcile(
        [
            _interval("2025-01-10T09:00:00Z", duration_minutes=20),
            _interval("2025-01-10T09:30:00Z", duration_minutes=25),
        ]
    )

    assert summary.created == 2
    assert summary.skipped == 0


@pytest.mark.asyncio
async def test_reconcile_is_idempotent_across_batches():
    meetings, students, attendance = FakeMeetingStore(), FakeStudentStore(), FakeAttendanceStore()
    batch = [
        _interval("2025-01-10T09:10:00Z"),
        _interval("2025-01-10T09:05:00Z", student_email="bob@school.edu"),
    ]

    first = await _reconciler(attendance, meetings, students).reconcile(batch)
    second = await _reconciler(attendance, meetings, students).reconcile(batch)

    assert first.created == 2
    assert second.created == 0
    assert second.skipped == first.created
    assert second.meetings_created == 0
    assert second.students_created == 0
    assert len(attendance.rows) == 2


@pytest.mark.asyncio
async def test_classification_uses_stored_meeting_start():
    """
    Once a meeting exists, the start time carried by later intervals is
    ignored in favour of the stored one.
    """
    meetings = FakeMeetingStore()
    await meetings.create(
        {
            "external_id": "meeting-1",
            "title": "Algorithms",
            "start_time": datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc),
            "end_time": datetime(2025, 1, 10, 10, 0, tzinfo=timezone.utc),
        }
    )
    attendance = FakeAttendanceStore()

    summary = await _reconciler(attendance, meetings).reconcile(
        [_interval("2025-01-10T09:20:00Z", meeting_start="2025-01-10T09:15:00Z")]
    )

    assert summary.meetings_created == 0
    assert attendance.rows[0].status == "late"


@pytest.mark.asyncio
async def test_invalid_intervals_are_reported_and_batch_continues():
    attendance = FakeAttendanceStore()
    reconciler = _reconciler(attendance=attendance)

    summary = await reconciler.reconcile(
        [
            _interval("not-a-date", source_ref="row 2"),
            _interval("2025-01-10T09:10:00Z", student_email="   ", source_ref="row 3"),
            _interval("2025-01-10T09:10:00Z", source_ref="row 4"),
        ]
    )

    assert summary.created == 1
    assert len(summary.errors) == 2
    assert summary.errors[0].startswith("row 2: validation: join_time")
    assert summary.errors[1].startswith("row 3: validation: student_email")


@pytest.mark.asyncio
async def test_unknown_meeting_without_schedule_is_an_error():
    reconciler = _reconciler()

    summary = await reconciler.reconcile(
        [_interval("2025-01-10T09:10:00Z", meeting_start=None, meeting_end=None)]
    )

    assert summary.created == 0
    assert summary.meetings_created == 0
    assert len(summary.errors) == 1
    assert summary.errors[0].startswith(
        "interval 1: meeting: Meeting 'meeting-1' is not known yet"
    )


@pytest.mark.asyncio
async def test_student_name_falls_back_to_email():
    students = FakeStudentStore()

    await _reconciler(students=students).reconcile(
        [_interval("2025-01-10T09:10:00Z", student_name="")]
    )

    assert students.rows["ada@school.edu"].name == "ada@school.edu"


@pytest.mark.asyncio
async def test_duration_seconds_are_truncated_to_minutes():
    attendance = FakeAttendanceStore()

    await _reconciler(attendance=attendance).reconcile(
        [_interval("2025-01-10T09:00:00Z", duration_minutes=None, duration_seconds=299.9)]
    )

    # 4 whole minutes < 5 => partial
    assert attendance.rows[0].duration_minutes == 4
    assert attendance.rows[0].status == "partial"


@pytest.mark.asyncio
async def test_failed_duplicate_lookup_does_not_block_ingestion():
    attendance = FakeAttendanceStore(lookup_error=True)

    summary = await _reconciler(attendance=attendance).reconcile(
        [_interval("2025-01-10T09:10:00Z")]
    )

    assert summary.created == 1
    assert summary.errors == []


@pytest.mark.asyncio
async def test_rows_dropped_by_store_conflicts_count_as_skipped():
    """
    A row that slipped past the 60s check but hits the natural key at
    insert time (e.g. a concurrent batch) is skipped, not created.
    """
    attendance = FakeAttendanceStore()
    join = datetime(2025, 1, 10, 9, 10, tzinfo=timezone.utc)
    attendance.rows.append(SimpleNamespace(id=99, meeting_id=1, student_id=1, join_time=join))
    # Hide the existing row from the duplicate lookup.
    attendance.lookup_error = True

    summary = await _reconciler(attendance=attendance).reconcile(
        [_interval("2025-01-10T09:10:00Z")]
    )

    assert summary.created == 0
    assert summary.skipped == 1
    assert summary.record_ids == []


@pytest.mark.asyncio
async def test_bulk_insert_failure_is_reported():
    attendance = FakeAttendanceStore(insert_error=True)

    summary = await _reconciler(attendance=attendance).reconcile(
        [_interval("2025-01-10T09:10:00Z")]
    )

    assert summary.created == 0
    assert summary.errors == ["bulk insert of 1 records failed: disk full"]


@pytest.mark.asyncio
async def test_empty_batch_does_nothing():
    attendance = FakeAttendanceStore()

    summary = await _reconciler(attendance=attendance).reconcile([])

    assert summary.created == 0
    assert summary.skipped == 0
    assert summary.errors == []
    assert attendance.bulk_calls == 0


@pytest.mark.asyncio
async def test_failed_student_create_is_reported_and_batch_continues():
    attendance = FakeAttendanceStore()
    students = FailingStudentStore("bob@school.edu")

    summary = await _reconciler(attendance=attendance, students=students).reconcile(
        [
            _interval("2025-01-10T09:05:00Z", source_ref="row 2"),
            _interval("2025-01-10T09:06:00Z", student_email="bob@school.edu", source_ref="row 3"),
            _interval("2025-01-10T09:07:00Z", student_email="eve@school.edu", source_ref="row 4"),
        ]
    )

    assert summary.errors == ["row 3: student: connection reset while creating student"]
    assert summary.created == 2
    assert summary.students_created == 2
    assert sorted(students.rows) == ["ada@school.edu", "eve@school.edu"]
    assert {r.student_id for r in attendance.rows} == {1, 2}
