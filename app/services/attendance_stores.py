from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.attendance_record import AttendanceRecord
from app.models.meeting import Meeting
from app.models.student import Student
from app.schemas.attendance import normalize_email

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------
# Interfaces consumed by the reconciler
# --------------------------------------------------------------------------

class MeetingStore(Protocol):
    async def find_by_external_id(self, external_id: str) -> Optional[Meeting]: ...

    async def create(self, fields: Dict[str, Any]) -> Meeting: ...


class StudentStore(Protocol):
    async def find_by_email(self, email: str) -> Optional[Student]: ...

    async def create(self, fields: Dict[str, Any]) -> Student: ...


class AttendanceStore(Protocol):
    async def find_by_meeting_and_student(
        self, meeting_id: int, student_id: int
    ) -> Sequence[AttendanceRecord]: ...

    async def bulk_create(self, records: List[Dict[str, Any]]) -> List[AttendanceRecord]: ...


# --------------------------------------------------------------------------
# SQLAlchemy implementations
# --------------------------------------------------------------------------

class SqlMeetingStore:
    """
    Meeting persistence backed by an AsyncSession. Each creation is
    committed on its own; a unique-key race resolves to the winning row.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_external_id(self, external_id: str) -> Optional[Meeting]:
        result = await self.db.execute(
            select(Meeting).where(Meeting.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def create(self, fields: Dict[str, Any]) -> Meeting:
        meeting = Meeting(**fields)
        try:
            async with self.db.begin_nested():
                self.db.add(meeting)
        except IntegrityError:
            # Another batch created the same external id first.
            existing = await self.find_by_external_id(fields["external_id"])
            if existing is None:
                raise
            return existing
        await self.db.commit()
        return meeting


class SqlStudentStore:
    """
    Student persistence backed by an AsyncSession. Emails are normalized on
    both lookup and creation.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_email(self, email: str) -> Optional[Student]:
        result = await self.db.execute(
            select(Student).where(Student.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def create(self, fields: Dict[str, Any]) -> Student:
        fields = {**fields, "email": normalize_email(fields["email"])}
        student = Student(**fields)
        try:
            async with self.db.begin_nested():
                self.db.add(student)
        except IntegrityError:
            existing = await self.find_by_email(fields["email"])
            if existing is None:
                raise
            return existing
        await self.db.commit()
        return student


class SqlAttendanceStore:
    """
    Attendance record persistence backed by an AsyncSession.

    `bulk_create` silently drops rows that collide with an existing
    (meeting_id, student_id, join_time) and returns only the inserted rows.

    Both statements run inside a savepoint: when one fails, only the
    savepoint is rolled back and the session stays usable for the rest of
    the batch and for later batches on the same session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_meeting_and_student(
        self, meeting_id: int, student_id: int
    ) -> List[AttendanceRecord]:
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(AttendanceRecord)
                .where(
                    AttendanceRecord.meeting_id == meeting_id,
                    AttendanceRecord.student_id == student_id,
                )
                .order_by(AttendanceRecord.join_time.asc())
            )
            return list(result.scalars().all())

    async def bulk_create(self, records: List[Dict[str, Any]]) -> List[AttendanceRecord]:
        if not records:
            return []

        dialect = self.db.bind.dialect.name if self.db.bind is not None else ""

        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = (
                insert(AttendanceRecord)
                .values(records)
                .on_conflict_do_nothing(
                    index_elements=["meeting_id", "student_id", "join_time"],
                )
                .returning(AttendanceRecord)
            )
            async with self.db.begin_nested():
                result = await self.db.scalars(stmt)
                created = list(result.all())
            await self.db.commit()
            return created

        return await self._insert_one_by_one(records)

    async def _insert_one_by_one(self, records: List[Dict[str, Any]]) -> List[AttendanceRecord]:
        """
        Fallback for dialects without ON CONFLICT support.
        """
        created: List[AttendanceRecord] = []
        for fields in records:
            record = AttendanceRecord(**fields)
            try:
                async with self.db.begin_nested():
                    self.db.add(record)
            except IntegrityError:
                logger.debug(
                    "Attendance row already present for meeting=%s student=%s join=%s",
                    fields["meeting_id"],
                    fields["student_id"],
                    fields["join_time"],
                )
                continue
            created.append(record)
        await self.db.commit()
        return created
