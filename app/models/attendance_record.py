from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import backref, relationship

from app.db.base import Base
from app.models.meeting import Meeting
from app.models.student import Student


class AttendanceRecord(Base):
    """
    Classified outcome of one join/leave interval of a student in a meeting.
    """

    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)

    meeting_id = Column(
        Integer,
        ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(
        Integer,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    join_time = Column(DateTime(timezone=True), nullable=False)
    leave_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    status = Column(String(16), nullable=False, default="present")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    meeting = relationship(
        Meeting,
        backref=backref("attendance_records", cascade="all"),
    )
    student = relationship(
        Student,
        backref=backref("attendance_records", cascade="all"),
    )

    __table_args__ = (
        UniqueConstraint(
            "meeting_id",
            "student_id",
            "join_time",
            name="uq_attendance_records_meeting_student_join",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<AttendanceRecord id={self.id} meeting_id={self.meeting_id} "
            f"student_id={self.student_id} join={self.join_time} status={self.status}>"
        )
