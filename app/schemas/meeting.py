from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.common.datetime_utils import ensure_utc
from app.schemas.attendance import AttendanceReportRow


class MeetingBase(BaseModel):
    """
    Shared fields used by MeetingCreate and MeetingRead.
    """

    external_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the meeting in its source system (Graph online-meeting id or CSV meeting_id).",
        examples=["MSo1N2Y5ZGFjYy03MWJmLTQ3NDMtYjQxMy01M2EdFGkdRWHJlQ"],
    )
    title: str | None = Field(None, examples=["Algorithms, week 3"])
    start_time: datetime = Field(..., examples=["2025-01-10T09:00:00Z"])
    end_time: datetime = Field(..., examples=["2025-01-10T10:00:00Z"])
    organizer_email: str | None = Field(None, examples=["teacher@school.edu"])
    meeting_url: str | None = Field(None, examples=["https://teams.microsoft.com/l/meetup-join/..."])

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class MeetingCreate(MeetingBase):
    """
    Schema for registering a meeting by hand.
    """

    @model_validator(mode="after")
    def _end_after_start(self) -> "MeetingCreate":
        if self.end_time < self.start_time:
            raise ValueError("end_time must be greater than or equal to start_time")
        return self


class MeetingRead(MeetingBase):
    """
    Response schema for reading a meeting.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Auto-incremented meeting ID.", examples=[3])
    created_at: datetime | None = None


class MeetingAttendanceSummary(BaseModel):
    """
    Per-status attendance counts for a single meeting.
    """

    meeting: MeetingRead
    total_attendees: int = Field(..., description="Number of distinct students with a record.")
    present: int = 0
    late: int = 0
    partial: int = 0
    absent: int = 0
    records: list[AttendanceReportRow] = Field(default_factory=list)
