from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.attendance import AttendanceReportRow, normalize_email


class StudentBase(BaseModel):
    """
    Shared fields used by StudentCreate and StudentRead.
    """

    email: str = Field(..., min_length=3, examples=["ada@school.edu"])
    name: str = Field(..., min_length=1, examples=["Ada Lovelace"])
    student_number: str | None = Field(
        None,
        description="Identifier of the student in the school roster.",
        examples=["S-2025-0042"],
    )
    azure_ad_id: str | None = Field(
        None,
        description="Object id of the student in the identity provider.",
    )


class StudentCreate(StudentBase):
    """
    Schema for creating a student by hand.
    """

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_email(value)


class StudentUpdate(BaseModel):
    """
    Schema for updating a student.
    All fields are optional; only provided fields are updated.
    """

    email: str | None = Field(default=None, min_length=3)
    name: str | None = Field(default=None, min_length=1)
    student_number: str | None = None
    azure_ad_id: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str | None) -> str | None:
        return normalize_email(value) if value is not None else None


class StudentRead(StudentBase):
    """
    Response schema for reading a student.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Auto-incremented student ID.", examples=[7])
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StudentAttendanceStats(BaseModel):
    """
    Aggregated attendance of one student over all meetings that have ended.
    """

    total_meetings: int = Field(..., description="Meetings that ended before now.")
    present: int = 0
    late: int = 0
    partial: int = 0
    absent: int = 0
    attendance_rate: float = Field(
        0.0,
        description="(present + late) / total_meetings * 100, rounded to 2 decimals.",
        examples=[87.5],
    )


class StudentAttendanceSummary(BaseModel):
    student: StudentRead
    stats: StudentAttendanceStats
    recent_records: list[AttendanceReportRow] = Field(default_factory=list)
