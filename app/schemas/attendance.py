from __future__ import annotations

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from app.common.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)


class AttendanceStatus(str, Enum):
    """
    Classification of a single attendance record.

    `absent` is never produced by interval classification; it is only set
    through the CRUD API (e.g. when reconciling against a roster by hand).
    """

    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"
    PARTIAL = "partial"


class AttendanceInterval(BaseModel):
    """
    One raw join-to-leave span of a student in a meeting, as reported by an
    ingestion source (Graph attendance report or CSV row).

    Validation normalizes the loosely typed adapter output:

    - surrounding whitespace is stripped and blank strings count as missing
    - emails are lower-cased
    - timestamps become aware UTC datetimes (naive input is taken as UTC)
    - durations are truncated to whole minutes; `duration_seconds` is only
      used when `duration_minutes` is absent
    - an unusable duration (not a number, infinite or negative) is dropped
      with a warning, so a bad optional duration never rejects the interval
    """

    source_ref: str | None = Field(
        None,
        description="Human readable locator of the interval in its source, e.g. 'row 4'.",
    )

    meeting_external_id: str = Field(..., description="Meeting id in the source system.")
    meeting_title: str | None = None
    meeting_start: datetime | None = None
    meeting_end: datetime | None = None
    organizer_email: str | None = None
    meeting_url: str | None = None

    student_email: str = Field(..., description="Attendee email (natural key of Student).")
    student_name: str | None = None
    student_azure_ad_id: str | None = None

    join_time: datetime
    leave_time: datetime | None = None
    duration_minutes: int | None = Field(None, ge=0)
    duration_seconds: float | None = Field(None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_values(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str):
                value = value.strip()
                if not value:
                    continue
            if value is None:
                continue
            cleaned[key] = value
        return cleaned

    @field_validator("student_email", "organizer_email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        return normalize_email(value) if value is not None else None

    @field_validator("meeting_start", "meeting_end", "join_time", "leave_time")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @field_validator("duration_minutes", "duration_seconds", mode="before")
    @classmethod
    def _usable_duration(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if isinstance(value, bool) or not math.isfinite(number) or number < 0:
            logger.warning("Ignoring unusable %s value %r", info.field_name, value)
            return None
        if info.field_name == "duration_minutes":
            # "45.9" and 45.9 both mean 45 whole minutes.
            return int(number)
        return number

    @model_validator(mode="after")
    def _minutes_from_seconds(self) -> "AttendanceInterval":
        if self.duration_minutes is None and self.duration_seconds is not None:
            self.duration_minutes = int(self.duration_seconds // 60)
        return self


def normalize_email(email: str) -> str:
    """
    Canonical form of an email address used for both creation and lookup.
    """
    return email.strip().lower()


# --------------------------------------------------------------------------
# CRUD schemas
# --------------------------------------------------------------------------

class AttendanceRecordBase(BaseModel):
    meeting_id: int = Field(..., ge=1, examples=[1])
    student_id: int = Field(..., ge=1, examples=[1])
    join_time: datetime = Field(..., examples=["2025-01-10T09:02:00Z"])
    leave_time: datetime | None = Field(None, examples=["2025-01-10T09:55:00Z"])
    duration_minutes: int | None = Field(None, ge=0, examples=[53])
    status: AttendanceStatus = Field(..., examples=["present"])

    @field_validator("join_time", "leave_time")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class AttendanceRecordCreate(AttendanceRecordBase):
    """
    Schema for manually creating an attendance record.
    """
    pass


class AttendanceRecordUpdate(BaseModel):
    """
    Schema for updating an attendance record.
    All fields are optional; only provided fields are updated.
    """
    join_time: datetime | None = None
    leave_time: datetime | None = None
    duration_minutes: int | None = Field(None, ge=0)
    status: AttendanceStatus | None = None


class AttendanceRecordRead(AttendanceRecordBase):
    """
    Public representation of an AttendanceRecord row.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Database identifier of the record.", examples=[10])
    created_at: datetime | None = None


class AttendanceReportRow(AttendanceRecordRead):
    """
    Attendance record enriched with student and meeting details.
    """

    student_name: str | None = None
    student_email: str | None = None
    meeting_title: str | None = None
    meeting_start: datetime | None = None
    meeting_end: datetime | None = None

    @field_validator("meeting_start", "meeting_end")
    @classmethod
    def _meeting_to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None
