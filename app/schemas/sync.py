from pydantic import BaseModel, Field


class ReconcileSummary(BaseModel):
    """
    Observable outcome of one reconciliation batch (one synced meeting or one
    imported CSV file).

    A batch with `created == 0` and many `skipped` is an idempotent re-run,
    not a failure.
    """

    created: int = Field(0, description="Attendance records inserted in this batch.")
    skipped: int = Field(0, description="Intervals recognised as already recorded.")
    errors: list[str] = Field(
        default_factory=list,
        description="One message per interval that could not be processed.",
    )
    meetings_created: int = Field(0, description="Meetings first seen in this batch.")
    students_created: int = Field(0, description="Students first seen in this batch.")
    record_ids: list[int] = Field(
        default_factory=list,
        description="Identifiers of the attendance records created in this batch.",
    )


class MeetingSyncRequest(BaseModel):
    """
    Body of POST /attendance/sync.
    """

    user_id: str = Field(
        ...,
        min_length=1,
        description="Graph user (id or UPN) that organised the meeting.",
        examples=["teacher@school.edu"],
    )
    meeting_id: str = Field(
        ...,
        min_length=1,
        description="Graph online-meeting id to pull attendance for.",
    )


class StoredMeetingSyncRequest(BaseModel):
    """
    Body of POST /meetings/{id}/sync.
    """

    user_id: str = Field(..., min_length=1, examples=["teacher@school.edu"])


class RecentSyncRequest(BaseModel):
    """
    Body of POST /attendance/sync-recent.
    """

    user_id: str = Field(..., min_length=1, examples=["teacher@school.edu"])
    days_back: int | None = Field(
        None,
        ge=1,
        description="Look-back window in days (defaults to SYNC_DEFAULT_DAYS_BACK).",
        examples=[7],
    )


class MeetingSyncResult(BaseModel):
    meeting_id: str
    summary: ReconcileSummary | None = None
    error: str | None = None


class RecentSyncSummary(BaseModel):
    """
    Outcome of syncing every online meeting in a look-back window.
    """

    days_back: int
    meetings_found: int
    meetings_synced: int
    created: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    results: list[MeetingSyncResult] = Field(default_factory=list)
