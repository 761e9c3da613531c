from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.graph_auth import get_graph_client
from app.common.datetime_utils import ensure_utc
from app.db.session import get_db
from app.models.meeting import Meeting
from app.schemas.meeting import MeetingAttendanceSummary, MeetingCreate, MeetingRead
from app.schemas.sync import ReconcileSummary, StoredMeetingSyncRequest
from app.services.attendance_reports import meeting_attendance_summary
from app.services.attendance_sync import sync_meeting_attendance
from app.services.graph_attendance_source import GraphAttendanceSource
from app.services.graph_client import GraphClient, GraphClientError

router = APIRouter(prefix="/meetings", tags=["Meetings"])


async def _get_meeting_or_404(db: AsyncSession, meeting_id: int) -> Meeting:
    result = await db.execute(select(Meeting).where(Meeting.id == meeting_id))
    meeting = result.scalar_one_or_none()
    if meeting is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Meeting with id {meeting_id} not found.",
        )
    return meeting


@router.get(
    "",
    response_model=list[MeetingRead],
    summary="List meetings",
    description="Meetings ordered by start time, newest first.",
)
async def list_meetings(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[MeetingRead]:
    stmt = select(Meeting).order_by(Meeting.start_time.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return [MeetingRead.model_validate(m) for m in result.scalars().all()]


@router.get(
    "/upcoming",
    response_model=list[MeetingRead],
    summary="Meetings that have not started yet",
)
async def list_upcoming_meetings(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> list[MeetingRead]:
    now = datetime.now(tz=timezone.utc)
    stmt = (
        select(Meeting)
        .where(Meeting.start_time > now)
        .order_by(Meeting.start_time.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [MeetingRead.model_validate(m) for m in result.scalars().all()]


@router.get(
    "/recent",
    response_model=list[MeetingRead],
    summary="Meetings that have already ended",
)
async def list_recent_meetings(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> list[MeetingRead]:
    now = datetime.now(tz=timezone.utc)
    stmt = (
        select(Meeting)
        .where(Meeting.end_time < now)
        .order_by(Meeting.end_time.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [MeetingRead.model_validate(m) for m in result.scalars().all()]


@router.get(
    "/date-range",
    response_model=list[MeetingRead],
    summary="Meetings scheduled entirely within a date range",
    responses={400: {"description": "end is before start."}},
)
async def list_meetings_in_range(
    start: datetime = Query(..., examples=["2025-01-06T00:00:00Z"]),
    end: datetime = Query(..., examples=["2025-01-13T00:00:00Z"]),
    db: AsyncSession = Depends(get_db),
) -> list[MeetingRead]:
    start, end = ensure_utc(start), ensure_utc(end)
    if end < start:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="end must be greater than or equal to start",
        )

    stmt = (
        select(Meeting)
        .where(Meeting.start_time >= start, Meeting.end_time <= end)
        .order_by(Meeting.start_time.desc())
    )
    result = await db.execute(stmt)
    return [MeetingRead.model_validate(m) for m in result.scalars().all()]


@router.get(
    "/{meeting_id}",
    response_model=MeetingRead,
    summary="Get meeting details by ID",
    responses={404: {"description": "No meeting exists with the given ID."}},
)
async def get_meeting(
    meeting_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> MeetingRead:
    meeting = await _get_meeting_or_404(db, meeting_id)
    return MeetingRead.model_validate(meeting)


@router.get(
    "/{meeting_id}/attendance",
    response_model=MeetingAttendanceSummary,
    summary="Attendance summary of a meeting",
    responses={404: {"description": "No meeting exists with the given ID."}},
)
async def get_meeting_attendance(
    meeting_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> MeetingAttendanceSummary:
    meeting = await _get_meeting_or_404(db, meeting_id)
    return await meeting_attendance_summary(db, meeting)


@router.post(
    "",
    response_model=MeetingRead,
    status_code=HTTPStatus.CREATED,
    summary="Register a meeting",
    description=(
        "Register a meeting by hand. Meetings are otherwise created automatically "
        "by Graph sync and CSV import, keyed on `external_id`."
    ),
    responses={
        400: {
            "description": "A meeting with the same external_id already exists.",
            "content": {
                "application/json": {
                    "example": {"detail": "Meeting with external_id 'abc' already exists."}
                }
            },
        },
    },
)
async def create_meeting(
    payload: MeetingCreate,
    db: AsyncSession = Depends(get_db),
) -> MeetingRead:
    existing = (
        await db.execute(select(Meeting).where(Meeting.external_id == payload.external_id))
    ).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Meeting with external_id '{payload.external_id}' already exists.",
        )

    meeting = Meeting(**payload.model_dump())
    db.add(meeting)
    await db.commit()
    await db.refresh(meeting)

    return MeetingRead.model_validate(meeting)


@router.post(
    "/{meeting_id}/sync",
    response_model=ReconcileSummary,
    summary="Sync attendance of a stored meeting from Microsoft Graph",
    description=(
        "Pulls every attendance report of the meeting using the caller's delegated "
        "Graph token (`Authorization: Bearer ...`) and reconciles it into attendance "
        "records. Re-running the sync is idempotent: already recorded joins are "
        "reported as `skipped`."
    ),
    responses={
        401: {"description": "Missing or malformed delegated access token."},
        404: {"description": "No meeting exists with the given ID."},
        502: {"description": "Microsoft Graph could not be queried."},
    },
)
async def sync_stored_meeting(
    payload: StoredMeetingSyncRequest,
    meeting_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
    graph: GraphClient = Depends(get_graph_client),
) -> ReconcileSummary:
    meeting = await _get_meeting_or_404(db, meeting_id)
    source = GraphAttendanceSource(graph, payload.user_id)

    try:
        return await sync_meeting_attendance(
            db,
            source,
            meeting.external_id,
            # Stored meetings need no metadata round-trip.
            meeting={"id": meeting.external_id},
        )
    except GraphClientError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc


@router.delete(
    "/{meeting_id}",
    status_code=HTTPStatus.NO_CONTENT,
    summary="Delete a meeting and its attendance records",
    responses={404: {"description": "No meeting exists with the given ID."}},
)
async def delete_meeting(
    meeting_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> Response:
    meeting = await _get_meeting_or_404(db, meeting_id)
    await db.delete(meeting)
    await db.commit()
    return Response(status_code=HTTPStatus.NO_CONTENT)
