from datetime import datetime
from http import HTTPStatus

from fastapi import APIRouter, Depends, File, HTTPException, Path, Query, Response, UploadFile
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.graph_auth import get_graph_client
from app.core.config import get_settings
from app.db.session import get_db
from app.models.attendance_record import AttendanceRecord
from app.models.meeting import Meeting
from app.models.student import Student
from app.schemas.attendance import (
    AttendanceRecordCreate,
    AttendanceRecordRead,
    AttendanceRecordUpdate,
    AttendanceReportRow,
    AttendanceStatus,
)
from app.schemas.sync import (
    MeetingSyncRequest,
    ReconcileSummary,
    RecentSyncRequest,
    RecentSyncSummary,
)
from app.services.attendance_reports import ReportFilters, attendance_report, render_report_csv
from app.services.attendance_sync import (
    import_attendance_csv,
    sync_meeting_attendance,
    sync_recent_meetings,
)
from app.services.csv_attendance_source import CsvImportError
from app.services.graph_attendance_source import GraphAttendanceSource
from app.services.graph_client import GraphClient, GraphClientError

router = APIRouter(prefix="/attendance", tags=["Attendance"])


def _report_filters(
    student_id: int | None = Query(None, ge=1),
    meeting_id: int | None = Query(None, ge=1),
    start_date: datetime | None = Query(
        None, description="Only meetings starting at or after this instant."
    ),
    end_date: datetime | None = Query(
        None, description="Only meetings ending at or before this instant."
    ),
    status: AttendanceStatus | None = Query(None),
) -> ReportFilters:
    return ReportFilters(
        student_id=student_id,
        meeting_id=meeting_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
    )


async def _get_record_or_404(db: AsyncSession, record_id: int) -> AttendanceRecord:
    result = await db.execute(select(AttendanceRecord).where(AttendanceRecord.id == record_id))
    record = result.scalar_one_or_none()
    if record is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Attendance record with id {record_id} not found.",
        )
    return record


@router.get(
    "",
    response_model=list[AttendanceRecordRead],
    summary="List attendance records",
    description="Attendance records ordered by join time, newest first.",
)
async def list_attendance_records(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[AttendanceRecordRead]:
    stmt = (
        select(AttendanceRecord)
        .order_by(AttendanceRecord.join_time.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return [AttendanceRecordRead.model_validate(r) for r in result.scalars().all()]


@router.get(
    "/report",
    response_model=list[AttendanceReportRow],
    summary="Filtered attendance report",
    description=(
        "Attendance records joined with student and meeting details.\n\n"
        "All filters are optional and combined with AND. `start_date` / `end_date` "
        "bound the meeting schedule."
    ),
)
async def get_attendance_report(
    filters: ReportFilters = Depends(_report_filters),
    db: AsyncSession = Depends(get_db),
) -> list[AttendanceReportRow]:
    return await attendance_report(db, filters)


@router.get(
    "/export",
    summary="Export the attendance report as CSV",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}},
)
async def export_attendance_report(
    filters: ReportFilters = Depends(_report_filters),
    db: AsyncSession = Depends(get_db),
) -> Response:
    rows = await attendance_report(db, filters)
    return Response(
        content=render_report_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=attendance-report.csv"},
    )


@router.post(
    "/sync",
    response_model=ReconcileSummary,
    summary="Sync attendance of one online meeting from Microsoft Graph",
    description=(
        "Uses the caller's delegated Graph token (`Authorization: Bearer ...`) to "
        "fetch the meeting and all of its attendance reports, then reconciles them.\n\n"
        "Unknown meetings and students are created on the fly. Re-running the sync "
        "for the same meeting creates nothing new; the already recorded joins are "
        "reported as `skipped`."
    ),
    responses={
        200: {
            "description": "Batch finished; see counters and per-interval errors.",
            "content": {
                "application/json": {
                    "example": {
                        "created": 12,
                        "skipped": 0,
                        "errors": [],
                        "meetings_created": 1,
                        "students_created": 3,
                        "record_ids": [41, 42, 43],
                    }
                }
            },
        },
        401: {"description": "Missing or malformed delegated access token."},
        502: {"description": "Microsoft Graph could not be queried."},
    },
)
async def sync_attendance(
    payload: MeetingSyncRequest,
    db: AsyncSession = Depends(get_db),
    graph: GraphClient = Depends(get_graph_client),
) -> ReconcileSummary:
    source = GraphAttendanceSource(graph, payload.user_id)
    try:
        return await sync_meeting_attendance(db, source, payload.meeting_id)
    except GraphClientError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc


@router.post(
    "/sync-recent",
    response_model=RecentSyncSummary,
    summary="Sync attendance of all recent online meetings",
    description=(
        "Lists the user's online meetings of the last `days_back` days "
        "(default from settings, at most `SYNC_MAX_DAYS_BACK`) and syncs each of them "
        "as its own batch. A meeting that fails is reported and the others continue."
    ),
    responses={
        400: {"description": "days_back exceeds the configured maximum."},
        401: {"description": "Missing or malformed delegated access token."},
        502: {"description": "The user's calendar could not be listed."},
    },
)
async def sync_recent_attendance(
    payload: RecentSyncRequest,
    db: AsyncSession = Depends(get_db),
    graph: GraphClient = Depends(get_graph_client),
) -> RecentSyncSummary:
    settings = get_settings()
    days_back = payload.days_back or settings.SYNC_DEFAULT_DAYS_BACK
    if days_back > settings.SYNC_MAX_DAYS_BACK:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"days_back must be at most {settings.SYNC_MAX_DAYS_BACK}.",
        )

    source = GraphAttendanceSource(graph, payload.user_id)
    try:
        return await sync_recent_meetings(db, source, days_back)
    except GraphClientError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc


@router.post(
    "/import",
    response_model=ReconcileSummary,
    summary="Import attendance from an IT-department CSV export",
    description=(
        "Multipart upload (`file`) of a CSV with the columns\n\n"
        "`meeting_id, meeting_title, meeting_start, meeting_end, student_email, "
        "student_name, join_time, leave_time, duration_minutes`.\n\n"
        "Invalid rows are listed in `errors` while all valid rows are imported. "
        "Importing the same file again creates nothing and reports every row as "
        "`skipped`."
    ),
    responses={
        400: {"description": "The file is not a readable attendance CSV."},
        413: {"description": "The file exceeds CSV_MAX_UPLOAD_BYTES."},
    },
)
async def import_attendance(
    file: UploadFile = File(..., description="Attendance CSV export."),
    db: AsyncSession = Depends(get_db),
) -> ReconcileSummary:
    settings = get_settings()

    filename = file.filename or ""
    if file.content_type not in ("text/csv", "application/vnd.ms-excel") and not filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Only CSV files are allowed.",
        )

    content = await file.read(settings.CSV_MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.CSV_MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            detail=f"CSV file exceeds {settings.CSV_MAX_UPLOAD_BYTES} bytes.",
        )

    try:
        return await import_attendance_csv(db, content, settings=settings)
    except CsvImportError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc


@router.get(
    "/{record_id}",
    response_model=AttendanceRecordRead,
    summary="Get attendance record by ID",
    responses={404: {"description": "No attendance record exists with the given ID."}},
)
async def get_attendance_record(
    record_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> AttendanceRecordRead:
    record = await _get_record_or_404(db, record_id)
    return AttendanceRecordRead.model_validate(record)


@router.post(
    "",
    response_model=AttendanceRecordRead,
    status_code=HTTPStatus.CREATED,
    summary="Create an attendance record by hand",
    description=(
        "Manual entry, e.g. to mark a student `absent`. The referenced meeting "
        "and student must exist."
    ),
    responses={
        400: {"description": "Unknown meeting/student or duplicate join time."},
    },
)
async def create_attendance_record(
    payload: AttendanceRecordCreate,
    db: AsyncSession = Depends(get_db),
) -> AttendanceRecordRead:
    if await db.get(Meeting, payload.meeting_id) is None:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Meeting with id {payload.meeting_id} not found.",
        )
    if await db.get(Student, payload.student_id) is None:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Student with id {payload.student_id} not found.",
        )

    data = payload.model_dump()
    data["status"] = payload.status.value
    record = AttendanceRecord(**data)
    db.add(record)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="An attendance record with the same meeting, student and join time already exists.",
        ) from exc
    await db.refresh(record)

    return AttendanceRecordRead.model_validate(record)


@router.put(
    "/{record_id}",
    response_model=AttendanceRecordRead,
    summary="Update an attendance record",
    responses={404: {"description": "No attendance record exists with the given ID."}},
)
async def update_attendance_record(
    payload: AttendanceRecordUpdate,
    record_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> AttendanceRecordRead:
    """
    Partially update a record; only provided fields are changed.
    """
    record = await _get_record_or_404(db, record_id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if field in ("join_time", "status") and value is None:
            continue
        if field == "status":
            value = AttendanceStatus(value).value
        setattr(record, field, value)

    await db.commit()
    await db.refresh(record)
    return AttendanceRecordRead.model_validate(record)


@router.delete(
    "/{record_id}",
    status_code=HTTPStatus.NO_CONTENT,
    summary="Delete an attendance record",
    responses={404: {"description": "No attendance record exists with the given ID."}},
)
async def delete_attendance_record(
    record_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> Response:
    record = await _get_record_or_404(db, record_id)
    await db.delete(record)
    await db.commit()
    return Response(status_code=HTTPStatus.NO_CONTENT)
