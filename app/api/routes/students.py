from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.models.student import Student
from app.schemas.student import (
    StudentAttendanceSummary,
    StudentCreate,
    StudentRead,
    StudentUpdate,
)
from app.services.attendance_reports import (
    ReportFilters,
    attendance_report,
    student_attendance_stats,
)

router = APIRouter(prefix="/students", tags=["Students"])

RECENT_RECORDS_LIMIT = 10


async def _get_student_or_404(db: AsyncSession, student_id: int) -> Student:
    result = await db.execute(select(Student).where(Student.id == student_id))
    student = result.scalar_one_or_none()
    if student is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Student with id {student_id} not found.",
        )
    return student


async def _ensure_email_free(db: AsyncSession, email: str, exclude_id: int | None = None) -> None:
    stmt = select(Student).where(Student.email == email)
    if exclude_id is not None:
        stmt = stmt.where(Student.id != exclude_id)
    existing = (await db.execute(stmt)).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Student with email '{email}' already exists.",
        )


@router.post(
    "",
    response_model=StudentRead,
    status_code=HTTPStatus.CREATED,
    summary="Create a student",
    description=(
        "Register a student by hand. Students are otherwise created automatically "
        "the first time they show up in a synced or imported attendance interval.\n\n"
        "The email address is the natural key and is stored lower-cased."
    ),
    responses={
        400: {
            "description": "A student with the same email already exists.",
            "content": {
                "application/json": {
                    "example": {"detail": "Student with email 'ada@school.edu' already exists."}
                }
            },
        },
    },
)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
) -> StudentRead:
    await _ensure_email_free(db, payload.email)

    student = Student(**payload.model_dump())
    db.add(student)
    await db.commit()
    await db.refresh(student)

    return StudentRead.model_validate(student)


@router.get(
    "",
    response_model=list[StudentRead],
    summary="List all students",
)
async def list_students(db: AsyncSession = Depends(get_db)) -> list[StudentRead]:
    """
    Fetch all students ordered by name.
    """
    result = await db.execute(select(Student).order_by(Student.name.asc()))
    return [StudentRead.model_validate(s) for s in result.scalars().all()]


@router.get(
    "/search",
    response_model=list[StudentRead],
    summary="Search students",
    description="Case-insensitive match on name, email or roster number.",
)
async def search_students(
    q: str = Query(..., min_length=1, description="Search term.", examples=["ada"]),
    db: AsyncSession = Depends(get_db),
) -> list[StudentRead]:
    pattern = f"%{q}%"
    stmt = (
        select(Student)
        .where(
            or_(
                Student.name.ilike(pattern),
                Student.email.ilike(pattern),
                Student.student_number.ilike(pattern),
            )
        )
        .order_by(Student.name.asc())
    )
    result = await db.execute(stmt)
    return [StudentRead.model_validate(s) for s in result.scalars().all()]


@router.get(
    "/{student_id}",
    response_model=StudentRead,
    summary="Get student details by ID",
    responses={404: {"description": "No student exists with the given ID."}},
)
async def get_student(
    student_id: int = Path(..., ge=1, description="Numeric ID of the student."),
    db: AsyncSession = Depends(get_db),
) -> StudentRead:
    student = await _get_student_or_404(db, student_id)
    return StudentRead.model_validate(student)


@router.get(
    "/{student_id}/attendance",
    response_model=StudentAttendanceSummary,
    summary="Attendance summary of a student",
    description=(
        "Aggregated attendance over all meetings that have already ended, plus the "
        f"{RECENT_RECORDS_LIMIT} most recent attendance records of the student."
    ),
    responses={404: {"description": "No student exists with the given ID."}},
)
async def get_student_attendance(
    student_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> StudentAttendanceSummary:
    student = await _get_student_or_404(db, student_id)

    stats = await student_attendance_stats(db, student.id)
    records = await attendance_report(db, ReportFilters(student_id=student.id))

    return StudentAttendanceSummary(
        student=StudentRead.model_validate(student),
        stats=stats,
        recent_records=records[:RECENT_RECORDS_LIMIT],
    )


@router.put(
    "/{student_id}",
    response_model=StudentRead,
    summary="Update a student",
    responses={
        400: {"description": "Another student already uses the new email."},
        404: {"description": "No student exists with the given ID."},
    },
)
async def update_student(
    payload: StudentUpdate,
    student_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> StudentRead:
    """
    Partially update a student; only provided fields are changed.
    """
    student = await _get_student_or_404(db, student_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("email"):
        await _ensure_email_free(db, changes["email"], exclude_id=student.id)

    for field, value in changes.items():
        if value is None and field in ("email", "name"):
            continue
        setattr(student, field, value)

    await db.commit()
    await db.refresh(student)
    return StudentRead.model_validate(student)


@router.delete(
    "/{student_id}",
    status_code=HTTPStatus.NO_CONTENT,
    summary="Delete a student and their attendance records",
    responses={404: {"description": "No student exists with the given ID."}},
)
async def delete_student(
    student_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> Response:
    student = await _get_student_or_404(db, student_id)
    await db.delete(student)
    await db.commit()
    return Response(status_code=HTTPStatus.NO_CONTENT)
