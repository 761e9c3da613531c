# app/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.core.config import get_settings


router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """
    Liveness answer of the attendance tracker.
    """

    status: str = Field(
        ...,
        description="Always `ok` while the process can serve requests.",
        examples=["ok"],
    )
    app_name: str = Field(
        ...,
        description="Configured `APP_NAME`.",
        examples=["Meeting Attendance Tracker"],
    )
    environment: str = Field(
        ...,
        description="Configured `APP_ENV`.",
        examples=["local"],
    )
    timestamp_utc: datetime = Field(
        ...,
        description="When the answer was produced, in UTC.",
        examples=["2025-01-10T09:00:00Z"],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description=(
        "Answers without querying the database or Microsoft Graph, so a slow "
        "attendance sync or an expired Graph token never makes it fail."
    ),
    responses={
        200: {
            "description": "The process is alive.",
            "content": {
                "application/json": {
                    "example": {
                        "status": "ok",
                        "app_name": "Meeting Attendance Tracker",
                        "environment": "local",
                        "timestamp_utc": "2025-01-10T09:00:00Z",
                    }
                }
            },
        }
    },
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
