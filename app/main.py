# app/main.py
from fastapi import FastAPI

from app.api.routes import attendance, health, meetings, students
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db.session import init_db


def create_app() -> FastAPI:
    """
    Application factory for the Meeting Attendance Tracker service.
    """
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend service that tracks student attendance in online class meetings.\n"
            "Attendance is pulled from Microsoft Graph attendance reports or imported\n"
            "from IT-department CSV exports, reconciled into per-join records and\n"
            "classified as present, late or partial."
        ),
        version="0.1.0",
    )

    # Routers
    app.include_router(health.router)
    app.include_router(students.router)
    app.include_router(meetings.router)
    app.include_router(attendance.router)

    @app.on_event("startup")
    async def on_startup() -> None:  # pragma: no cover
        await init_db()

    return app


app = create_app()
