from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.schemas.sync import MeetingSyncResult, ReconcileSummary, RecentSyncSummary
from app.services.attendance_reconciler import AttendanceReconciler
from app.services.attendance_stores import (
    SqlAttendanceStore,
    SqlMeetingStore,
    SqlStudentStore,
)
from app.services.csv_attendance_source import CsvAttendanceSource
from app.services.graph_attendance_source import GraphAttendanceSource
from app.services.graph_client import GraphClientError
from app.services.status_classifier import (
    ClassificationThresholds,
    csv_thresholds,
    sync_thresholds,
)

logger = logging.getLogger(__name__)


def build_reconciler(db: AsyncSession, thresholds: ClassificationThresholds) -> AttendanceReconciler:
    """
    Reconciler writing through SQLAlchemy stores bound to `db`.
    """
    return AttendanceReconciler(
        meetings=SqlMeetingStore(db),
        students=SqlStudentStore(db),
        attendance=SqlAttendanceStore(db),
        thresholds=thresholds,
    )


async def sync_meeting_attendance(
    db: AsyncSession,
    source: GraphAttendanceSource,
    meeting_id: str,
    *,
    meeting: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> ReconcileSummary:
    """
    Pull the attendance reports of one online meeting and reconcile them.

    Behavior
    --------
    - Graph failures while collecting intervals propagate (GraphClientError);
      nothing has been written at that point.
    - Once intervals are available, per-interval problems end up in the
      returned summary instead of raising.

    Parameters
    ----------
    meeting:
        Already known meeting metadata; when omitted it is fetched from Graph
        so that a first-seen meeting can be created.
    """
    settings = settings or get_settings()
    logger.info("Starting attendance sync for meeting %s", meeting_id)

    intervals = await source.fetch_intervals(meeting_id, meeting)

    reconciler = build_reconciler(db, sync_thresholds(settings))
    summary = await reconciler.reconcile(intervals)

    logger.info(
        "Completed attendance sync for meeting %s: %d created, %d skipped, %d errors",
        meeting_id,
        summary.created,
        summary.skipped,
        len(summary.errors),
    )
    return summary


async def sync_recent_meetings(
    db: AsyncSession,
    source: GraphAttendanceSource,
    days_back: int,
    *,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> RecentSyncSummary:
    """
    Sync every online meeting of the user that took place in the last
    `days_back` days, one reconciliation batch per meeting.

    Failing to list the calendar is fatal; a Graph failure for a single
    meeting is recorded in that meeting's result and the loop moves on.
    """
    settings = settings or get_settings()
    end = now or datetime.now(tz=timezone.utc)
    start = end - timedelta(days=days_back)

    events = await source.list_online_events(start, end)

    result = RecentSyncSummary(
        days_back=days_back,
        meetings_found=len(events),
        meetings_synced=0,
    )

    for event in events:
        join_url = (event.get("onlineMeeting") or {}).get("joinUrl")
        if not join_url:
            continue

        event_id = str(event.get("id"))
        try:
            meeting = await source.find_meeting_by_join_url(join_url)
            if meeting is None:
                raise GraphClientError(f"No online meeting found for event {event_id}")
            summary = await sync_meeting_attendance(
                db,
                source,
                meeting["id"],
                meeting=meeting,
                settings=settings,
            )
        except GraphClientError as exc:
            logger.error("Failed to sync meeting for event %s: %s", event_id, exc)
            result.results.append(MeetingSyncResult(meeting_id=event_id, error=str(exc)))
            result.errors.append(f"event {event_id}: {exc}")
            continue

        result.meetings_synced += 1
        result.created += summary.created
        result.skipped += summary.skipped
        result.errors.extend(f"meeting {meeting['id']}: {e}" for e in summary.errors)
        result.results.append(MeetingSyncResult(meeting_id=meeting["id"], summary=summary))

    logger.info(
        "Completed syncing recent meetings: %d of %d synced",
        result.meetings_synced,
        result.meetings_found,
    )
    return result


async def import_attendance_csv(
    db: AsyncSession,
    content: bytes | str,
    *,
    settings: Optional[Settings] = None,
) -> ReconcileSummary:
    """
    Import one IT-department attendance CSV.

    Raises CsvImportError when the file as a whole is unreadable. Rows with
    missing required fields are reported in the summary's errors and all
    other rows are still imported.
    """
    settings = settings or get_settings()

    parsed = CsvAttendanceSource().parse(content)

    reconciler = build_reconciler(db, csv_thresholds(settings))
    summary = await reconciler.reconcile(parsed.intervals)
    summary.errors = parsed.errors + summary.errors

    logger.info(
        "CSV import complete: %d imported, %d skipped, %d errors",
        summary.created,
        summary.skipped,
        len(summary.errors),
    )
    return summary
