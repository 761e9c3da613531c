from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.common.datetime_utils import ensure_utc, parse_iso_utc
from app.services.graph_client import GraphClient

logger = logging.getLogger(__name__)


class GraphAttendanceSource:
    """
    Pulls meeting metadata and attendance intervals for online meetings
    organised by one user, using the user's delegated Graph token.

    Endpoints used
    --------------
    - GET /v1.0/users/{user}/onlineMeetings/{id}
    - GET /v1.0/users/{user}/onlineMeetings?$filter=JoinWebUrl eq '...'
    - GET /v1.0/users/{user}/onlineMeetings/{id}/attendanceReports
    - GET /v1.0/users/{user}/onlineMeetings/{id}/attendanceReports/{report}/attendanceRecords
    - GET /v1.0/users/{user}/calendar/events

    Any GraphClientError raised here is fatal for the batch being prepared:
    no intervals are available to reconcile.
    """

    def __init__(self, graph_client: GraphClient, user_id: str) -> None:
        self.graph = graph_client
        self.user_id = user_id

    @property
    def _meetings_path(self) -> str:
        return f"/v1.0/users/{self.user_id}/onlineMeetings"

    async def fetch_meeting(self, meeting_id: str) -> Dict[str, Any]:
        return await self.graph.get_json(f"{self._meetings_path}/{meeting_id}")

    async def find_meeting_by_join_url(self, join_url: str) -> Optional[Dict[str, Any]]:
        """
        Calendar events only expose the join URL of their online meeting;
        the online-meeting id has to be looked up through it.
        """
        escaped = join_url.replace("'", "''")
        meetings = await self.graph.get_collection(
            self._meetings_path,
            params={"$filter": f"JoinWebUrl eq '{escaped}'"},
        )
        return meetings[0] if meetings else None

    async def list_online_events(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """
        Calendar events of the user that are online meetings within [start, end].
        """
        start_iso = ensure_utc(start).strftime("%Y-%m-%dT%H:%M:%SZ")
        end_iso = ensure_utc(end).strftime("%Y-%m-%dT%H:%M:%SZ")
        events = await self.graph.get_collection(
            f"/v1.0/users/{self.user_id}/calendar/events",
            params={
                "$filter": (
                    "isOnlineMeeting eq true"
                    f" and start/dateTime ge '{start_iso}'"
                    f" and end/dateTime le '{end_iso}'"
                ),
            },
        )
        logger.info(
            "Found %d online meetings for %s between %s and %s",
            len(events),
            self.user_id,
            start_iso,
            end_iso,
        )
        return events

    async def fetch_intervals(
        self,
        meeting_id: str,
        meeting: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return one raw interval per attendance interval found in every
        attendance report of the meeting.

        `meeting` may carry already-fetched meeting metadata; otherwise it
        is fetched first so that unknown meetings can be created.
        """
        if meeting is None:
            meeting = await self.fetch_meeting(meeting_id)

        reports = await self.graph.get_collection(
            f"{self._meetings_path}/{meeting_id}/attendanceReports"
        )
        if not reports:
            logger.warning("No attendance reports found for meeting %s", meeting_id)
            return []

        meeting_fields = self._meeting_fields(meeting, meeting_id)
        intervals: List[Dict[str, Any]] = []

        for report in reports:
            report_id = report.get("id")
            records = await self.graph.get_collection(
                f"{self._meetings_path}/{meeting_id}/attendanceReports/{report_id}/attendanceRecords"
            )
            for record in records:
                intervals.extend(self._record_intervals(record, report_id, meeting_fields))

        logger.info(
            "Collected %d attendance intervals from %d reports for meeting %s",
            len(intervals),
            len(reports),
            meeting_id,
        )
        return intervals

    @staticmethod
    def _meeting_fields(meeting: Dict[str, Any], meeting_id: str) -> Dict[str, Any]:
        organizer = (meeting.get("participants") or {}).get("organizer") or {}
        return {
            "meeting_external_id": meeting.get("id") or meeting_id,
            "meeting_title": meeting.get("subject"),
            "meeting_start": _timestamp(meeting.get("startDateTime")),
            "meeting_end": _timestamp(meeting.get("endDateTime")),
            "organizer_email": organizer.get("upn"),
            "meeting_url": meeting.get("joinWebUrl") or meeting.get("joinUrl"),
        }

    @staticmethod
    def _record_intervals(
        record: Dict[str, Any],
        report_id: Optional[str],
        meeting_fields: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        identity = record.get("identity") or {}
        email = record.get("emailAddress")
        label = email or identity.get("displayName") or record.get("id") or "unknown attendee"

        intervals = []
        for index, span in enumerate(record.get("attendanceIntervals") or [], start=1):
            intervals.append(
                {
                    **meeting_fields,
                    "source_ref": f"report {report_id} / {label} / interval {index}",
                    "student_email": email,
                    "student_name": identity.get("displayName"),
                    "student_azure_ad_id": identity.get("id"),
                    "join_time": _timestamp(span.get("joinDateTime")),
                    "leave_time": _timestamp(span.get("leaveDateTime")),
                    "duration_seconds": span.get("durationInSeconds"),
                }
            )
        return intervals


def _timestamp(value: Any) -> Any:
    """
    Parse Graph timestamps; unparsable values are passed through untouched
    so that interval validation reports them.
    """
    if isinstance(value, str):
        return parse_iso_utc(value) or value
    return value
