# tests/test_graph_attendance_source.py
from datetime import datetime, timezone

import pytest

from app.services.graph_attendance_source import GraphAttendanceSource
from app.services.graph_client import GraphClientError

MEETING = {
    "id": "meeting-abc",
    "subject": "Algorithms",
    "startDateTime": "2025-01-10T09:00:00.0000000Z",
    "endDateTime": "2025-01-10T10:00:00.0000000Z",
    "joinWebUrl": "https://teams.microsoft.com/l/meetup-join/abc",
    "participants": {"organizer": {"upn": "teacher@school.edu"}},
}


class FakeGraphClient:
    """
    Simple stub to emulate GraphClient: maps request paths to payloads.
    """

    def __init__(self, objects=None, collections=None, raise_error: bool = False):
        self.objects = objects or {}
        self.collections = collections or {}
        self.raise_error = raise_error
        self.calls = []

    async def get_json(self, path: str, params=None):
        self.calls.append(("json", path, params))
        if self.raise_error:
            raise GraphClientError("Simulated Graph failure")
        return self.objects[path]

    async def get_collection(self, path: str, params=None):
        self.calls.append(("collection", path, params))
        if self.raise_error:
            raise GraphClientError("Simulated Graph failure")
        return self.collections.get(path, [])


def _base(meeting_id: str = "meeting-abc") -> str:
    return f"/v1.0/users/teacher@school.edu/onlineMeetings/{meeting_id}"


@pytest.mark.asyncio
async def test_fetch_intervals_flattens_every_report_and_interval():
    reports_path = f"{_base()}/attendanceReports"
    graph = FakeGraphClient(
        objects={_base(): MEETING},
        collections={
            reports_path: [{"id": "r1"}, {"id": "r2"}],
            f"{reports_path}/r1/attendanceRecords": [
                {
                    "emailAddress": "Ada@School.edu",
                    "identity": {"id": "aad-1", "displayName": "Ada Lovelace"},
                    "attendanceIntervals": [
                        {
                            "joinDateTime": "2025-01-10T09:05:00.1234567Z",
                            "leaveDateTime": "2025-01-10T09:30:00Z",
                            "durationInSeconds": 1495,
                        },
                        {
                            "joinDateTime": "2025-01-10T09:40:00Z",
                            "leaveDateTime": "2025-01-10T09:58:00Z",
                            "durationInSeconds": 1080,
                        },
                    ],
                }
            ],
            f"{reports_path}/r2/attendanceRecords": [
                {
                    "emailAddress": "bob@school.edu",
                    "identity": {"displayName": "Bob"},
                    "attendanceIntervals": [
                        {"joinDateTime": "2025-01-10T09:20:00Z", "durationInSeconds": 600}
                    ],
                }
            ],
        },
    )
    source = GraphAttendanceSource(graph, "teacher@school.edu")

    intervals = await source.fetch_intervals("meeting-abc")

    assert len(intervals) == 3
    first = intervals[0]
    assert first["meeting_external_id"] == "meeting-abc"
    assert first["meeting_title"] == "Algorithms"
    assert first["meeting_start"] == datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)
    assert first["organizer_email"] == "teacher@school.edu"
    assert first["meeting_url"] == MEETING["joinWebUrl"]
    assert first["student_email"] == "Ada@School.edu"
    assert first["student_name"] == "Ada Lovelace"
    assert first["student_azure_ad_id"] == "aad-1"
    assert first["join_time"] == datetime(2025, 1, 10, 9, 5, 0, 123456, tzinfo=timezone.utc)
    assert first["duration_seconds"] == 1495
    assert first["source_ref"] == "report r1 / Ada@School.edu / interval 1"

    assert intervals[1]["source_ref"] == "report r1 / Ada@School.edu / interval 2"
    assert intervals[2]["leave_time"] is None
    assert intervals[2]["student_email"] == "bob@school.edu"


@pytest.mark.asyncio
async def test_fetch_intervals_uses_given_meeting_metadata():
    graph = FakeGraphClient()
    source = GraphAttendanceSource(graph, "teacher@school.edu")

    intervals = await source.fetch_intervals("meeting-abc", meeting={"id": "meeting-abc"})

    assert intervals == []
    assert [kind for kind, _, _ in graph.calls] == ["collection"]


@pytest.mark.asyncio
async def test_fetch_intervals_propagates_graph_errors():
    source = GraphAttendanceSource(FakeGraphClient(raise_error=True), "teacher@school.edu")

    with pytest.raises(GraphClientError):
        await source.fetch_intervals("meeting-abc")


@pytest.mark.asyncio
async def test_unparsable_timestamps_are_passed_through():
    reports_path = f"{_base()}/attendanceReports"
    graph = FakeGraphClient(
        collections={
            reports_path: [{"id": "r1"}],
            f"{reports_path}/r1/attendanceRecords": [
                {
                    "emailAddress": "ada@school.edu",
                    "attendanceIntervals": [{"joinDateTime": "yesterday"}],
                }
            ],
        },
    )
    source = GraphAttendanceSource(graph, "teacher@school.edu")

    intervals = await source.fetch_intervals("meeting-abc", meeting=MEETING)

    assert intervals[0]["join_time"] == "yesterday"


@pytest.mark.asyncio
async def test_find_meeting_by_join_url_escapes_quotes():
    graph = FakeGraphClient(
        collections={"/v1.0/users/teacher@school.edu/onlineMeetings": []}
    )
    source = GraphAttendanceSource(graph, "teacher@school.edu")

    meeting = await source.find_meeting_by_join_url("https://teams/join?x='1'")

    assert meeting is None
    _, _, params = graph.calls[0]
    assert params == {"$filter": "JoinWebUrl eq 'https://teams/join?x=''1'''"}


@pytest.mark.asyncio
async def test_list_online_events_filters_on_window():
    graph = FakeGraphClient(
        collections={"/v1.0/users/teacher@school.edu/calendar/events": [{"id": "e1"}]}
    )
    source = GraphAttendanceSource(graph, "teacher@school.edu")

    events = await source.list_online_events(
        datetime(2025, 1, 3, 9, 0, tzinfo=timezone.utc),
        datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc),
    )

    assert events == [{"id": "e1"}]
    _, _, params = graph.calls[0]
    assert params["$filter"] == (
        "isOnlineMeeting eq true"
        " and start/dateTime ge '2025-01-03T09:00:00Z'"
        " and end/dateTime le '2025-01-10T09:00:00Z'"
    )
