from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List

from app.common.datetime_utils import ensure_utc
from app.services.attendance_stores import AttendanceStore

logger = logging.getLogger(__name__)

# Two join events closer than this are the same physical join reported
# with clock jitter.
DUPLICATE_WINDOW = timedelta(seconds=60)


def join_times_collide(
    first: datetime,
    second: datetime,
    window: timedelta = DUPLICATE_WINDOW,
) -> bool:
    """
    True when the two join times are strictly less than `window` apart.
    Order of the arguments does not matter.
    """
    return abs(ensure_utc(first) - ensure_utc(second)) < window


class DuplicateMatcher:
    """
    Decides whether a candidate attendance interval was already recorded
    for the same (meeting, student) pair.

    Each existing join time is compared with the candidate on its own; no
    chains of nearby joins are merged together.
    """

    def __init__(
        self,
        attendance_store: AttendanceStore,
        window: timedelta = DUPLICATE_WINDOW,
    ) -> None:
        self.attendance = attendance_store
        self.window = window

    def is_duplicate(self, candidate: datetime, existing: Iterable[datetime]) -> bool:
        return any(join_times_collide(candidate, other, self.window) for other in existing)

    async def existing_join_times(self, meeting_id: int, student_id: int) -> List[datetime]:
        """
        Join times already persisted for (meeting, student).

        Fail-open: a failing lookup is logged and reported as "nothing
        recorded yet" instead of raising.
        """
        try:
            records = await self.attendance.find_by_meeting_and_student(meeting_id, student_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Attendance lookup failed for meeting=%s student=%s; "
                "treating as no existing records: %s",
                meeting_id,
                student_id,
                exc,
            )
            return []
        return [record.join_time for record in records]
