"""Schedule hold-point notifications inside a project's working hours.

Working days use the ``0=Sunday .. 6=Saturday`` numbering stored on the
project (``"1,2,3,4,5"`` is Monday to Friday).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

DEFAULT_START = "07:00"
DEFAULT_END = "17:00"
DEFAULT_DAYS = "1,2,3,4,5"


@dataclass
class NotificationTime:
    scheduled_time: datetime
    adjusted_for_working_hours: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "scheduled_time": self.scheduled_time.isoformat(),
            "adjusted_for_working_hours": self.adjusted_for_working_hours,
            "reason": self.reason,
        }


def _parse_hhmm(value: str) -> tuple[int, int]:
    hour, minute = value.split(":")
    return int(hour), int(minute)


def parse_working_days(value: str) -> set[int]:
    return {int(d) for d in value.split(",") if d.strip() != ""}


def sunday_based_weekday(moment: datetime) -> int:
    # Python: Monday=0 .. Sunday=6
    return (moment.weekday() + 1) % 7


def _days_until_next_working_day(day: int, working_days: set[int]) -> int:
    for offset in range(1, 8):
        if (day + offset) % 7 in working_days:
            return offset
    return 1


def calculate_notification_time(
    requested: datetime,
    working_hours_start: str = DEFAULT_START,
    working_hours_end: str = DEFAULT_END,
    working_days: str = DEFAULT_DAYS,
) -> NotificationTime:
    """Move *requested* into the working window when it falls outside it."""
    start_hour, start_min = _parse_hhmm(working_hours_start)
    end_hour, end_min = _parse_hhmm(working_hours_end)
    days = parse_working_days(working_days)

    day = sunday_based_weekday(requested)
    minutes = requested.hour * 60 + requested.minute
    start_minutes = start_hour * 60 + start_min
    end_minutes = end_hour * 60 + end_min

    def at_start(moment: datetime) -> datetime:
        return moment.replace(hour=start_hour, minute=start_min, second=0, microsecond=0)

    if day not in days:
        scheduled = at_start(requested + timedelta(days=_days_until_next_working_day(day, days)))
        return NotificationTime(
            scheduled,
            True,
            f"Adjusted to next working day ({scheduled:%a %d %b %Y}) at {working_hours_start}",
        )

    if minutes < start_minutes:
        return NotificationTime(
            at_start(requested),
            True,
            f"Adjusted to start of working hours ({working_hours_start})",
        )

    if minutes >= end_minutes:
        scheduled = at_start(requested + timedelta(days=_days_until_next_working_day(day, days)))
        return NotificationTime(
            scheduled,
            True,
            "Scheduled after hours - moved to next working day "
            f"({scheduled:%a %d %b %Y}) at {working_hours_start}",
        )

    return NotificationTime(requested, False)


def is_within_working_hours(
    moment: datetime,
    working_hours_start: str = DEFAULT_START,
    working_hours_end: str = DEFAULT_END,
    working_days: str = DEFAULT_DAYS,
) -> bool:
    return not calculate_notification_time(
        moment, working_hours_start, working_hours_end, working_days
    ).adjusted_for_working_hours
