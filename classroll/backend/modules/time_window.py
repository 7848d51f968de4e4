# classroll/backend/modules/time_window.py

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import List, Tuple

from ..models.db_models import SessionWindows
from ..services.errors import ValidationError

TIME_OF_DAY_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

# Check-in and check-out windows are both anchored on the class END.
CHECK_IN_OPENS_BEFORE_END = timedelta(minutes=15)
CHECK_IN_CLOSES_AFTER_END = timedelta(minutes=5)
CHECK_OUT_OPENS_BEFORE_END = timedelta(minutes=15)
CHECK_OUT_CLOSES_AFTER_END = timedelta(minutes=15)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 240


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parses an "HH:MM" string into (hours, minutes)."""
    if not isinstance(value, str) or not TIME_OF_DAY_PATTERN.match(value):
        raise ValidationError(f"Invalid time '{value}'. Must be in HH:MM (24h) format.")
    hours, minutes = value.split(":")
    return int(hours), int(minutes)


def combine(day: date, time_of_day: str, tz: tzinfo = timezone.utc) -> datetime:
    """Combines a calendar date and an "HH:MM" string into an aware datetime."""
    hours, minutes = parse_time_of_day(time_of_day)
    return datetime.combine(day, time(hours, minutes), tzinfo=tz)


def calculate_windows(day: date, start_time: str, end_time: str, tz: tzinfo = timezone.utc) -> SessionWindows:
    """
    Derives the class and attendance-window instants for one session.

    Args:
        day: The calendar date of the class.
        start_time: Start time in "HH:MM" format.
        end_time: End time in "HH:MM" format.
        tz: The timezone the date and times are expressed in.

    Returns:
        SessionWindows with class_start/class_end and the check-in and
        check-out windows. Deterministic: no clock is read.
    """
    class_start = combine(day, start_time, tz)
    class_end = combine(day, end_time, tz)
    return SessionWindows(
        class_start=class_start,
        class_end=class_end,
        check_in_start=class_end - CHECK_IN_OPENS_BEFORE_END,
        check_in_end=class_end + CHECK_IN_CLOSES_AFTER_END,
        check_out_start=class_end - CHECK_OUT_OPENS_BEFORE_END,
        check_out_end=class_end + CHECK_OUT_CLOSES_AFTER_END,
    )


def duration_minutes(start_time: str, end_time: str) -> int:
    """End minus start in minutes of the day. Negative if the times are misordered."""
    start_hours, start_minutes = parse_time_of_day(start_time)
    end_hours, end_minutes = parse_time_of_day(end_time)
    return (end_hours * 60 + end_minutes) - (start_hours * 60 + start_minutes)


def validate_schedule_times(start_time: str, end_time: str) -> int:
    """Rejects misordered times and durations outside [15, 240] minutes."""
    duration = duration_minutes(start_time, end_time)
    if duration <= 0:
        raise ValidationError("end_time must be after start_time.")
    if duration < MIN_DURATION_MINUTES:
        raise ValidationError(f"Class duration must be at least {MIN_DURATION_MINUTES} minutes.")
    if duration > MAX_DURATION_MINUTES:
        raise ValidationError(f"Class duration cannot exceed {MAX_DURATION_MINUTES} minutes.")
    return duration


def minutes_until(instant: datetime, now: datetime) -> int:
    """Whole minutes from now until instant, truncated toward zero. Negative if past."""
    return int((instant - now).total_seconds() / 60)


def is_within_window(now: datetime, start: datetime, end: datetime) -> bool:
    return start <= now <= end


def generate_time_slots(start_time: str = "07:00", end_time: str = "17:00", interval_minutes: int = 30) -> List[str]:
    """Lists "HH:MM" slots from start_time to end_time inclusive."""
    if interval_minutes <= 0:
        raise ValidationError("interval_minutes must be positive.")
    start_hours, start_minutes = parse_time_of_day(start_time)
    end_hours, end_minutes = parse_time_of_day(end_time)

    slots = []
    current = start_hours * 60 + start_minutes
    last = end_hours * 60 + end_minutes
    while current <= last:
        slots.append(f"{current // 60:02d}:{current % 60:02d}")
        current += interval_minutes
    return slots
