"""Interview slot selection for automatic scheduling."""

from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta


def candidate_slots(day: date, start_hour: int, end_hour: int, duration_minutes: int) -> list[time]:
    """Slot start times on ``day`` that finish by ``end_hour``."""
    slots = []
    cursor = datetime.combine(day, time(hour=start_hour))
    end = datetime.combine(day, time(hour=end_hour))
    step = timedelta(minutes=duration_minutes)
    while cursor + step <= end:
        slots.append(cursor.time())
        cursor += step
    return slots


def first_free_slot(
    booked: Iterable[tuple[date, time]],
    *,
    start_day: date,
    start_hour: int,
    end_hour: int,
    duration_minutes: int,
    daily_capacity: int,
    search_days: int,
) -> tuple[date, time] | None:
    """First business-day slot from ``start_day`` that is not booked.

    A day is full once it holds ``daily_capacity`` interviews even if some
    slot times are still open.
    """
    booked = list(booked)
    taken = set(booked)
    per_day = Counter(day for day, _ in booked)

    for offset in range(search_days):
        day = start_day + timedelta(days=offset)
        if day.weekday() >= 5:
            continue
        if per_day[day] >= daily_capacity:
            continue
        for slot in candidate_slots(day, start_hour, end_hour, duration_minutes):
            if (day, slot) not in taken:
                return day, slot
    return None
