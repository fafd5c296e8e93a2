"""Slot calculator.

Free time for a local day is the template's working intervals minus the union
of blocked intervals and buffer-padded appointments. Candidate starts are then
stepped through each free interval at a fixed granularity.
"""

from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.models.blocked_interval import BlockedInterval
from booking_backend.models.appointment import Appointment
from booking_backend.scheduling.intervals import (
    Interval,
    local_date,
    pad,
    round_up_local,
    subtract,
    to_utc_naive,
    utc_now,
)
from booking_backend.scheduling.templates import get_template, work_intervals_for_day
from booking_backend.scheduling.validator import active_appointments_query


def compute_available_slots(
    db: Session,
    provider_id: int,
    range_start: datetime,
    range_end: datetime,
    duration_minutes: int,
    now: datetime | None = None,
    granularity_minutes: int | None = None,
) -> list[datetime]:
    range_start = to_utc_naive(range_start)
    range_end = to_utc_naive(range_end)
    now = to_utc_naive(now) if now is not None else utc_now()
    granularity = timedelta(minutes=granularity_minutes or config.SLOT_GRANULARITY_MINUTES)
    duration = timedelta(minutes=duration_minutes)

    if range_end <= range_start or duration_minutes <= 0:
        return []

    template = get_template(db, provider_id)
    earliest = max(range_start, now + timedelta(hours=template.min_notice_hours))
    latest = now + timedelta(days=template.advance_booking_days)

    first_day = local_date(range_start, template.timezone)
    last_day = local_date(range_end, template.timezone)

    # Over-fetch by a day on each side so local days at the range edges and
    # buffers that spill across midnight are both covered.
    fetch_start = range_start - timedelta(days=1)
    fetch_end = range_end + timedelta(days=1)

    blocked = [
        Interval(row.start_time, row.end_time)
        for row in db.query(BlockedInterval).filter(
            BlockedInterval.provider_id == provider_id,
            BlockedInterval.start_time < fetch_end,
            BlockedInterval.end_time > fetch_start,
        ).all()
    ]
    appointments = active_appointments_query(db, provider_id).filter(
        Appointment.start_time < fetch_end,
        Appointment.end_time > fetch_start,
    ).all()

    occupied = blocked + [
        pad(Interval(appointment.start_time, appointment.end_time), template.buffer_minutes)
        for appointment in appointments
    ]
    appointments_per_day = Counter(local_date(appointment.start_time, template.timezone) for appointment in appointments)

    slots: list[datetime] = []
    day = first_day
    while day <= last_day:
        if appointments_per_day[day] < template.max_daily_appointments:
            for work_interval in work_intervals_for_day(template, day):
                for free in subtract(work_interval, occupied):
                    candidate = round_up_local(free.start, int(granularity.total_seconds() // 60), template.timezone)
                    while candidate + duration <= free.end:
                        if earliest <= candidate <= latest and candidate < range_end:
                            slots.append(candidate)
                        candidate += granularity
        day += timedelta(days=1)

    return sorted(slots)
