"""Free-slot computation over weekly availability rules and existing bookings.

Rules are recurring windows (``day_of_week`` with ``HH:MM`` bounds, read in the
rule's own timezone). A booking occupies the half-open interval
``[scheduled_at, scheduled_at + duration)``. Every datetime accepted or
returned here is naive UTC, the form bookings are stored in.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo

from backend.core.clock import to_naive_utc, utc_now
from backend.models.booking import INACTIVE_BOOKING_STATUSES

UTC_TIMEZONE_NAMES = {'UTC', 'Etc/UTC', 'GMT', 'Etc/GMT'}


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime


def parse_clock(value: str) -> time:
    hours, minutes = value.split(':')
    return time(int(hours), int(minutes))


def day_of_week(day: date) -> int:
    """Weekday number with Sunday as 0 and Saturday as 6."""
    return (day.weekday() + 1) % 7


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name in UTC_TIMEZONE_NAMES:
        return timezone.utc
    return ZoneInfo(name)


def rule_window(rule, day: date) -> tuple[datetime, datetime]:
    rule_timezone = resolve_timezone(rule.timezone)
    window_start = datetime.combine(day, parse_clock(rule.start_time), tzinfo=rule_timezone)
    window_end = datetime.combine(day, parse_clock(rule.end_time), tzinfo=rule_timezone)
    return to_naive_utc(window_start), to_naive_utc(window_end)


def active_rules_for_day(rules: Iterable, day: date) -> list:
    weekday = day_of_week(day)
    return [rule for rule in rules if rule.is_active and rule.day_of_week == weekday]


def booking_interval(booking) -> tuple[datetime, datetime]:
    return booking.scheduled_at, booking.scheduled_at + timedelta(minutes=booking.duration)


def intervals_overlap(
    first_start: datetime,
    first_end: datetime,
    second_start: datetime,
    second_end: datetime,
) -> bool:
    return first_start < second_end and second_start < first_end


def blocking_bookings(bookings: Iterable) -> list:
    return [booking for booking in bookings if booking.status not in INACTIVE_BOOKING_STATUSES]


def iterate_candidate_slots(rule, day: date, duration: int) -> Iterator[TimeSlot]:
    window_start, window_end = rule_window(rule, day)
    step = timedelta(minutes=duration)
    current = window_start

    while current + step <= window_end:
        yield TimeSlot(start=current, end=current + step)
        current += step


def get_available_time_slots(
    day: date,
    duration: int,
    rules: Iterable,
    bookings: Iterable,
    now: datetime | None = None,
) -> list[TimeSlot]:
    """Open slots of ``duration`` minutes on ``day``, ordered by start.

    Candidates from every matching rule are unioned. A candidate is dropped when
    it starts at or before ``now`` or overlaps a booking that still holds its
    time (anything but CANCELLED or REFUNDED).
    """
    if duration <= 0:
        raise ValueError('duration must be positive')

    now = now or utc_now()
    occupied = [booking_interval(booking) for booking in blocking_bookings(bookings)]
    slots_by_start: dict[datetime, TimeSlot] = {}

    for rule in active_rules_for_day(rules, day):
        for slot in iterate_candidate_slots(rule, day, duration):
            if slot.start <= now:
                continue
            if any(intervals_overlap(slot.start, slot.end, start, end) for start, end in occupied):
                continue
            slots_by_start.setdefault(slot.start, slot)

    return [slots_by_start[start] for start in sorted(slots_by_start)]


def get_available_dates(
    start_date: date,
    end_date: date,
    rules: Iterable,
    bookings: Iterable,
    duration: int,
    now: datetime | None = None,
) -> list[date]:
    """Dates in ``[start_date, end_date]`` with at least one open slot.

    The caller bounds the range; nothing here caps it.
    """
    now = now or utc_now()
    rules = list(rules)
    bookings = list(bookings)
    available_dates: list[date] = []
    current = start_date

    while current <= end_date:
        if get_available_time_slots(current, duration, rules, bookings, now):
            available_dates.append(current)
        current += timedelta(days=1)

    return available_dates


def find_covering_rule(scheduled_at: datetime, duration: int, rules: Iterable):
    end = scheduled_at + timedelta(minutes=duration)
    rules = list(rules)

    # Rules outside UTC can place a local day's window on the neighbouring UTC date.
    for offset in (0, -1, 1):
        day = scheduled_at.date() + timedelta(days=offset)
        for rule in active_rules_for_day(rules, day):
            window_start, window_end = rule_window(rule, day)
            if window_start <= scheduled_at and end <= window_end:
                return rule

    return None


def find_conflicting_booking(
    scheduled_at: datetime,
    duration: int,
    bookings: Iterable,
    exclude_booking_id: int | None = None,
):
    end = scheduled_at + timedelta(minutes=duration)

    for booking in blocking_bookings(bookings):
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        booking_start, booking_end = booking_interval(booking)
        if intervals_overlap(scheduled_at, end, booking_start, booking_end):
            return booking

    return None
