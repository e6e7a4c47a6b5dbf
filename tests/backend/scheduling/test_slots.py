from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from backend.scheduling.slots import (
    TimeSlot,
    day_of_week,
    find_conflicting_booking,
    find_covering_rule,
    get_available_dates,
    get_available_time_slots,
    intervals_overlap,
    rule_window,
)

NOW = datetime(2026, 3, 2, 8, 0)
MONDAY = date(2026, 3, 9)
TUESDAY = date(2026, 3, 10)


def _rule(day_of_week: int, start_time: str, end_time: str, timezone: str = 'UTC', is_active: bool = True):
    return SimpleNamespace(
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        timezone=timezone,
        is_active=is_active,
    )


def _booking(scheduled_at: datetime, duration: int = 60, status: str = 'CONFIRMED', booking_id: int = 1):
    return SimpleNamespace(id=booking_id, scheduled_at=scheduled_at, duration=duration, status=status)


def test_day_of_week_counts_sunday_as_zero() -> None:
    assert day_of_week(date(2026, 3, 8)) == 0
    assert day_of_week(MONDAY) == 1
    assert day_of_week(date(2026, 3, 14)) == 6


def test_existing_booking_removes_only_its_slot() -> None:
    rules = [_rule(1, '09:00', '12:00')]
    bookings = [_booking(datetime(2026, 3, 9, 10, 0))]

    slots = get_available_time_slots(MONDAY, 60, rules, bookings, NOW)

    assert slots == [
        TimeSlot(datetime(2026, 3, 9, 9, 0), datetime(2026, 3, 9, 10, 0)),
        TimeSlot(datetime(2026, 3, 9, 11, 0), datetime(2026, 3, 9, 12, 0)),
    ]


def test_slot_step_equals_duration_and_fits_window() -> None:
    rules = [_rule(1, '09:00', '11:00')]

    slots = get_available_time_slots(MONDAY, 90, rules, [], NOW)

    assert slots == [TimeSlot(datetime(2026, 3, 9, 9, 0), datetime(2026, 3, 9, 10, 30))]


def test_every_slot_spans_duration_inside_a_rule_window() -> None:
    rules = [_rule(1, '08:00', '10:00'), _rule(1, '13:30', '16:00')]

    slots = get_available_time_slots(MONDAY, 30, rules, [], NOW)

    assert len(slots) == 9
    for slot in slots:
        assert slot.end - slot.start == timedelta(minutes=30)
        assert any(
            window_start <= slot.start and slot.end <= window_end
            for window_start, window_end in (rule_window(rule, MONDAY) for rule in rules)
        )


def test_multiple_rules_on_same_day_are_unioned_without_duplicates() -> None:
    rules = [_rule(1, '09:00', '11:00'), _rule(1, '09:00', '10:00'), _rule(1, '14:00', '15:00')]

    slots = get_available_time_slots(MONDAY, 60, rules, [], NOW)

    assert [slot.start.hour for slot in slots] == [9, 10, 14]


def test_booking_ending_at_slot_start_does_not_block_it() -> None:
    rules = [_rule(1, '09:00', '11:00')]
    bookings = [_booking(datetime(2026, 3, 9, 8, 0))]

    slots = get_available_time_slots(MONDAY, 60, rules, bookings, NOW)

    assert slots[0].start == datetime(2026, 3, 9, 9, 0)


def test_partial_overlap_blocks_slot() -> None:
    rules = [_rule(1, '09:00', '11:00')]
    bookings = [_booking(datetime(2026, 3, 9, 9, 30), duration=30)]

    slots = get_available_time_slots(MONDAY, 60, rules, bookings, NOW)

    assert [slot.start.hour for slot in slots] == [10]


@pytest.mark.parametrize('status', ['CANCELLED', 'REFUNDED'])
def test_cancelled_and_refunded_bookings_do_not_block(status: str) -> None:
    rules = [_rule(1, '09:00', '10:00')]
    bookings = [_booking(datetime(2026, 3, 9, 9, 0), status=status)]

    slots = get_available_time_slots(MONDAY, 60, rules, bookings, NOW)

    assert len(slots) == 1


def test_past_slots_are_rejected() -> None:
    rules = [_rule(1, '09:00', '12:00')]
    now = datetime(2026, 3, 9, 10, 0)

    slots = get_available_time_slots(MONDAY, 60, rules, [], now)

    assert [slot.start.hour for slot in slots] == [11]


def test_inactive_rules_and_other_weekdays_are_ignored() -> None:
    rules = [_rule(1, '09:00', '10:00', is_active=False), _rule(2, '09:00', '10:00')]

    assert get_available_time_slots(MONDAY, 60, rules, [], NOW) == []


def test_rule_times_are_read_in_rule_timezone() -> None:
    rules = [_rule(1, '09:00', '10:00', timezone='Asia/Tokyo')]

    slots = get_available_time_slots(MONDAY, 60, rules, [], NOW)

    assert slots == [TimeSlot(datetime(2026, 3, 9, 0, 0), datetime(2026, 3, 9, 1, 0))]


def test_non_positive_duration_is_rejected() -> None:
    with pytest.raises(ValueError):
        get_available_time_slots(MONDAY, 0, [], [], NOW)


def test_available_dates_include_only_days_with_open_slots() -> None:
    rules = [_rule(1, '09:00', '10:00'), _rule(2, '09:00', '10:00')]
    bookings = [_booking(datetime(2026, 3, 10, 9, 0))]

    available = get_available_dates(date(2026, 3, 8), date(2026, 3, 17), rules, bookings, 60, NOW)

    assert available == [date(2026, 3, 9), date(2026, 3, 16), date(2026, 3, 17)]


def test_available_dates_empty_when_end_before_start() -> None:
    rules = [_rule(1, '09:00', '10:00')]

    assert get_available_dates(TUESDAY, MONDAY, rules, [], 60, NOW) == []


def test_intervals_overlap_is_half_open() -> None:
    start = datetime(2026, 3, 9, 9, 0)
    end = datetime(2026, 3, 9, 10, 0)

    assert intervals_overlap(start, end, datetime(2026, 3, 9, 9, 59), datetime(2026, 3, 9, 11, 0))
    assert not intervals_overlap(start, end, end, datetime(2026, 3, 9, 11, 0))


def test_find_covering_rule_requires_whole_booking_inside_window() -> None:
    rule = _rule(1, '09:00', '12:00')

    assert find_covering_rule(datetime(2026, 3, 9, 11, 0), 60, [rule]) is rule
    assert find_covering_rule(datetime(2026, 3, 9, 11, 30), 60, [rule]) is None
    assert find_covering_rule(datetime(2026, 3, 10, 9, 0), 60, [rule]) is None


def test_find_covering_rule_handles_rule_on_previous_utc_day() -> None:
    rule = _rule(2, '08:00', '10:00', timezone='Asia/Tokyo')

    # Tuesday 08:00 in Tokyo is Monday 23:00 UTC.
    assert find_covering_rule(datetime(2026, 3, 9, 23, 0), 60, [rule]) is rule


def test_find_conflicting_booking_skips_excluded_booking() -> None:
    existing = _booking(datetime(2026, 3, 9, 9, 0), booking_id=7)

    assert find_conflicting_booking(datetime(2026, 3, 9, 9, 30), 60, [existing]) is existing
    assert find_conflicting_booking(datetime(2026, 3, 9, 9, 30), 60, [existing], exclude_booking_id=7) is None
