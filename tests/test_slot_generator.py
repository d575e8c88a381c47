from datetime import date, time, timedelta

import pytest

from appointment_engine.core.exceptions import ValidationError
from appointment_engine.models.doctor import DayOfWeek
from appointment_engine.services.slot_generator import (
    HOLIDAY, NOT_AVAILABLE, HolidayRule, WeeklyWindow, find_window, generate_slots, slice_window
)

# A fixed Monday keeps these tests independent of the calendar
MONDAY = date(2030, 1, 7)
TODAY = date(2030, 1, 1)

monday_morning = WeeklyWindow(DayOfWeek.MONDAY, time(9, 0), time(11, 0))


class TestSlotGeneration:

    def test_monday_window_yields_four_half_hour_slots(self):
        plan = generate_slots(MONDAY, [monday_morning], [], 30, today=TODAY)

        assert plan.slots == [time(9, 0), time(9, 30), time(10, 0), time(10, 30)]
        assert plan.reason is None
        assert plan.duration_minutes == 30

    def test_generation_is_deterministic(self):
        first = generate_slots(MONDAY, [monday_morning], [], 30, today=TODAY)
        second = generate_slots(MONDAY, [monday_morning], [], 30, today=TODAY)
        assert first == second

    def test_partial_tail_is_dropped(self):
        window = WeeklyWindow(DayOfWeek.MONDAY, time(9, 0), time(10, 45))
        plan = generate_slots(MONDAY, [window], [], 30, today=TODAY)

        assert plan.slots == [time(9, 0), time(9, 30), time(10, 0)]

    def test_duration_longer_than_window_yields_nothing(self):
        window = WeeklyWindow(DayOfWeek.MONDAY, time(9, 0), time(9, 20))
        assert slice_window(window, 30) == []

    def test_every_slot_fits_inside_window(self):
        window = WeeklyWindow(DayOfWeek.MONDAY, time(8, 15), time(17, 0))
        plan = generate_slots(MONDAY, [window], [], 45, today=TODAY)

        starts = [slot.hour * 60 + slot.minute for slot in plan.slots]
        assert starts == sorted(starts)
        assert all(start + 45 <= 17 * 60 for start in starts)
        assert starts[0] == 8 * 60 + 15

    def test_day_without_window_reports_not_available(self):
        tuesday = MONDAY + timedelta(days=1)
        plan = generate_slots(tuesday, [monday_morning], [], 30, today=TODAY)

        assert plan.slots == []
        assert plan.reason == NOT_AVAILABLE

    def test_disabled_window_is_ignored(self):
        disabled = WeeklyWindow(DayOfWeek.MONDAY, time(9, 0), time(11, 0), is_available=False)
        plan = generate_slots(MONDAY, [disabled], [], 30, today=TODAY)

        assert plan.reason == NOT_AVAILABLE

    def test_exact_holiday_suppresses_slots(self):
        holiday = HolidayRule(date=MONDAY, reason="Conference")
        plan = generate_slots(MONDAY, [monday_morning], [holiday], 30, today=TODAY)

        assert plan.slots == []
        assert plan.reason == HOLIDAY
        assert plan.holiday == holiday

    def test_recurring_holiday_matches_every_year(self):
        holiday = HolidayRule(date=date(2021, 1, 7), is_recurring=True)
        plan = generate_slots(MONDAY, [monday_morning], [holiday], 30, today=TODAY)

        assert plan.reason == HOLIDAY

    def test_non_recurring_holiday_from_other_year_is_ignored(self):
        holiday = HolidayRule(date=date(2021, 1, 7), is_recurring=False)
        plan = generate_slots(MONDAY, [monday_morning], [holiday], 30, today=TODAY)

        assert plan.reason is None
        assert len(plan.slots) == 4

    def test_past_date_fails_fast(self):
        with pytest.raises(ValidationError) as exc_info:
            generate_slots(TODAY - timedelta(days=1), [monday_morning], [], 30, today=TODAY)

        assert exc_info.value.code == "PAST_DATE"

    def test_today_keeps_slots_already_passed(self):
        plan = generate_slots(MONDAY, [monday_morning], [], 30, today=MONDAY)

        assert plan.slots[0] == time(9, 0)
        assert len(plan.slots) == 4

    @pytest.mark.parametrize("duration", [0, -15, 24 * 60 + 1])
    def test_invalid_duration_is_rejected(self, duration):
        with pytest.raises(ValidationError) as exc_info:
            generate_slots(MONDAY, [monday_morning], [], duration, today=TODAY)

        assert exc_info.value.code == "INVALID_DURATION"

    def test_first_matching_window_wins(self):
        later = WeeklyWindow(DayOfWeek.MONDAY, time(14, 0), time(15, 0))

        assert find_window(MONDAY, [monday_morning, later]) == monday_morning
        plan = generate_slots(MONDAY, [later, monday_morning], [], 30, today=TODAY)
        assert plan.slots == [time(14, 0), time(14, 30)]
