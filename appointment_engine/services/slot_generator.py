"""Turn weekly availability and holiday exceptions into candidate slots.

Everything here is pure: callers load the clinician's windows and holidays,
and this module only does calendar arithmetic, so it can be tested without
a database.
"""
from dataclasses import dataclass, field
from datetime import date, time
from typing import List, Optional, Sequence

from ..core.exceptions import ValidationError
from ..models.doctor import DayOfWeek

# Reason codes returned alongside an empty slot list
NOT_AVAILABLE = "NOT_AVAILABLE"
HOLIDAY = "HOLIDAY"

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class WeeklyWindow:
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_available: bool = True

    @classmethod
    def from_row(cls, row) -> "WeeklyWindow":
        return cls(
            day_of_week=DayOfWeek(row.day_of_week),
            start_time=row.start_time,
            end_time=row.end_time,
            is_available=bool(row.is_available),
        )


@dataclass(frozen=True)
class HolidayRule:
    date: date
    is_recurring: bool = False
    reason: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "HolidayRule":
        return cls(date=row.date, is_recurring=bool(row.is_recurring), reason=row.reason)

    def matches(self, target: date) -> bool:
        if self.is_recurring:
            return (self.date.month, self.date.day) == (target.month, target.day)
        return self.date == target


@dataclass(frozen=True)
class SlotPlan:
    """Result of slot generation for a single day."""
    date: date
    duration_minutes: int
    slots: List[time] = field(default_factory=list)
    reason: Optional[str] = None
    window: Optional[WeeklyWindow] = None
    holiday: Optional[HolidayRule] = None


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def find_window(target: date, windows: Sequence[WeeklyWindow]) -> Optional[WeeklyWindow]:
    """Return the first enabled window for the weekday of ``target``.

    Legacy data may hold more than one window per day; the first one in
    storage order wins.
    """
    day = DayOfWeek.from_date(target)
    for window in windows:
        if window.day_of_week == day and window.is_available:
            return window
    return None


def find_holiday(target: date, holidays: Sequence[HolidayRule]) -> Optional[HolidayRule]:
    for holiday in holidays:
        if holiday.matches(target):
            return holiday
    return None


def slice_window(window: WeeklyWindow, duration_minutes: int) -> List[time]:
    """Cut ``[start, end)`` into back-to-back intervals, dropping a partial tail."""
    start = to_minutes(window.start_time)
    end = to_minutes(window.end_time)
    starts = []
    current = start
    while current + duration_minutes <= end:
        starts.append(from_minutes(current))
        current += duration_minutes
    return starts


def generate_slots(
    target_date: date,
    windows: Sequence[WeeklyWindow],
    holidays: Sequence[HolidayRule],
    duration_minutes: int,
    today: Optional[date] = None,
) -> SlotPlan:
    """Produce the ordered candidate start times for ``target_date``.

    Raises ``ValidationError`` with code ``PAST_DATE`` when the date lies
    before ``today``. Slots earlier than the current time on today's date are
    kept.
    """
    if duration_minutes <= 0 or duration_minutes > MINUTES_PER_DAY:
        raise ValidationError(
            f"Slot duration must be between 1 and {MINUTES_PER_DAY} minutes",
            code="INVALID_DURATION",
        )

    today = today or date.today()
    if target_date < today:
        raise ValidationError("Date must not be in the past", code="PAST_DATE")

    window = find_window(target_date, windows)
    if window is None:
        return SlotPlan(date=target_date, duration_minutes=duration_minutes, reason=NOT_AVAILABLE)

    holiday = find_holiday(target_date, holidays)
    if holiday is not None:
        return SlotPlan(
            date=target_date,
            duration_minutes=duration_minutes,
            reason=HOLIDAY,
            window=window,
            holiday=holiday,
        )

    return SlotPlan(
        date=target_date,
        duration_minutes=duration_minutes,
        slots=slice_window(window, duration_minutes),
        window=window,
    )
