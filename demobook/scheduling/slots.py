"""Bulk slot generation for TAs.

A TA picks a date, a wall-clock range, a slot length and a capacity. The range
is cut into back-to-back intervals, checked against the booking group's daily
window and date range, then checked for overlap against the TA's slots already
on that date. Everything is validated before anything is written, so a batch
is either created whole or not at all.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Iterable, List, Optional

from .timezones import (
    as_minutes,
    from_utc,
    minutes_to_str,
    parse_date,
    parse_time,
    minutes_of_day,
    resolve_timezone,
    to_local_iso,
)


MINUTES_PER_DAY = 24 * 60


class SlotValidationError(ValueError):
    code = "INVALID"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTimeRange(SlotValidationError):
    code = "INVALID_TIME_RANGE"


class InvalidDuration(SlotValidationError):
    code = "INVALID_DURATION"

    def __init__(self, message: str, total_minutes: int = 0, remainder: int = 0):
        super().__init__(message)
        self.total_minutes = total_minutes
        self.remainder = remainder


class InvalidCapacity(SlotValidationError):
    code = "INVALID_CAPACITY"


class OutOfRange(SlotValidationError):
    code = "OUT_OF_RANGE"


class OverlapDetected(SlotValidationError):
    code = "OVERLAP_DETECTED"

    def __init__(self, message: str, candidate_start: str, existing_range: str):
        super().__init__(message)
        self.candidate_start = candidate_start
        self.existing_range = existing_range


@dataclass(frozen=True)
class Interval:
    start: int  # minutes since midnight
    end: int
    capacity: int = 1

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self, other)

    def label(self) -> str:
        return f"{minutes_to_str(self.start % MINUTES_PER_DAY)} - {minutes_to_str(self.end % MINUTES_PER_DAY)}"


def overlaps(a: Interval, b: Interval) -> bool:
    # Half-open: [a.start, a.end) and [b.start, b.end)
    return a.start < b.end and b.start < a.end


def generate_intervals(start: int, end: int, duration: int, capacity: int = 1) -> List[Interval]:
    if end <= start:
        raise InvalidTimeRange("End time must be after start time.")
    if duration <= 0:
        raise InvalidDuration("Slot duration must be a positive number of minutes.")
    if capacity <= 0:
        raise InvalidCapacity("Capacity per slot must be at least 1.")

    total = end - start
    remainder = total % duration
    if remainder:
        raise InvalidDuration(
            f"{total} minutes is not divisible by {duration} minute slots "
            f"({remainder} minutes left over). Try a different slot duration.",
            total_minutes=total,
            remainder=remainder,
        )

    return [Interval(cursor, cursor + duration, capacity) for cursor in range(start, end, duration)]


def preview_slot_count(start: int, end: int, duration: int) -> tuple[int, str]:
    """Slot count for the form preview, with a line of text to show."""
    total = end - start
    if total <= 0 or duration <= 0:
        return 0, "Configure the form to see preview"
    if total % duration:
        return 0, f"Time range ({total} min) is not divisible by {duration} min slots"
    count = total // duration
    return count, f"{count} slots, each {duration} minutes long"


def check_within_hours(candidates: Iterable[Interval], day_start: int, day_end: int) -> None:
    for iv in candidates:
        if iv.start < day_start or iv.end > day_end:
            raise OutOfRange(
                f"Times must be between {minutes_to_str(day_start)} and {minutes_to_str(day_end)}."
            )


def check_within_dates(the_date: date, range_start: Optional[date], range_end: Optional[date]) -> None:
    if range_start and the_date < range_start:
        raise OutOfRange(f"Slots cannot be created before {range_start.isoformat()}.")
    if range_end and the_date > range_end:
        raise OutOfRange(f"Slots cannot be created after {range_end.isoformat()}.")


def find_overlap(candidates: Iterable[Interval], existing: Iterable[Interval]):
    existing = list(existing)
    for proposed in candidates:
        for current in existing:
            if overlaps(proposed, current):
                return proposed, current
    return None


def check_overlaps(candidates: Iterable[Interval], existing: Iterable[Interval]) -> None:
    hit = find_overlap(candidates, existing)
    if hit is None:
        return
    proposed, current = hit
    start_str = minutes_to_str(proposed.start)
    existing_str = current.label()
    raise OverlapDetected(
        f"A slot starting at {start_str} would overlap with your existing slot "
        f"({existing_str}). Please choose a different time range.",
        candidate_start=start_str,
        existing_range=existing_str,
    )


def _wall_minutes(local: datetime, the_date: date) -> int:
    # Wall-clock minutes from the_date 00:00; negative before it, past 1440 after it
    delta = local.replace(tzinfo=None) - datetime.combine(the_date, time())
    return int(delta.total_seconds() // 60)


def existing_intervals_on_date(slots, the_date: date, tz) -> List[Interval]:
    """Minute offsets of stored slots whose local span touches ``the_date``.

    A slot that starts the evening before and runs past midnight comes back
    with a negative start, so it still collides with early candidates.
    """
    if isinstance(tz, str):
        tz = resolve_timezone(tz)
    result = []
    for slot in slots:
        start = _wall_minutes(from_utc(slot.start_time, tz), the_date)
        end = _wall_minutes(from_utc(slot.end_time, tz), the_date)
        if end <= 0 or start >= MINUTES_PER_DAY:
            continue
        result.append(Interval(start, end, slot.capacity))
    return result


@dataclass
class PlannedSlot:
    start_time: datetime
    end_time: datetime
    capacity: int

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)


@dataclass
class SlotPlan:
    slots: List[PlannedSlot] = field(default_factory=list)
    error: Optional[SlotValidationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""


def plan_slots(
    group,
    date_str: str,
    start_str: str,
    end_str: str,
    duration: int,
    capacity: int,
    existing_slots=(),
    tz_name: str | None = None,
) -> SlotPlan:
    """Validate a TA's slot request and build the rows to insert.

    ``group`` needs ``daily_start_time``, ``daily_end_time``,
    ``date_range_start`` and ``date_range_end``. ``existing_slots`` are the
    TA's stored slots in the group (naive UTC ``start_time``/``end_time``).
    Expected failures come back on ``SlotPlan.error``.
    """
    try:
        the_date = parse_date(date_str)
        start = minutes_of_day(parse_time(start_str))
        end = minutes_of_day(parse_time(end_str))
    except ValueError:
        return SlotPlan(error=InvalidTimeRange("Please enter a valid date, start time and end time."))

    try:
        if end <= start:
            raise InvalidTimeRange("End time must be after start time.")
        check_within_dates(the_date, group.date_range_start, group.date_range_end)
        candidates = generate_intervals(start, end, duration, capacity)
        if group.daily_start_time is not None and group.daily_end_time is not None:
            check_within_hours(candidates, as_minutes(group.daily_start_time), as_minutes(group.daily_end_time))
        tz = resolve_timezone(tz_name)
        check_overlaps(candidates, existing_intervals_on_date(existing_slots, the_date, tz))
    except SlotValidationError as exc:
        return SlotPlan(error=exc)

    planned = []
    for iv in candidates:
        start_iso = to_local_iso(date_str, minutes_to_str(iv.start), tz.zone)
        end_iso = to_local_iso(date_str, minutes_to_str(iv.end), tz.zone)
        planned.append(PlannedSlot(
            start_time=datetime.fromisoformat(start_iso),
            end_time=datetime.fromisoformat(end_iso),
            capacity=iv.capacity,
        ))
    return SlotPlan(slots=planned)
