from dataclasses import dataclass
from typing import Dict, Iterable, List


def has_availability(capacity: int, booking_count: int) -> bool:
    return booking_count < capacity


def available_slots(slots: Iterable, counts: Dict[int, int]) -> List:
    """Slots that still show an open seat.

    ``counts`` comes from a single batched count query and may be stale by the
    time a student submits; the booking procedure has the final say.
    """
    return [s for s in slots if has_availability(s.capacity, counts.get(s.id, 0))]


def slot_minutes(slot) -> int:
    return int((slot.end_time - slot.start_time).total_seconds() // 60)


@dataclass
class RequirementProgress:
    total_minutes: int
    required_minutes: int
    slot_count: int

    @property
    def is_complete(self) -> bool:
        return self.total_minutes >= self.required_minutes

    @property
    def progress_percent(self) -> int:
        if self.required_minutes <= 0:
            return 100
        return min(100, round(self.total_minutes * 100 / self.required_minutes))

    @property
    def remaining_minutes(self) -> int:
        return max(0, self.required_minutes - self.total_minutes)


def aggregate_requirement(slots: Iterable, required_minutes: int) -> RequirementProgress:
    # Overlap is rejected when slots are created, so a plain sum is safe.
    slots = list(slots)
    total = sum(slot_minutes(s) for s in slots)
    return RequirementProgress(
        total_minutes=total,
        required_minutes=required_minutes or 0,
        slot_count=len(slots),
    )


@dataclass
class TAStat:
    ta: object
    progress: RequirementProgress

    @property
    def is_complete(self) -> bool:
        return self.progress.is_complete


def ta_stats(tas: Iterable, slots: Iterable, required_minutes: int) -> List[TAStat]:
    by_ta: Dict[int, list] = {}
    for slot in slots:
        if slot.ta_id is not None:
            by_ta.setdefault(slot.ta_id, []).append(slot)
    return [TAStat(ta, aggregate_requirement(by_ta.get(ta.id, []), required_minutes)) for ta in tas]


def filter_ta_stats(stats: Iterable[TAStat], which: str = "all") -> List[TAStat]:
    if which == "complete":
        return [s for s in stats if s.is_complete]
    if which == "incomplete":
        return [s for s in stats if not s.is_complete]
    return list(stats)


def capacity_summary(slots: Iterable, counts: Dict[int, int]) -> dict:
    slots = list(slots)
    total_capacity = sum(s.capacity for s in slots)
    total_booked = sum(counts.get(s.id, 0) for s in slots)
    return {
        "total_slots": len(slots),
        "slots_with_bookings": sum(1 for s in slots if counts.get(s.id, 0) > 0),
        "total_booked": total_booked,
        "total_capacity": total_capacity,
        "filled_percent": round(total_booked * 100 / total_capacity) if total_capacity else 0,
    }
