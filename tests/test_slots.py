"""Slot generation, overlap detection and timezone normalisation."""
from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from demobook.scheduling.slots import (
    Interval,
    InvalidCapacity,
    InvalidDuration,
    InvalidTimeRange,
    OutOfRange,
    OverlapDetected,
    check_overlaps,
    existing_intervals_on_date,
    generate_intervals,
    overlaps,
    plan_slots,
    preview_slot_count,
)
from demobook.scheduling.timezones import (
    as_minutes,
    from_utc,
    minutes_to_str,
    resolve_timezone,
    to_local_iso,
    to_utc,
    utc_offset,
)


def make_group(**overrides):
    values = {
        "daily_start_time": time(9, 0),
        "daily_end_time": time(17, 0),
        "date_range_start": None,
        "date_range_end": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def stored_slot(start, end, capacity=1):
    return SimpleNamespace(start_time=start, end_time=end, capacity=capacity)


class TestGenerateIntervals:
    """Cutting a wall-clock range into back-to-back slots."""

    def test_range_is_tiled_exactly(self):
        """Intervals are contiguous, equal length, and cover the whole range."""
        intervals = generate_intervals(540, 600, 10, capacity=2)

        assert len(intervals) == 6
        assert intervals[0].start == 540
        assert intervals[-1].end == 600
        assert all(iv.duration == 10 for iv in intervals)
        assert all(iv.capacity == 2 for iv in intervals)
        for prev, nxt in zip(intervals, intervals[1:]):
            assert prev.end == nxt.start

    def test_single_interval_when_duration_matches_range(self):
        assert generate_intervals(600, 630, 30) == [Interval(600, 630, 1)]

    def test_non_divisible_range_reports_remainder(self):
        """A 65 minute range cannot hold 10 minute slots."""
        with pytest.raises(InvalidDuration) as exc_info:
            generate_intervals(540, 605, 10)

        err = exc_info.value
        assert err.total_minutes == 65
        assert err.remainder == 5
        assert "65 minutes is not divisible by 10 minute slots" in err.message
        assert "5 minutes left over" in err.message

    @pytest.mark.parametrize("start,end", [(600, 600), (600, 540)])
    def test_empty_or_reversed_range_rejected(self, start, end):
        with pytest.raises(InvalidTimeRange):
            generate_intervals(start, end, 10)

    def test_non_positive_duration_rejected(self):
        with pytest.raises(InvalidDuration):
            generate_intervals(540, 600, 0)

    def test_capacity_must_be_positive(self):
        with pytest.raises(InvalidCapacity):
            generate_intervals(540, 600, 10, capacity=0)

    def test_preview_counts(self):
        assert preview_slot_count(540, 600, 15) == (4, "4 slots, each 15 minutes long")
        count, text = preview_slot_count(540, 605, 10)
        assert count == 0
        assert "not divisible" in text


class TestOverlap:
    """Half-open interval overlap."""

    def test_touching_intervals_do_not_overlap(self):
        assert not overlaps(Interval(540, 550), Interval(550, 560))
        assert not overlaps(Interval(550, 560), Interval(540, 550))

    def test_partial_overlap_is_symmetric(self):
        a, b = Interval(540, 560), Interval(550, 570)
        assert overlaps(a, b)
        assert overlaps(b, a)

    def test_containment_overlaps(self):
        assert Interval(540, 600).overlaps(Interval(550, 560))

    def test_overlap_message_names_both_ranges(self):
        candidates = generate_intervals(540, 600, 10)
        with pytest.raises(OverlapDetected) as exc_info:
            check_overlaps(candidates, [Interval(550, 560)])

        err = exc_info.value
        assert err.candidate_start == "09:10"
        assert err.existing_range == "09:10 - 09:20"
        assert err.message == (
            "A slot starting at 09:10 would overlap with your existing slot "
            "(09:10 - 09:20). Please choose a different time range."
        )

    def test_no_overlap_passes(self):
        check_overlaps(generate_intervals(540, 600, 10), [Interval(600, 660)])


class TestTimezones:
    """Wall-clock to instant conversion uses the zone's rules on that date."""

    def test_winter_offset(self):
        assert to_local_iso("2024-03-01", "09:00", "America/New_York") == "2024-03-01T09:00:00-05:00"

    def test_summer_offset(self):
        assert to_local_iso("2024-07-01", "09:00", "America/New_York") == "2024-07-01T09:00:00-04:00"

    def test_utc_roundtrip(self):
        local = datetime.fromisoformat(to_local_iso("2024-03-01", "09:00", "America/New_York"))
        stored = to_utc(local)
        assert stored == datetime(2024, 3, 1, 14, 0)
        assert stored.tzinfo is None
        assert from_utc(stored, "America/New_York").strftime("%H:%M") == "09:00"

    def test_unknown_zone_falls_back_to_utc(self):
        assert resolve_timezone("Not/AZone").zone == "UTC"

    def test_offset_string(self):
        assert utc_offset("Asia/Kolkata", datetime(2024, 1, 1)) == "+05:30"
        assert utc_offset("UTC", datetime(2024, 1, 1)) == "+00:00"

    def test_minute_helpers(self):
        assert as_minutes("09:30") == 570
        assert as_minutes("09:30:00") == 570
        assert as_minutes(time(17, 0)) == 1020
        assert minutes_to_str(570) == "09:30"


class TestExistingIntervals:
    """Stored UTC slots seen as wall-clock minutes on one local day."""

    def test_slots_on_other_days_are_ignored(self):
        tz = "America/New_York"
        slots = [
            stored_slot(datetime(2024, 3, 1, 14, 10), datetime(2024, 3, 1, 14, 20)),
            stored_slot(datetime(2024, 3, 2, 14, 10), datetime(2024, 3, 2, 14, 20)),
        ]
        assert existing_intervals_on_date(slots, date(2024, 3, 1), tz) == [Interval(550, 560)]

    def test_slot_running_past_midnight_counts_on_both_days(self):
        """23:30-00:30 New York is 04:30-05:30 UTC on March 1st."""
        slots = [stored_slot(datetime(2024, 3, 1, 4, 30), datetime(2024, 3, 1, 5, 30))]

        assert existing_intervals_on_date(slots, date(2024, 2, 29), "America/New_York") == [Interval(1410, 1470)]
        assert existing_intervals_on_date(slots, date(2024, 3, 1), "America/New_York") == [Interval(-30, 30)]

    def test_slot_ending_at_midnight_does_not_spill_over(self):
        slots = [stored_slot(datetime(2024, 3, 1, 4, 30), datetime(2024, 3, 1, 5, 0))]
        assert existing_intervals_on_date(slots, date(2024, 3, 1), "America/New_York") == []

    def test_label_wraps_around_midnight(self):
        assert Interval(-30, 30).label() == "23:30 - 00:30"


class TestPlanSlots:
    """Full validation of a TA's slot request."""

    def test_valid_request_builds_localised_slots(self):
        plan = plan_slots(make_group(), "2024-03-01", "09:00", "10:00", 10, 2, tz_name="America/New_York")

        assert plan.ok
        assert plan.message == ""
        assert len(plan.slots) == 6
        first = plan.slots[0]
        assert first.start_time.isoformat() == "2024-03-01T09:00:00-05:00"
        assert first.duration_minutes == 10
        assert first.capacity == 2
        assert to_utc(plan.slots[-1].end_time) == datetime(2024, 3, 1, 15, 0)

    def test_overlap_with_existing_slot_rejects_whole_batch(self):
        """09:10-09:20 New York is 14:10-14:20 UTC in March."""
        existing = [stored_slot(datetime(2024, 3, 1, 14, 10), datetime(2024, 3, 1, 14, 20))]

        plan = plan_slots(
            make_group(), "2024-03-01", "09:00", "10:00", 10, 1,
            existing_slots=existing, tz_name="America/New_York",
        )

        assert not plan.ok
        assert plan.slots == []
        assert isinstance(plan.error, OverlapDetected)
        assert "A slot starting at 09:10 would overlap with your existing slot (09:10 - 09:20)" in plan.message

    def test_adjacent_existing_slot_is_fine(self):
        existing = [stored_slot(datetime(2024, 3, 1, 15, 0), datetime(2024, 3, 1, 15, 30))]
        plan = plan_slots(
            make_group(), "2024-03-01", "09:00", "10:00", 10, 1,
            existing_slots=existing, tz_name="America/New_York",
        )
        assert plan.ok

    def test_existing_slot_on_another_day_is_ignored(self):
        existing = [stored_slot(datetime(2024, 3, 2, 9, 0), datetime(2024, 3, 2, 10, 0))]
        plan = plan_slots(make_group(), "2024-03-01", "09:00", "10:00", 10, 1, existing_slots=existing, tz_name="UTC")
        assert plan.ok

    def test_overlap_with_slot_from_the_previous_evening(self):
        existing = [stored_slot(datetime(2024, 3, 1, 4, 30), datetime(2024, 3, 1, 5, 30))]
        group = make_group(daily_start_time=None, daily_end_time=None)

        plan = plan_slots(
            group, "2024-03-01", "00:00", "00:30", 30, 1,
            existing_slots=existing, tz_name="America/New_York",
        )

        assert isinstance(plan.error, OverlapDetected)
        assert plan.error.candidate_start == "00:00"
        assert plan.error.existing_range == "23:30 - 00:30"
        assert plan.slots == []

    def test_outside_daily_hours(self):
        plan = plan_slots(make_group(), "2024-03-01", "08:00", "09:00", 10, 1, tz_name="UTC")
        assert isinstance(plan.error, OutOfRange)
        assert "between 09:00 and 17:00" in plan.message

    def test_outside_date_range(self):
        group = make_group(date_range_start=date(2024, 3, 5), date_range_end=date(2024, 3, 10))

        before = plan_slots(group, "2024-03-01", "09:00", "10:00", 10, 1, tz_name="UTC")
        after = plan_slots(group, "2024-03-11", "09:00", "10:00", 10, 1, tz_name="UTC")

        assert isinstance(before.error, OutOfRange)
        assert isinstance(after.error, OutOfRange)
        assert plan_slots(group, "2024-03-05", "09:00", "10:00", 10, 1, tz_name="UTC").ok

    def test_non_divisible_duration(self):
        plan = plan_slots(make_group(), "2024-03-01", "09:00", "10:05", 10, 1, tz_name="UTC")
        assert isinstance(plan.error, InvalidDuration)
        assert plan.error.remainder == 5

    def test_end_before_start(self):
        plan = plan_slots(make_group(), "2024-03-01", "10:00", "09:00", 10, 1, tz_name="UTC")
        assert isinstance(plan.error, InvalidTimeRange)

    def test_garbage_input(self):
        plan = plan_slots(make_group(), "not-a-date", "09:00", "10:00", 10, 1)
        assert isinstance(plan.error, InvalidTimeRange)

    def test_bad_capacity(self):
        plan = plan_slots(make_group(), "2024-03-01", "09:00", "10:00", 10, 0, tz_name="UTC")
        assert isinstance(plan.error, InvalidCapacity)


class TestWorkedExamples:
    """Small end-to-end cases a TA would actually enter."""

    def test_two_hour_window_in_ten_minute_slots(self):
        intervals = generate_intervals(as_minutes("09:00"), as_minutes("11:00"), 10)

        assert len(intervals) == 12
        assert intervals[0].label() == "09:00 - 09:10"
        assert intervals[-1].label() == "10:50 - 11:00"

    def test_interval_overlaps_itself(self):
        iv = Interval(600, 610)
        assert overlaps(iv, iv)

    def test_shifted_interval_overlaps_but_adjacent_does_not(self):
        existing = [Interval(600, 610)]
        with pytest.raises(OverlapDetected):
            check_overlaps([Interval(605, 615)], existing)
        check_overlaps([Interval(610, 620)], existing)

    def test_half_hour_in_quarter_hour_slots_of_two(self):
        plan = plan_slots(make_group(), "2024-03-01", "09:00", "09:30", 15, 2, tz_name="UTC")

        assert plan.ok
        assert [(s.start_time.strftime("%H:%M"), s.end_time.strftime("%H:%M")) for s in plan.slots] == [
            ("09:00", "09:15"),
            ("09:15", "09:30"),
        ]
        assert all(s.capacity == 2 for s in plan.slots)

    def test_same_request_against_existing_slot(self):
        existing = [stored_slot(datetime(2024, 3, 1, 9, 10), datetime(2024, 3, 1, 9, 20))]

        plan = plan_slots(
            make_group(), "2024-03-01", "09:00", "09:30", 15, 2,
            existing_slots=existing, tz_name="UTC",
        )

        assert isinstance(plan.error, OverlapDetected)
        assert plan.error.candidate_start == "09:00"
        assert plan.slots == []
