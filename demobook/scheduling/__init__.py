from .availability import (  # noqa: F401
    RequirementProgress,
    aggregate_requirement,
    available_slots,
    capacity_summary,
    has_availability,
    ta_stats,
)
from .slots import (  # noqa: F401
    InvalidCapacity,
    InvalidDuration,
    InvalidTimeRange,
    Interval,
    OutOfRange,
    OverlapDetected,
    SlotPlan,
    SlotValidationError,
    generate_intervals,
    overlaps,
    plan_slots,
)
