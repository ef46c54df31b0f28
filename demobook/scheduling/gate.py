"""What each booking group status lets students and TAs do.

Every screen asks this table instead of comparing statuses itself.
"""

HIDDEN = "hidden"
PUBLISHED = "published"
LOCKED = "locked"
INACTIVE = "inactive"

STATUSES = (HIDDEN, PUBLISHED, LOCKED, INACTIVE)

STUDENT_VIEW_GROUP = "student_view_group"
STUDENT_BOOK = "student_book"
STUDENT_CANCEL = "student_cancel"
STUDENT_VIEW_BOOKING = "student_view_booking"
TA_VIEW_GROUP = "ta_view_group"
TA_ADD_SLOT = "ta_add_slot"
TA_DELETE_SLOT = "ta_delete_slot"
TA_VIEW_BOOKINGS = "ta_view_bookings"

ACTIONS = (
    STUDENT_VIEW_GROUP,
    STUDENT_BOOK,
    STUDENT_CANCEL,
    STUDENT_VIEW_BOOKING,
    TA_VIEW_GROUP,
    TA_ADD_SLOT,
    TA_DELETE_SLOT,
    TA_VIEW_BOOKINGS,
)

_ALLOWED = {
    HIDDEN: frozenset({TA_VIEW_GROUP, TA_ADD_SLOT, TA_DELETE_SLOT}),
    PUBLISHED: frozenset({
        STUDENT_VIEW_GROUP,
        STUDENT_BOOK,
        STUDENT_CANCEL,
        STUDENT_VIEW_BOOKING,
        TA_VIEW_GROUP,
        TA_VIEW_BOOKINGS,
    }),
    LOCKED: frozenset({STUDENT_VIEW_BOOKING, TA_VIEW_GROUP, TA_VIEW_BOOKINGS}),
    INACTIVE: frozenset(),
}

# inactive is terminal; published -> hidden additionally needs an empty group
_TRANSITIONS = {
    HIDDEN: frozenset({PUBLISHED, INACTIVE}),
    PUBLISHED: frozenset({HIDDEN, LOCKED, INACTIVE}),
    LOCKED: frozenset({PUBLISHED, INACTIVE}),
    INACTIVE: frozenset(),
}


def _check_status(status: str) -> None:
    if status not in _ALLOWED:
        raise ValueError(f"Unknown booking group status: {status!r}")


def is_allowed(status: str, action: str) -> bool:
    _check_status(status)
    if action not in ACTIONS:
        raise ValueError(f"Unknown action: {action!r}")
    return action in _ALLOWED[status]


def allowed_actions(status: str) -> frozenset:
    _check_status(status)
    return _ALLOWED[status]


def statuses_allowing(action: str) -> list[str]:
    return [s for s in STATUSES if is_allowed(s, action)]


def can_transition(current: str, target: str, has_bookings: bool = False) -> bool:
    _check_status(current)
    _check_status(target)
    if current == target:
        return True
    if current == PUBLISHED and target == HIDDEN and has_bookings:
        return False
    return target in _TRANSITIONS[current]


def allowed_transitions(current: str, has_bookings: bool = False) -> list[str]:
    return [s for s in STATUSES if s != current and can_transition(current, s, has_bookings)]
