from .user import User  # noqa: F401
from .booking_group import BookingGroup  # noqa: F401
from .booking_slot import BookingSlot  # noqa: F401
from .booking import Booking  # noqa: F401
