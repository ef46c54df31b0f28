"""Persistence for slots and bookings.

``create_booking_atomic`` and ``cancel_booking_atomic`` are the only places
that enforce one-booking-per-group and slot capacity. Each runs in a single
transaction with the slot (or booking) row locked, and answers with a
``BookingResult`` instead of raising for expected rejections. Database
failures surface as ``StoreError`` carrying the ids involved, so the caller can
re-query what actually happened.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from demobook import db
from demobook.models import Booking, BookingGroup, BookingSlot
from demobook.scheduling import gate
from demobook.scheduling.availability import has_availability
from demobook.scheduling.timezones import to_utc


log = logging.getLogger(__name__)

ALREADY_BOOKED = "ALREADY_BOOKED"
SLOT_FULL = "SLOT_FULL"
SLOT_NOT_FOUND = "SLOT_NOT_FOUND"
GROUP_NOT_OPEN = "GROUP_NOT_OPEN"
NOT_FOUND = "NOT_FOUND"


class StoreError(Exception):
    def __init__(self, message: str, slot_id: Optional[int] = None, group_id: Optional[int] = None):
        super().__init__(message)
        self.slot_id = slot_id
        self.group_id = group_id


@dataclass
class BookingResult:
    success: bool
    message: str
    error: Optional[str] = None
    booking_id: Optional[int] = None

    @property
    def needs_refresh(self) -> bool:
        return self.error in (ALREADY_BOOKED, SLOT_FULL, SLOT_NOT_FOUND)


class BookingStore:
    def __init__(self, session=None):
        self.session = session or db.session

    # -- reads -------------------------------------------------------------

    def count_bookings_for_slots(self, slot_ids: Iterable[int]) -> Dict[int, int]:
        slot_ids = list(slot_ids)
        if not slot_ids:
            return {}
        rows = (
            self.session.query(Booking.booking_slot_id, func.count(Booking.id))
            .filter(Booking.booking_slot_id.in_(slot_ids))
            .group_by(Booking.booking_slot_id)
            .all()
        )
        counts = {slot_id: 0 for slot_id in slot_ids}
        counts.update({slot_id: n for slot_id, n in rows})
        return counts

    def slots_for_group(self, group_id: int, ta_id: Optional[int] = None):
        q = self.session.query(BookingSlot).filter(BookingSlot.booking_group_id == group_id)
        if ta_id is not None:
            q = q.filter(BookingSlot.ta_id == ta_id)
        return q.order_by(BookingSlot.start_time.asc()).all()

    def bookings_for_slots(self, slot_ids: Iterable[int]):
        slot_ids = list(slot_ids)
        if not slot_ids:
            return []
        return (
            self.session.query(Booking)
            .filter(Booking.booking_slot_id.in_(slot_ids))
            .order_by(Booking.booked_at.asc())
            .all()
        )

    def booking_for_student(self, group_id: int, student_id: int) -> Optional[Booking]:
        return (
            self.session.query(Booking)
            .filter_by(booking_group_id=group_id, student_id=student_id)
            .first()
        )

    def has_bookings(self, group_id: int) -> bool:
        return self.session.query(Booking.id).filter_by(booking_group_id=group_id).first() is not None

    # -- slot writes -------------------------------------------------------

    def insert_slots(self, group_id: int, ta_id: Optional[int], planned) -> list:
        rows = [
            BookingSlot(
                booking_group_id=group_id,
                ta_id=ta_id,
                start_time=to_utc(p.start_time),
                end_time=to_utc(p.end_time),
                capacity=p.capacity,
            )
            for p in planned
        ]
        try:
            self.session.add_all(rows)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.exception("Slot insert failed for group %s", group_id)
            raise StoreError("Failed to create slots", group_id=group_id) from exc
        log.info("Created %d slots in group %s for TA %s", len(rows), group_id, ta_id)
        return rows

    def delete_slot(self, slot_id: int, ta_id: Optional[int] = None) -> bool:
        """Delete a slot and its bookings. With ``ta_id``, only that TA's slot."""
        q = self.session.query(BookingSlot).filter(BookingSlot.id == slot_id)
        if ta_id is not None:
            q = q.filter(BookingSlot.ta_id == ta_id)
        slot = q.first()
        if slot is None:
            return False
        group_id = slot.booking_group_id
        try:
            self.session.delete(slot)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to delete slot", slot_id=slot_id, group_id=group_id) from exc
        log.info("Deleted slot %s from group %s", slot_id, group_id)
        return True

    def delete_booking(self, booking_id: int) -> bool:
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            return False
        slot_id, group_id = booking.booking_slot_id, booking.booking_group_id
        try:
            self.session.delete(booking)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to delete booking", slot_id=slot_id, group_id=group_id) from exc
        log.info("Deleted booking %s (slot %s, group %s)", booking_id, slot_id, group_id)
        return True

    def set_group_status(self, group: BookingGroup, status: str) -> None:
        previous = group.status
        group.status = status
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to update status", group_id=group.id) from exc
        log.info("Booking group %s status %s -> %s", group.id, previous, status)

    # -- atomic booking ----------------------------------------------------

    def _reject(self, error: str, message: str, **context) -> BookingResult:
        self.session.rollback()
        log.info("Booking rejected (%s): %s", error, context)
        return BookingResult(success=False, message=message, error=error)

    def create_booking_atomic(self, slot_id: int, group_id: int, student_id: int) -> BookingResult:
        try:
            slot = (
                self.session.query(BookingSlot)
                .filter_by(id=slot_id, booking_group_id=group_id)
                .with_for_update()
                .first()
            )
            if slot is None:
                return self._reject(SLOT_NOT_FOUND, "This slot no longer exists.", slot_id=slot_id)
            if not gate.is_allowed(slot.group.status, gate.STUDENT_BOOK):
                return self._reject(GROUP_NOT_OPEN, "This booking group is not open for booking.", group_id=group_id)

            if self.booking_for_student(group_id, student_id) is not None:
                return self._reject(
                    ALREADY_BOOKED,
                    "You already have a booking for this group.",
                    group_id=group_id,
                    student_id=student_id,
                )

            taken = self.session.query(func.count(Booking.id)).filter(Booking.booking_slot_id == slot_id).scalar()
            if not has_availability(slot.capacity, taken):
                return self._reject(SLOT_FULL, "This slot is now full. Please choose another one.", slot_id=slot_id)

            booking = Booking(booking_slot_id=slot_id, booking_group_id=group_id, student_id=student_id)
            self.session.add(booking)
            self.session.commit()
        except IntegrityError:
            # Lost the race against a concurrent booking by the same student
            return self._reject(ALREADY_BOOKED, "You already have a booking for this group.", group_id=group_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Booking could not be completed", slot_id=slot_id, group_id=group_id) from exc

        log.info("Student %s booked slot %s in group %s", student_id, slot_id, group_id)
        return BookingResult(success=True, message="Your demo slot has been reserved.", booking_id=booking.id)

    def cancel_booking_atomic(self, booking_id: int, student_id: int) -> BookingResult:
        try:
            booking = (
                self.session.query(Booking)
                .filter_by(id=booking_id, student_id=student_id)
                .with_for_update()
                .first()
            )
            if booking is None:
                return self._reject(NOT_FOUND, "Booking not found.", booking_id=booking_id)
            if not gate.is_allowed(booking.group.status, gate.STUDENT_CANCEL):
                return self._reject(
                    GROUP_NOT_OPEN,
                    "Bookings in this group can no longer be cancelled.",
                    booking_id=booking_id,
                )
            slot_id, group_id = booking.booking_slot_id, booking.booking_group_id
            self.session.delete(booking)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Cancellation could not be completed") from exc

        log.info("Student %s cancelled booking %s (slot %s, group %s)", student_id, booking_id, slot_id, group_id)
        return BookingResult(success=True, message="Your booking has been cancelled.")
