import logging
from datetime import datetime

from flask import Blueprint, render_template, request, redirect, url_for, flash, abort
from flask_login import login_required, current_user

from demobook.models import Booking, BookingGroup, BookingSlot
from demobook.auth.routes import roles_required
from demobook.helpers import current_tz_name, group_by_local_date
from demobook.scheduling import gate
from demobook.scheduling.availability import available_slots
from demobook.store import BookingStore, StoreError


log = logging.getLogger(__name__)

student_bp = Blueprint("student", __name__, url_prefix="/student")


@student_bp.before_request
@login_required
def require_login():
    pass


@student_bp.route("/")
@roles_required("student")
def dashboard():
    groups = (
        BookingGroup.query.filter(BookingGroup.status.in_(gate.statuses_allowing(gate.STUDENT_VIEW_GROUP)))
        .order_by(BookingGroup.name.asc())
        .all()
    )
    bookings = (
        Booking.query.filter_by(student_id=current_user.id)
        .order_by(Booking.booked_at.desc())
        .all()
    )
    # Bookings in inactive groups are hidden from students
    bookings = [b for b in bookings if b.group.allows(gate.STUDENT_VIEW_BOOKING)]
    booked_group_ids = {b.booking_group_id for b in bookings}
    return render_template(
        "student/dashboard.html",
        groups=groups,
        bookings=bookings,
        booked_group_ids=booked_group_ids,
        tz=current_tz_name(),
    )


@student_bp.route("/book/<slug>")
@roles_required("student")
def book(slug):
    group = BookingGroup.query.filter_by(slug=slug).first_or_404()
    store = BookingStore()
    tz = current_tz_name()

    existing = store.booking_for_student(group.id, current_user.id)
    if existing and group.allows(gate.STUDENT_VIEW_BOOKING):
        return render_template(
            "student/booked.html",
            group=group,
            booking=existing,
            can_cancel=group.allows(gate.STUDENT_CANCEL),
            tz=tz,
        )
    if not group.allows(gate.STUDENT_VIEW_GROUP):
        flash("This booking group is not open for booking.", "error")
        return redirect(url_for("student.dashboard"))

    upcoming = (
        BookingSlot.query.filter(
            BookingSlot.booking_group_id == group.id,
            BookingSlot.start_time >= datetime.utcnow(),
        )
        .order_by(BookingSlot.start_time.asc())
        .all()
    )
    counts = store.count_bookings_for_slots([s.id for s in upcoming])
    open_slots = available_slots(upcoming, counts)

    selected = request.args.get("date")
    slots_by_date = group_by_local_date(open_slots, tz)
    if selected:
        shown = [(d, s) for d, s in slots_by_date if d.isoformat() == selected]
    else:
        shown = slots_by_date[:1]

    return render_template(
        "student/book.html",
        group=group,
        dates=[(d, len(s)) for d, s in slots_by_date],
        shown=shown,
        counts=counts,
        tz=tz,
    )


@student_bp.route("/book/<slug>", methods=["POST"])
@roles_required("student")
def book_slot(slug):
    group = BookingGroup.query.filter_by(slug=slug).first_or_404()
    slot_id = request.form.get("slot_id", type=int)
    if slot_id is None:
        return abort(400)

    try:
        result = BookingStore().create_booking_atomic(slot_id, group.id, current_user.id)
    except StoreError:
        log.exception("Booking failed for slot %s, group %s", slot_id, group.id)
        flash("An unexpected error occurred. Please try again.", "error")
        return redirect(url_for("student.book", slug=slug))

    if not result.success:
        flash(result.message, "error")
        if result.needs_refresh:
            # The page was stale; reload slots and counts
            return redirect(url_for("student.book", slug=slug))
        return redirect(url_for("student.dashboard"))

    flash("Booking confirmed! Your demo slot has been reserved.", "success")
    return redirect(url_for("student.dashboard"))


@student_bp.route("/bookings/<int:booking_id>/cancel", methods=["POST"])
@roles_required("student")
def cancel(booking_id: int):
    try:
        result = BookingStore().cancel_booking_atomic(booking_id, current_user.id)
    except StoreError:
        log.exception("Cancellation failed for booking %s", booking_id)
        flash("An unexpected error occurred. Please refresh and check your bookings.", "error")
        return redirect(url_for("student.dashboard"))

    flash(result.message, "success" if result.success else "error")
    return redirect(url_for("student.dashboard"))
