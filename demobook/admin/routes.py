import logging
from datetime import datetime

from flask import Blueprint, render_template, request, redirect, url_for, flash, abort
from flask_login import login_required
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from demobook import db
from demobook.models import Booking, BookingGroup, BookingSlot, User
from demobook.auth.routes import roles_required
from demobook.helpers import current_tz_name, local_date_key
from demobook.scheduling import gate
from demobook.scheduling.availability import filter_ta_stats, ta_stats
from demobook.scheduling.slots import (
    PlannedSlot,
    SlotValidationError,
    check_overlaps,
    existing_intervals_on_date,
    generate_intervals,
)
from demobook.scheduling.timezones import minutes_of_day, parse_date, parse_time, to_local_iso
from demobook.store import BookingStore, StoreError


log = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.before_request
@login_required
def require_login():
    pass


def _optional_date(value: str):
    value = (value or "").strip()
    return parse_date(value) if value else None


@admin_bp.route("/")
@roles_required("admin")
def dashboard():
    groups = BookingGroup.query.order_by(BookingGroup.created_at.desc()).all()
    recent = Booking.query.order_by(Booking.booked_at.desc()).limit(10).all()
    tas = User.query.filter_by(role="ta").order_by(User.name.asc()).all()
    students_count = User.query.filter_by(role="student").count()

    return render_template(
        "admin/dashboard.html",
        groups=groups,
        kpis={
            "groups": len(groups),
            "published": sum(1 for g in groups if g.status == gate.PUBLISHED),
            "hidden": sum(1 for g in groups if g.status == gate.HIDDEN),
            "tas": len(tas),
            "students": students_count,
            "bookings": Booking.query.count(),
        },
        recent=recent,
        tas=tas,
    )


@admin_bp.route("/groups", methods=["POST"])
@roles_required("admin")
def create_group():
    name = request.form.get("name", "").strip()
    slug = request.form.get("slug", "").strip() or BookingGroup.generate_slug(name)
    status = request.form.get("status", gate.HIDDEN)
    try:
        required = int(request.form.get("ta_required_minutes", "120") or 0)
        range_start = _optional_date(request.form.get("date_range_start"))
        range_end = _optional_date(request.form.get("date_range_end"))
        daily_start = parse_time(request.form.get("daily_start_time", "09:00") or "09:00")
        daily_end = parse_time(request.form.get("daily_end_time", "17:00") or "17:00")
    except ValueError:
        flash("Please check the numbers, dates and times you entered.", "error")
        return redirect(url_for("admin.dashboard"))

    if not name:
        flash("Please give the booking group a name.", "error")
    elif status not in (gate.HIDDEN, gate.PUBLISHED, gate.INACTIVE):
        flash("Invalid status.", "error")
    elif required < 0:
        flash("Required minutes cannot be negative.", "error")
    elif range_start and range_end and range_end < range_start:
        flash("The date range ends before it starts.", "error")
    elif minutes_of_day(daily_end) <= minutes_of_day(daily_start):
        flash("Daily end time must be after the daily start time.", "error")
    elif BookingGroup.query.filter_by(slug=slug).first():
        flash("A booking group with this slug already exists", "error")
    else:
        group = BookingGroup(
            name=name,
            description=request.form.get("description", "").strip() or None,
            slug=slug,
            status=status,
            ta_required_minutes=required,
            date_range_start=range_start,
            date_range_end=range_end,
            daily_start_time=daily_start,
            daily_end_time=daily_end,
        )
        db.session.add(group)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            flash("A booking group with this slug already exists", "error")
            return redirect(url_for("admin.dashboard"))
        log.info("Created booking group %s (%s)", group.slug, group.status)
        flash("Booking group created!", "success")
        return redirect(url_for("admin.manage_group", group_id=group.id))

    return redirect(url_for("admin.dashboard"))


@admin_bp.route("/groups/<int:group_id>")
@roles_required("admin")
def manage_group(group_id: int):
    group = db.session.get(BookingGroup, group_id)
    if not group:
        return abort(404)
    store = BookingStore()
    tz = current_tz_name()

    slots = store.slots_for_group(group.id)
    counts = store.count_bookings_for_slots([s.id for s in slots])
    bookings = (
        Booking.query.filter_by(booking_group_id=group.id)
        .order_by(Booking.booked_at.desc())
        .all()
    )
    tas = User.query.filter_by(role="ta").order_by(User.name.asc()).all()
    students = User.query.filter_by(role="student").order_by(User.name.asc()).all()

    # Slot filters
    slot_ta = request.args.get("slot_ta", "all")
    slot_date = request.args.get("slot_date", "all")
    filtered_slots = [
        s for s in slots
        if (slot_ta == "all" or str(s.ta_id) == slot_ta)
        and (slot_date == "all" or local_date_key(s.start_time, tz).isoformat() == slot_date)
    ]
    now = datetime.utcnow()
    upcoming = [s for s in filtered_slots if s.start_time > now]
    past = [s for s in filtered_slots if s.start_time <= now]
    slot_tas = sorted({s.ta for s in slots if s.ta is not None}, key=lambda u: u.name)
    slot_dates = sorted({local_date_key(s.start_time, tz) for s in slots})

    # Booking search
    q = request.args.get("q", "").strip().lower()
    filtered_bookings = [
        b for b in bookings
        if not q or q in b.student.name.lower() or q in b.student.email.lower()
    ]

    # TA requirement table
    ta_filter = request.args.get("ta_filter", "all")
    stats = ta_stats(tas, slots, group.ta_required_minutes)
    complete = sum(1 for s in stats if s.is_complete)

    # Student table
    student_filter = request.args.get("students", "all")
    booked_ids = {b.student_id for b in bookings}
    if student_filter == "booked":
        shown_students = [s for s in students if s.id in booked_ids]
    elif student_filter == "not_booked":
        shown_students = [s for s in students if s.id not in booked_ids]
    else:
        shown_students = students

    return render_template(
        "admin/group.html",
        group=group,
        counts=counts,
        slots=slots,
        upcoming=upcoming,
        past=past,
        slot_tas=slot_tas,
        slot_dates=slot_dates,
        slot_ta=slot_ta,
        slot_date=slot_date,
        bookings=filtered_bookings,
        total_bookings=len(bookings),
        q=q,
        stats=filter_ta_stats(stats, ta_filter),
        ta_filter=ta_filter,
        complete_tas=complete,
        incomplete_tas=len(stats) - complete,
        students=shown_students,
        student_filter=student_filter,
        booked_ids=booked_ids,
        students_not_booked=len(students) - len(booked_ids),
        transitions=gate.allowed_transitions(group.status, has_bookings=bool(bookings)),
        tas=tas,
        tz=tz,
    )


@admin_bp.route("/groups/<int:group_id>/status", methods=["POST"])
@roles_required("admin")
def set_status(group_id: int):
    group = db.session.get(BookingGroup, group_id)
    if not group:
        return abort(404)
    store = BookingStore()
    new_status = request.form.get("status", "").strip()

    if new_status not in gate.STATUSES:
        flash("Invalid status.", "error")
    elif not gate.can_transition(group.status, new_status, has_bookings=store.has_bookings(group.id)):
        flash(f"A {group.status} group cannot be moved to {new_status}.", "error")
    elif new_status != group.status:
        try:
            store.set_group_status(group, new_status)
        except StoreError:
            log.exception("Status update failed for group %s", group_id)
            flash("Failed to update status", "error")
        else:
            flash(f"Status changed to {new_status}", "success")
    return redirect(url_for("admin.manage_group", group_id=group_id))


@admin_bp.route("/groups/<int:group_id>/slots", methods=["POST"])
@roles_required("admin")
def create_slot(group_id: int):
    group = db.session.get(BookingGroup, group_id)
    if not group:
        return abort(404)
    store = BookingStore()
    tz = current_tz_name()
    date_str = request.form.get("date", "")
    start_str = request.form.get("start_time", "")
    end_str = request.form.get("end_time", "")
    ta_id = request.form.get("ta_id", type=int)

    ta = db.session.get(User, ta_id) if ta_id is not None else None
    if ta_id is not None and (ta is None or not ta.is_ta):
        flash("Slots can only be assigned to a TA.", "error")
        return redirect(url_for("admin.manage_group", group_id=group_id))

    try:
        capacity = int(request.form.get("capacity", "1") or 0)
        the_date = parse_date(date_str)
        start = minutes_of_day(parse_time(start_str))
        end = minutes_of_day(parse_time(end_str))
        # A single interval spanning the whole range
        candidates = generate_intervals(start, end, max(end - start, 1), capacity)
        if ta is not None:
            existing = store.slots_for_group(group.id, ta_id=ta.id)
            check_overlaps(candidates, existing_intervals_on_date(existing, the_date, tz))
    except SlotValidationError as exc:
        flash(exc.message, "error")
        return redirect(url_for("admin.manage_group", group_id=group_id))
    except ValueError:
        flash("Please enter a valid date and times.", "error")
        return redirect(url_for("admin.manage_group", group_id=group_id))

    planned = PlannedSlot(
        start_time=datetime.fromisoformat(to_local_iso(date_str, start_str, tz)),
        end_time=datetime.fromisoformat(to_local_iso(date_str, end_str, tz)),
        capacity=capacity,
    )
    try:
        store.insert_slots(group.id, ta_id, [planned])
    except StoreError:
        flash("Failed to create slot", "error")
    else:
        flash("Slot created!", "success")
    return redirect(url_for("admin.manage_group", group_id=group_id))


@admin_bp.route("/slots/<int:slot_id>/delete", methods=["POST"])
@roles_required("admin")
def delete_slot(slot_id: int):
    slot = db.session.get(BookingSlot, slot_id)
    if not slot:
        return abort(404)
    group_id = slot.booking_group_id
    try:
        BookingStore().delete_slot(slot_id)
    except StoreError:
        log.exception("Admin slot delete failed for slot %s", slot_id)
        flash("Failed to delete slot.", "error")
    else:
        flash("Slot deleted", "success")
    return redirect(url_for("admin.manage_group", group_id=group_id))


@admin_bp.route("/bookings/<int:booking_id>/delete", methods=["POST"])
@roles_required("admin")
def delete_booking(booking_id: int):
    booking = db.session.get(Booking, booking_id)
    if not booking:
        return abort(404)
    group_id = booking.booking_group_id
    try:
        BookingStore().delete_booking(booking_id)
    except StoreError:
        log.exception("Admin booking delete failed for booking %s", booking_id)
        flash("Failed to delete booking", "error")
    else:
        flash("Booking deleted - student can now rebook", "success")
    return redirect(url_for("admin.manage_group", group_id=group_id))


@admin_bp.route("/users")
@roles_required("admin")
def users_index():
    q = request.args.get("q", "").strip()
    query = User.query
    if q:
        like = f"%{q.lower()}%"
        query = query.filter(or_(User.email.ilike(like), User.name.ilike(like)))
    users = query.order_by(User.role.asc(), User.name.asc()).all()
    return render_template("admin/users.html", users=users, q=q)
