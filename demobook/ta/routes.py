import logging
from datetime import datetime

from flask import Blueprint, render_template, request, redirect, url_for, flash, abort
from flask_login import login_required, current_user
from sqlalchemy import or_

from demobook import db
from demobook.models import BookingGroup, BookingSlot, User
from demobook.auth.routes import roles_required
from demobook.helpers import current_tz_name, group_by_local_date
from demobook.scheduling import gate
from demobook.scheduling.availability import aggregate_requirement, capacity_summary
from demobook.scheduling.slots import plan_slots, preview_slot_count
from demobook.scheduling.timezones import as_minutes, from_utc, list_timezones, minutes_to_str, parse_date
from demobook.store import BookingStore, StoreError


log = logging.getLogger(__name__)

ta_bp = Blueprint("ta", __name__, url_prefix="/ta")


@ta_bp.before_request
@login_required
def require_login():
    pass


def _default_date(group, tz_name: str) -> str:
    today = from_utc(datetime.utcnow(), tz_name).date()
    if group.date_range_start and group.date_range_start > today:
        return group.date_range_start.isoformat()
    if group.date_range_end and group.date_range_end < today:
        return (group.date_range_start or today).isoformat()
    return today.isoformat()


def _default_form(group, tz_name: str) -> dict:
    return {
        "date": _default_date(group, tz_name),
        "start_time": minutes_to_str(as_minutes(group.daily_start_time)),
        "end_time": minutes_to_str(as_minutes(group.daily_end_time)),
        "duration": "10",
        "capacity": "1",
    }


def _preview(form: dict) -> str:
    try:
        start = as_minutes(form["start_time"])
        end = as_minutes(form["end_time"])
        duration = int(form["duration"])
        parse_date(form["date"])
    except (KeyError, ValueError):
        return "Configure the form to see preview"
    count, text = preview_slot_count(start, end, duration)
    if count:
        day = parse_date(form["date"]).strftime("%A, %B %d")
        return f"{count} slots on {day}, each {duration} minutes long"
    return text


def _render_slots_page(group, form, status_code=200):
    store = BookingStore()
    tz = current_tz_name()
    slots = store.slots_for_group(group.id, ta_id=current_user.id)
    show_bookings = group.allows(gate.TA_VIEW_BOOKINGS)

    counts, bookings_by_slot, summary = {}, {}, None
    if show_bookings:
        counts = store.count_bookings_for_slots([s.id for s in slots])
        for b in store.bookings_for_slots([s.id for s in slots]):
            bookings_by_slot.setdefault(b.booking_slot_id, []).append(b)
        summary = capacity_summary(slots, counts)

    return render_template(
        "ta/slots.html",
        group=group,
        slots_by_date=group_by_local_date(slots, tz),
        slot_count=len(slots),
        progress=aggregate_requirement(slots, group.ta_required_minutes),
        can_edit=group.allows(gate.TA_ADD_SLOT),
        can_delete=group.allows(gate.TA_DELETE_SLOT),
        show_bookings=show_bookings,
        counts=counts,
        bookings_by_slot=bookings_by_slot,
        summary=summary,
        form=form,
        preview=_preview(form),
        tz=tz,
        timezones=list_timezones(),
    ), status_code


@ta_bp.route("/")
@roles_required("ta")
def dashboard():
    store = BookingStore()
    groups = (
        BookingGroup.query.filter(BookingGroup.status.in_(gate.statuses_allowing(gate.TA_VIEW_GROUP)))
        .order_by(BookingGroup.created_at.desc())
        .all()
    )
    rows = []
    for group in groups:
        my_slots = store.slots_for_group(group.id, ta_id=current_user.id)
        rows.append({
            "group": group,
            "slots": my_slots,
            "progress": aggregate_requirement(my_slots, group.ta_required_minutes),
        })

    # Read-only student directory
    q = request.args.get("q", "").strip()
    students_q = User.query.filter_by(role="student")
    if q:
        like = f"%{q.lower()}%"
        students_q = students_q.filter(or_(User.email.ilike(like), User.name.ilike(like)))
    students = students_q.order_by(User.name.asc()).all()

    return render_template("ta/dashboard.html", rows=rows, students=students, q=q)


@ta_bp.route("/groups/<int:group_id>/slots", methods=["GET", "POST"])
@roles_required("ta")
def slots(group_id: int):
    group = db.session.get(BookingGroup, group_id)
    if not group:
        return abort(404)
    if not group.allows(gate.TA_VIEW_GROUP):
        flash("This booking group is inactive.", "error")
        return redirect(url_for("ta.dashboard"))

    tz = current_tz_name()
    if request.method == "GET":
        form = _default_form(group, tz)
        form.update({k: v for k, v in request.args.items() if k in form and v})
        return _render_slots_page(group, form)

    if not group.allows(gate.TA_ADD_SLOT):
        flash(f"This booking group is {group.status}; slots can no longer be changed.", "error")
        return redirect(url_for("ta.slots", group_id=group.id))

    form = {k: request.form.get(k, "").strip() for k in ("date", "start_time", "end_time", "duration", "capacity")}
    try:
        duration = int(form["duration"])
        capacity = int(form["capacity"])
    except ValueError:
        flash("Slot duration and capacity must be whole numbers.", "error")
        return _render_slots_page(group, form, 400)

    store = BookingStore()
    existing = store.slots_for_group(group.id, ta_id=current_user.id)
    plan = plan_slots(
        group,
        form["date"],
        form["start_time"],
        form["end_time"],
        duration,
        capacity,
        existing_slots=existing,
        tz_name=tz,
    )
    if not plan.ok:
        flash(plan.message, "error")
        return _render_slots_page(group, form, 400)

    try:
        store.insert_slots(group.id, current_user.id, plan.slots)
    except StoreError:
        flash("Failed to create slots", "error")
        return _render_slots_page(group, form, 500)

    day = parse_date(form["date"]).strftime("%A, %b %d")
    flash(f"Created {len(plan.slots)} slots for {day}!", "success")
    return redirect(url_for("ta.slots", group_id=group.id))


@ta_bp.route("/slots/<int:slot_id>/delete", methods=["POST"])
@roles_required("ta")
def delete_slot(slot_id: int):
    slot = db.session.get(BookingSlot, slot_id)
    if not slot or slot.ta_id != current_user.id:
        return abort(404)
    group_id = slot.booking_group_id
    if not slot.group.allows(gate.TA_DELETE_SLOT):
        flash(f"This booking group is {slot.group.status}; slots can no longer be changed.", "error")
        return redirect(url_for("ta.slots", group_id=group_id))

    try:
        BookingStore().delete_slot(slot_id, ta_id=current_user.id)
    except StoreError:
        log.exception("TA slot delete failed for slot %s", slot_id)
        flash("Failed to delete slot", "error")
    else:
        flash("Slot deleted", "success")
    return redirect(url_for("ta.slots", group_id=group_id))
