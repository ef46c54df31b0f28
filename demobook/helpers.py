import os

from flask import current_app, request, session

from demobook.scheduling import gate
from demobook.scheduling.timezones import from_utc, resolve_timezone, utc_offset, zone_abbreviation


def current_tz_name() -> str:
    """Timezone the current visitor works in: ?tz=, then session, then config."""
    tz = request.values.get("tz") or session.get("tz") or current_app.config["DEFAULT_TIMEZONE"]
    tz = resolve_timezone(tz).zone
    session["tz"] = tz
    return tz


def _clock(dt) -> str:
    return dt.strftime('%-I:%M %p') if os.name != 'nt' else dt.strftime('%I:%M %p').lstrip('0')


def format_time(dt, tz_name=None) -> str:
    return _clock(from_utc(dt, tz_name or current_tz_name()))


def format_date(dt, tz_name=None) -> str:
    return from_utc(dt, tz_name or current_tz_name()).strftime('%a, %b %d')


def format_datetime(dt, tz_name=None) -> str:
    local = from_utc(dt, tz_name or current_tz_name())
    return f"{local.strftime('%a, %b %d')} {_clock(local)}"


def format_time_range(slot, tz_name=None) -> str:
    return f"{format_time(slot.start_time, tz_name)} - {format_time(slot.end_time, tz_name)}"


def local_date_key(dt, tz_name=None):
    return from_utc(dt, tz_name or current_tz_name()).date()


def group_by_local_date(slots, tz_name=None):
    """[(date, [slots...]), ...] in date order."""
    grouped = {}
    for slot in slots:
        grouped.setdefault(local_date_key(slot.start_time, tz_name), []).append(slot)
    return sorted(grouped.items())


def register_template_helpers(app):
    app.add_template_filter(format_time, "time")
    app.add_template_filter(format_date, "date")
    app.add_template_filter(format_datetime, "datetime")
    app.add_template_filter(format_time_range, "time_range")

    @app.context_processor
    def inject_globals():
        return {
            "course_name": current_app.config["COURSE_NAME"],
            "gate": gate,
            "tz_offset": utc_offset,
            "tz_abbreviation": zone_abbreviation,
        }
