# services/importer.py
"""
Turning loosely-typed input (JSON bodies, CSV uploads, bulk imports) into
typed schedule fields, plus the train-type name mapping used by the
train-type import.

Both snake_case and the camelCase keys older clients send are accepted.
"""
from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone

from dateutil import parser as dtparse

from services.schedule_rules import TRAIN_TYPES, Violation
from services.recurrence import from_sunday_first

_log = logging.getLogger(__name__)

__all__ = [
    "parse_timestamp",
    "parse_date",
    "parse_running_days",
    "parse_schedule_fields",
    "map_train_type",
    "generate_train_number",
    "read_csv_rows",
    "CSV_COLUMNS",
]

ID_FIELDS = (
    "train_id", "departure_location_id", "arrival_location_id",
    "attach_location_id", "detach_location_id", "short_route_location_id",
)
TIMESTAMP_FIELDS = (
    "scheduled_departure", "scheduled_arrival", "actual_departure", "actual_arrival",
    "attach_time", "detach_time", "taking_over_time", "handing_over_time",
)
DATE_FIELDS = ("effective_start_date", "effective_end_date")
TEXT_FIELDS = ("status", "attach_train_number", "attach_status", "remarks")

_CAMEL = {
    "trainId": "train_id",
    "departureLocationId": "departure_location_id",
    "arrivalLocationId": "arrival_location_id",
    "attachLocationId": "attach_location_id",
    "detachLocationId": "detach_location_id",
    "shortRouteLocationId": "short_route_location_id",
    "scheduledDeparture": "scheduled_departure",
    "scheduledArrival": "scheduled_arrival",
    "actualDeparture": "actual_departure",
    "actualArrival": "actual_arrival",
    "attachTime": "attach_time",
    "detachTime": "detach_time",
    "takingOverTime": "taking_over_time",
    "handingOverTime": "handing_over_time",
    "effectiveStartDate": "effective_start_date",
    "effectiveEndDate": "effective_end_date",
    "attachTrainNumber": "attach_train_number",
    "attachStatus": "attach_status",
    "isCancelled": "is_cancelled",
    "runningDays": "running_days",
    "importantStations": "important_stations",
}

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# Loose spellings accepted by the train-type import
TYPE_ALIASES = {
    **{t: t for t in TRAIN_TYPES},
    "exp": "express",
    "mail": "mail_express",
    "sf": "superfast",
    "sub": "suburban",
    "pass": "passenger",
}

CSV_COLUMNS = (
    "id", "train_number", "train_type", "departure_code", "arrival_code",
    "scheduled_departure", "scheduled_arrival", "actual_departure", "actual_arrival",
    "status", "is_cancelled", "running_days", "effective_start_date", "effective_end_date",
    "attach_code", "attach_train_number", "attach_time", "attach_status",
    "detach_code", "detach_time", "remarks", "important_stations",
)


def parse_timestamp(value) -> datetime | None:
    """ISO-ish string or datetime -> naive UTC datetime. Blank -> None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = dtparse.parse(value.strip())
        except (ValueError, OverflowError) as e:
            raise ValueError(f"invalid timestamp '{value}'") from e
    else:
        raise ValueError(f"invalid timestamp {value!r}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_date(value) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return dtparse.parse(value.strip()).date()
        except (ValueError, OverflowError) as e:
            raise ValueError(f"invalid date '{value}'") from e
    raise ValueError(f"invalid date {value!r}")


def _as_bool(x, default=False) -> bool:
    if x is None:
        return default
    if isinstance(x, bool):
        return x
    s = str(x).strip().lower()
    return s in {"1", "true", "yes", "on", "y"}


def parse_running_days(value, *, sunday_first: bool = False):
    """
    Accepts a list of 7 booleans, a 7-character "1111100" mask or a list of
    day names ("mon,wed,fri"). Returns the Monday-first list. Lists that are
    not 7 long pass through untouched so the validator can report them.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        days = list(value)
        if len(days) == 7 and all(isinstance(d, (bool, int)) for d in days):
            days = [bool(d) for d in days]
            return from_sunday_first(days) if sunday_first else days
        return days
    if isinstance(value, str):
        raw = value.strip().lower()
        if len(raw) == 7 and set(raw) <= {"0", "1"}:
            days = [c == "1" for c in raw]
            return from_sunday_first(days) if sunday_first else days
        names = [p.strip()[:3] for p in raw.replace(";", ",").split(",") if p.strip()]
        if names and all(n in _WEEKDAYS for n in names):
            return [d in names for d in _WEEKDAYS]
    raise ValueError(f"invalid running days {value!r}")


def _normalize_keys(data: Mapping) -> dict:
    return {_CAMEL.get(k, k): v for k, v in data.items()}


def _parse_id(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("must be an integer id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError("must be an integer id") from None


def _parse_stations(value):
    if value is None:
        return None
    if isinstance(value, str):
        # CSV cells carry the waypoint list as JSON
        try:
            value = json.loads(value)
        except ValueError:
            return value
    if not isinstance(value, (list, tuple)):
        return value  # validator reports it
    out = []
    for stop in value:
        if not isinstance(stop, Mapping):
            out.append(stop)
            continue
        stop = _normalize_keys(stop)
        loc = stop.get("location_id", stop.get("locationId"))
        try:
            loc = _parse_id(loc)
        except ValueError:
            pass
        out.append({
            "location_id": loc,
            "arrival_time": stop.get("arrival_time", stop.get("arrivalTime")),
            "departure_time": stop.get("departure_time", stop.get("departureTime")),
        })
    return out


def parse_schedule_fields(data: Mapping, *, partial: bool = False) -> tuple[dict, list[Violation]]:
    """
    Convert a request body / import row into typed schedule fields.

    Returns (fields, violations). Fields that could not be parsed are left out
    of `fields` and reported as violations. With partial=True only keys that
    are present in `data` are returned.
    """
    data = _normalize_keys(data or {})
    fields: dict = {}
    errors: list[Violation] = []

    def wanted(name):
        return not partial or name in data

    for name in ID_FIELDS:
        if wanted(name):
            try:
                fields[name] = _parse_id(data.get(name))
            except ValueError as e:
                errors.append(Violation(name, str(e)))

    for name in TIMESTAMP_FIELDS:
        if wanted(name):
            try:
                fields[name] = parse_timestamp(data.get(name))
            except ValueError as e:
                errors.append(Violation(name, str(e)))

    for name in DATE_FIELDS:
        if wanted(name):
            try:
                fields[name] = parse_date(data.get(name))
            except ValueError as e:
                errors.append(Violation(name, str(e)))

    for name in TEXT_FIELDS:
        if wanted(name):
            v = data.get(name)
            if isinstance(v, str):
                v = v.strip() or None
            fields[name] = v

    if wanted("is_cancelled"):
        fields["is_cancelled"] = _as_bool(data.get("is_cancelled"))

    if wanted("running_days"):
        try:
            days = parse_running_days(data.get("running_days"))
            fields["running_days"] = [True] * 7 if days is None and not partial else days
        except ValueError as e:
            errors.append(Violation("running_days", str(e)))

    if wanted("important_stations"):
        stations = _parse_stations(data.get("important_stations"))
        fields["important_stations"] = [] if stations is None and not partial else stations

    return fields, errors


def map_train_type(raw: str) -> str:
    """
    Map a loose train type name to one of TRAIN_TYPES.
    Exact names and aliases win; otherwise a single partial match is taken.
    """
    normalized = (raw or "").strip().lower()
    if normalized in TYPE_ALIASES:
        return TYPE_ALIASES[normalized]

    partial = sorted(k for k in TYPE_ALIASES if normalized and (k in normalized or normalized in k))
    targets = {TYPE_ALIASES[k] for k in partial}
    if len(targets) == 1:
        return targets.pop()
    if len(targets) > 1:
        raise ValueError(f"Ambiguous train type '{raw}'. Could match: {', '.join(partial)}")
    raise ValueError(f"Unsupported train type: {raw}. Valid types are: {', '.join(sorted(TYPE_ALIASES))}")


def generate_train_number(train_type: str, index: int, day: date | None = None) -> str:
    day = day or date.today()
    return f"{train_type.upper()[:3]}{day.strftime('%Y%m%d')}{index:03d}"


def read_csv_rows(text: str) -> list[dict]:
    """Rows of a CSV upload as dicts; blank cells become None."""
    reader = csv.DictReader(io.StringIO(text))
    rows = []
    for row in reader:
        rows.append({
            (k or "").strip(): (v.strip() if isinstance(v, str) and v.strip() else None)
            for k, v in row.items()
            if k
        })
    _log.info("[import] parsed %d csv rows", len(rows))
    return rows
