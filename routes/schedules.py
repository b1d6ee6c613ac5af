# routes/schedules.py
from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime, timedelta, timezone

from flask import Blueprint, request, jsonify, current_app, Response
from sqlalchemy.exc import SQLAlchemyError

from db import db
from auth_guard import require_role
from models.schedule import Schedule
from models.train import Train
from models.location import Location
from realtime import publish_schedule_update
from services.importer import CSV_COLUMNS, parse_schedule_fields, read_csv_rows
from services.recurrence import active_dates, is_active_on
from services.schedule_rules import ExistenceFlags, ValidationResult, validate_schedule
from services.status_flow import InvalidTransition, apply_status_transition, cancel_schedule
from utils.payloads import schedule_payload

schedules_bp = Blueprint("schedules", __name__, url_prefix="/api/schedules")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _invalid(violations, status: int = 400):
    result = ValidationResult(list(violations))
    return jsonify(error="Invalid schedule data", **result.to_dict()), status


def _current_fields(s: Schedule) -> dict:
    return {c.name: getattr(s, c.name) for c in Schedule.__table__.columns if c.name != "id"}


def _location_exists(loc_id) -> bool:
    if not loc_id:
        return True
    return db.session.get(Location, loc_id) is not None


def _resolve_refs(fields: dict):
    """Look up the train and the referenced locations for the validator."""
    train = db.session.get(Train, fields["train_id"]) if fields.get("train_id") else None
    exists = ExistenceFlags(
        departure=_location_exists(fields.get("departure_location_id")),
        arrival=_location_exists(fields.get("arrival_location_id")),
        attach=_location_exists(fields.get("attach_location_id")),
        detach=_location_exists(fields.get("detach_location_id")),
    )
    return train, exists


def _check(fields: dict):
    """
    Returns (train, error_response). error_response is None when the
    candidate passed every rule.
    """
    train, exists = _resolve_refs(fields)
    if fields.get("train_id") and train is None:
        return None, (jsonify(error="Train not found", message="The specified train does not exist"), 404)

    result = validate_schedule(fields, train.type if train else "", exists)
    if not result.valid:
        current_app.logger.info("[schedules] rejected candidate: %s", result.fields())
        return train, _invalid(result.violations)
    return train, None


def _apply_defaults(fields: dict) -> dict:
    if not fields.get("effective_start_date"):
        fields["effective_start_date"] = date.today()
    if not fields.get("status"):
        fields["status"] = "scheduled"
    if fields.get("attach_train_number") and not fields.get("attach_status"):
        fields["attach_status"] = "pending"
    return fields


def _parse_day_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        return False


# ─────────────────────────────────────────────
# Read
# ─────────────────────────────────────────────
@schedules_bp.route("", methods=["GET"])
@require_role()
def list_schedules():
    """
    GET /api/schedules
      Query:
        - start_date=YYYY-MM-DD & end_date=YYYY-MM-DD  (optional, on scheduled departure)
        - train_id=<int>                              (optional)
    """
    start = _parse_day_arg("start_date")
    end = _parse_day_arg("end_date")
    if start is False or end is False:
        return jsonify(error="invalid date format"), 400

    q = Schedule.query
    if start and end:
        q = q.filter(
            Schedule.scheduled_departure >= datetime.combine(start, datetime.min.time()),
            Schedule.scheduled_departure < datetime.combine(end + timedelta(days=1), datetime.min.time()),
        )
    train_id = request.args.get("train_id", type=int)
    if train_id:
        q = q.filter(Schedule.train_id == train_id)

    rows = q.order_by(Schedule.scheduled_departure.asc(), Schedule.id.asc()).all()
    return jsonify([schedule_payload(s) for s in rows]), 200


@schedules_bp.route("/<int:schedule_id>", methods=["GET"])
@require_role()
def get_schedule(schedule_id: int):
    s = db.get_or_404(Schedule, schedule_id)
    return jsonify(schedule_payload(s)), 200


@schedules_bp.route("/<int:schedule_id>/active", methods=["GET"])
@require_role()
def schedule_active_on(schedule_id: int):
    day = _parse_day_arg("date")
    if not day:
        return jsonify(error="date=YYYY-MM-DD is required"), 400
    s = db.get_or_404(Schedule, schedule_id)
    return jsonify(id=s.id, date=day.isoformat(), active=is_active_on(s, day)), 200


@schedules_bp.route("/<int:schedule_id>/calendar", methods=["GET"])
@require_role()
def schedule_calendar(schedule_id: int):
    start = _parse_day_arg("start")
    end = _parse_day_arg("end")
    if not (start and end):
        return jsonify(error="start and end (YYYY-MM-DD) are required"), 400
    if end < start:
        return jsonify(error="end must not be before start"), 400
    max_days = current_app.config.get("CALENDAR_MAX_DAYS", 366)
    if (end - start).days + 1 > max_days:
        return jsonify(error=f"window too large (max {max_days} days)"), 400

    s = db.get_or_404(Schedule, schedule_id)
    days = [d.isoformat() for d in active_dates(s, start, end)]
    return jsonify(id=s.id, start=start.isoformat(), end=end.isoformat(), dates=days), 200


@schedules_bp.route("/active", methods=["GET"])
@require_role()
def schedules_active_on():
    """Schedules that run on ?date=YYYY-MM-DD (defaults to today)."""
    day = _parse_day_arg("date")
    if day is False:
        return jsonify(error="invalid date format"), 400
    day = day or date.today()

    candidates = (
        Schedule.query.filter(
            Schedule.is_cancelled.is_(False),
            Schedule.effective_start_date <= day,
        )
        .order_by(Schedule.scheduled_departure.asc())
        .all()
    )
    rows = [schedule_payload(s) for s in candidates if is_active_on(s, day)]
    return jsonify(date=day.isoformat(), count=len(rows), schedules=rows), 200


# ─────────────────────────────────────────────
# Write
# ─────────────────────────────────────────────
@schedules_bp.route("", methods=["POST"])
@require_role("operator")
def create_schedule():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify(error="JSON object body required"), 400

    fields, errors = parse_schedule_fields(data)
    if errors:
        return _invalid(errors)
    fields = _apply_defaults(fields)

    _, error = _check(fields)
    if error:
        return error

    schedule = Schedule(**fields)
    try:
        db.session.add(schedule)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("[schedules] create failed")
        return jsonify(error="Failed to create schedule"), 500

    current_app.logger.info("[schedules] created id=%s train=%s", schedule.id, schedule.train_id)
    publish_schedule_update(schedule)
    return jsonify(schedule_payload(schedule)), 201


@schedules_bp.route("/<int:schedule_id>", methods=["PUT"])
@require_role("operator")
def update_schedule(schedule_id: int):
    """
    Full edit. Keys present in the body replace the stored values; the merged
    record goes through the same rules as a new schedule. A status change in
    the body still has to be a legal transition.
    """
    schedule = db.get_or_404(Schedule, schedule_id)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify(error="JSON object body required"), 400

    changes, errors = parse_schedule_fields(data, partial=True)
    if errors:
        return _invalid(errors)

    new_status = changes.pop("status", None)
    # cancellation is one-way; the flag cannot be cleared by an edit
    was_cancelled = bool(schedule.is_cancelled) or schedule.status == "cancelled"
    if was_cancelled and changes.get("is_cancelled") is False:
        body = InvalidTransition(schedule.status, new_status or schedule.status).to_dict()
        body["details"] = "cancellation cannot be undone"
        return jsonify(body), 409

    merged = {**_current_fields(schedule), **changes}
    if merged.get("attach_train_number") and not merged.get("attach_status"):
        merged["attach_status"] = "pending"

    _, error = _check(merged)
    if error:
        return error

    try:
        for name, value in merged.items():
            setattr(schedule, name, value)
        if new_status:
            apply_status_transition(schedule, new_status, _utcnow())
        db.session.commit()
    except InvalidTransition as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 409
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("[schedules] update failed id=%s", schedule_id)
        return jsonify(error="Failed to update schedule"), 500

    publish_schedule_update(schedule)
    return jsonify(schedule_payload(schedule)), 200


@schedules_bp.route("/<int:schedule_id>/status", methods=["PATCH"])
@require_role("operator")
def update_schedule_status(schedule_id: int):
    schedule = db.get_or_404(Schedule, schedule_id)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify(error="JSON object body required"), 400
    raw = data.get("status")
    if not isinstance(raw, str) or not raw.strip():
        return jsonify(error="status is required"), 400
    new_status = raw.strip().lower()

    previous = schedule.status
    try:
        apply_status_transition(schedule, new_status, _utcnow())
    except InvalidTransition as e:
        current_app.logger.info("[schedules] id=%s %s", schedule_id, e)
        return jsonify(e.to_dict()), 409

    db.session.commit()
    current_app.logger.info("[schedules] id=%s status %s -> %s", schedule.id, previous, schedule.status)
    publish_schedule_update(schedule)
    return jsonify(schedule_payload(schedule)), 200


@schedules_bp.route("/<int:schedule_id>/cancel", methods=["POST"])
@require_role("operator")
def cancel(schedule_id: int):
    schedule = db.get_or_404(Schedule, schedule_id)
    cancel_schedule(schedule)
    db.session.commit()
    current_app.logger.info("[schedules] id=%s cancelled (status=%s)", schedule.id, schedule.status)
    publish_schedule_update(schedule)
    return jsonify(schedule_payload(schedule)), 200


# ─────────────────────────────────────────────
# Import / export
# ─────────────────────────────────────────────
def _import_rows():
    """Rows from a JSON array body, {"schedules": [...]} or a CSV upload."""
    upload = request.files.get("file")
    if upload is not None:
        return read_csv_rows(upload.read().decode("utf-8-sig"))
    if request.mimetype == "text/csv":
        return read_csv_rows(request.get_data(as_text=True))
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get("schedules")
    return data if isinstance(data, list) else None


def _resolve_codes(row: dict) -> dict:
    """CSV rows may carry train number / location codes instead of ids."""
    row = dict(row)
    if not row.get("train_id") and not row.get("trainId") and row.get("train_number"):
        t = Train.query.filter_by(train_number=str(row["train_number"]).strip()).first()
        row["train_id"] = t.id if t else None
    for key in ("departure", "arrival", "attach", "detach"):
        code = row.get(f"{key}_code")
        if code and not row.get(f"{key}_location_id"):
            loc = Location.query.filter_by(code=str(code).strip().upper()).first()
            row[f"{key}_location_id"] = loc.id if loc else None
    return row


@schedules_bp.route("/import", methods=["POST"])
@require_role("admin")
def import_schedules():
    rows = _import_rows()
    if rows is None:
        return jsonify(error="Expected a JSON array of schedules or a CSV file"), 400

    created, failures = [], []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            failures.append({"row": index, "errors": [{"field": "", "message": "row must be an object"}]})
            continue

        fields, errors = parse_schedule_fields(_resolve_codes(row))
        if errors:
            failures.append({"row": index, "errors": [v.to_dict() for v in errors]})
            continue
        fields = _apply_defaults(fields)

        train, exists = _resolve_refs(fields)
        if fields.get("train_id") and train is None:
            failures.append({"row": index, "errors": [
                {"field": "train_id", "message": f"Train with ID {fields['train_id']} not found"}
            ]})
            continue

        result = validate_schedule(fields, train.type if train else "", exists)
        if not result.valid:
            failures.append({"row": index, **result.to_dict()})
            continue

        schedule = Schedule(**fields)
        db.session.add(schedule)
        created.append(schedule)

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("[schedules] import commit failed")
        return jsonify(error="Failed to import schedules"), 500

    for s in created:
        publish_schedule_update(s)

    current_app.logger.info("[schedules] import total=%d ok=%d failed=%d", len(rows), len(created), len(failures))
    return jsonify(
        message="Import completed",
        summary={"total": len(rows), "successful": len(created), "failed": len(failures)},
        results={"success": [schedule_payload(s, with_relations=False) for s in created], "failures": failures},
    ), 200


def _csv_value(v):
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (date, datetime)):
        return v.isoformat()
    return v


@schedules_bp.route("/export", methods=["GET"])
@require_role("admin")
def export_schedules():
    fmt = (request.args.get("format") or "json").strip().lower()
    rows = Schedule.query.order_by(Schedule.id.asc()).all()

    if fmt == "json":
        return jsonify(success=True, count=len(rows), data=[schedule_payload(s) for s in rows]), 200
    if fmt != "csv":
        return jsonify(error="format must be json or csv"), 400

    # materialize before streaming; the session is gone once the generator runs
    records = [
        [_csv_value(v) for v in (
            s.id,
            s.train.train_number if s.train else "",
            s.train.type if s.train else "",
            s.departure_location.code if s.departure_location else "",
            s.arrival_location.code if s.arrival_location else "",
            s.scheduled_departure, s.scheduled_arrival,
            s.actual_departure, s.actual_arrival,
            s.status, s.is_cancelled,
            "".join("1" if d else "0" for d in (s.running_days or [])),
            s.effective_start_date, s.effective_end_date,
            s.attach_location.code if s.attach_location else "",
            s.attach_train_number, s.attach_time, s.attach_status,
            s.detach_location.code if s.detach_location else "",
            s.detach_time, s.remarks,
            json.dumps(s.important_stations) if s.important_stations else "",
        )]
        for s in rows
    ]

    def generate():
        buf = io.StringIO()
        writer = csv.writer(buf)
        for record in [list(CSV_COLUMNS), *records]:
            writer.writerow(record)
            yield buf.getvalue()
            buf.seek(0)
            buf.truncate(0)

    stamp = date.today().strftime("%Y%m%d")
    return Response(generate(),
                    mimetype="text/csv",
                    headers={"Content-Disposition": f"attachment; filename=schedules_{stamp}.csv"})
