# routes/admin.py
from __future__ import annotations

from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from db import db
from auth_guard import require_role
from models.location import Location
from models.schedule import Schedule
from models.train import Train
from models.user import User

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

CLEANABLE = ("schedules", "trains", "locations", "users")


class _Refused(Exception):
    pass


def _clean_table(table: str, *, preserve_admin: bool, preserve_references: bool) -> None:
    if table == "schedules":
        Schedule.query.delete(synchronize_session=False)

    elif table == "trains":
        if preserve_references and db.session.query(Schedule.id).filter(Schedule.train_id.isnot(None)).first():
            raise _Refused("Cannot clean trains table while preserving references")
        Train.query.delete(synchronize_session=False)

    elif table == "locations":
        if preserve_references:
            in_use = db.session.query(Schedule.id).filter(or_(
                Schedule.departure_location_id.isnot(None),
                Schedule.arrival_location_id.isnot(None),
            )).first()
            if in_use:
                raise _Refused("Cannot clean locations table while preserving references")
        Location.query.delete(synchronize_session=False)

    elif table == "users":
        q = User.query
        if preserve_admin:
            q = q.filter(User.role != "admin")
        q.delete(synchronize_session=False)


@admin_bp.route("/clean-tables", methods=["POST"])
@require_role("admin")
def clean_tables():
    """
    Administrative purge.
    Body: { "tables": [...], "preserve_admin": true, "preserve_references": true }
    Runs in one transaction; schedules go first so references clear before
    trains/locations are checked.
    """
    data = request.get_json(silent=True) or {}
    tables = data.get("tables")
    if not isinstance(tables, list) or not tables or any(t not in CLEANABLE for t in tables):
        return jsonify(error=f"tables must be a non-empty list drawn from: {', '.join(CLEANABLE)}"), 400
    preserve_admin = data.get("preserve_admin", True) is not False
    preserve_references = data.get("preserve_references", True) is not False

    ordered = sorted(set(tables), key=CLEANABLE.index)
    try:
        for table in ordered:
            _clean_table(table, preserve_admin=preserve_admin, preserve_references=preserve_references)
        db.session.commit()
    except _Refused as e:
        db.session.rollback()
        return jsonify(error="Failed to clean tables", details=str(e)), 409
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("[admin] clean-tables failed")
        return jsonify(error="Failed to clean tables", details=str(e)), 500

    current_app.logger.warning(
        "[admin] tables cleaned by uid=%s ip=%s: %s",
        g.user.id, request.headers.get("X-Forwarded-For") or request.remote_addr, ordered,
    )
    return jsonify(success=True, message=f"Successfully cleaned tables: {', '.join(ordered)}",
                   cleaned_tables=ordered), 200
