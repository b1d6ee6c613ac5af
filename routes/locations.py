# routes/locations.py
from __future__ import annotations

from flask import Blueprint, request, jsonify, current_app

from db import db
from auth_guard import require_role
from models.location import Location
from utils.payloads import location_payload

locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


def _clean(entry) -> tuple[dict | None, list[dict]]:
    """Validate one {name, code} entry. Code is upper-cased, 1-10 chars."""
    if not isinstance(entry, dict):
        return None, [{"field": "", "message": "entry must be an object"}]
    name = str(entry.get("name") or "").strip()
    code = str(entry.get("code") or "").strip().upper()
    errors = []
    if not name:
        errors.append({"field": "name", "message": "Location name is required"})
    if not code:
        errors.append({"field": "code", "message": "Location code is required"})
    elif len(code) > 10:
        errors.append({"field": "code", "message": "Location code must be 10 characters or less"})
    return ({"name": name, "code": code} if not errors else None), errors


@locations_bp.route("", methods=["GET"])
@require_role()
def list_locations():
    rows = Location.query.order_by(Location.name.asc()).all()
    return jsonify([location_payload(loc) for loc in rows]), 200


@locations_bp.route("", methods=["POST"])
@require_role("admin")
def create_location():
    clean, errors = _clean(request.get_json(silent=True))
    if errors:
        return jsonify(error="Invalid location data", details=errors), 400

    if Location.query.filter_by(code=clean["code"]).first():
        return jsonify(error="Location already exists",
                       details=f"A location with code {clean['code']} already exists"), 409

    loc = Location(**clean)
    db.session.add(loc)
    db.session.commit()
    current_app.logger.info("[locations] created %s (%s)", loc.code, loc.name)
    return jsonify(message="Location created successfully", location=location_payload(loc)), 201


@locations_bp.route("/import", methods=["POST"])
@require_role("admin")
def import_locations():
    entries = request.get_json(silent=True)
    if not isinstance(entries, list):
        return jsonify(error="Expected a JSON array of locations"), 400

    success, failures = [], []
    seen = {c for (c,) in db.session.query(Location.code).all()}
    for entry in entries:
        clean, errors = _clean(entry)
        if errors:
            failures.append({"location": entry, "errors": errors})
            continue
        if clean["code"] in seen:
            failures.append({"location": entry, "error": f"Location with code {clean['code']} already exists"})
            continue
        seen.add(clean["code"])
        loc = Location(**clean)
        db.session.add(loc)
        success.append(loc)

    db.session.commit()
    return jsonify(
        message="Import completed",
        summary={"total": len(entries), "successful": len(success), "failed": len(failures)},
        results={"success": [location_payload(loc) for loc in success], "failures": failures},
    ), 200
