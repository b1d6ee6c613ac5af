# routes/trains.py
from __future__ import annotations

from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import IntegrityError

from db import db
from auth_guard import require_role
from models.train import Train
from services.importer import generate_train_number, map_train_type
from services.schedule_rules import TRAIN_TYPES
from utils.payloads import train_payload

trains_bp = Blueprint("trains", __name__, url_prefix="/api/trains")


def _opt_int(data: dict, key: str):
    v = data.get(key)
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        raise ValueError(key)
    return int(v)


def _descriptive(data: dict) -> dict:
    """Raises ValueError naming the offending key."""
    out = {}
    if "description" in data:
        out["description"] = (data.get("description") or "").strip() or None
    for key in ("max_speed", "passenger_capacity", "cargo_capacity_tons", "priority_level"):
        if key in data:
            try:
                out[key] = _opt_int(data, key)
            except (TypeError, ValueError):
                raise ValueError(key) from None
    if "priority_level" in out and out["priority_level"] is not None and not (1 <= out["priority_level"] <= 10):
        raise ValueError("priority_level")
    if "features" in data:
        feats = data.get("features") or []
        if not isinstance(feats, list) or not all(isinstance(f, str) for f in feats):
            raise ValueError("features")
        out["features"] = feats
    return out


@trains_bp.route("", methods=["GET"])
@require_role()
def list_trains():
    rows = Train.query.order_by(Train.train_number.asc()).all()
    data = [train_payload(t) for t in rows]
    resp = jsonify(success=True, count=len(data), data=data)
    resp.headers["Cache-Control"] = "no-store"
    return resp, 200


@trains_bp.route("/<int:train_id>", methods=["GET"])
@require_role()
def get_train(train_id: int):
    return jsonify(train_payload(db.get_or_404(Train, train_id))), 200


@trains_bp.route("", methods=["POST"])
@require_role("admin")
def create_train():
    data = request.get_json(silent=True) or {}
    number = str(data.get("train_number") or "").strip()
    ttype = str(data.get("type") or "local").strip().lower()
    if not number:
        return jsonify(error="train_number is required"), 400
    if ttype not in TRAIN_TYPES:
        return jsonify(error=f"type must be one of: {', '.join(TRAIN_TYPES)}"), 400
    try:
        extra = _descriptive(data)
    except ValueError as e:
        return jsonify(error=f"invalid {e}"), 400

    if Train.query.filter_by(train_number=number).first():
        return jsonify(error=f"Train {number} already exists"), 409

    train = Train(train_number=number, type=ttype, **extra)
    try:
        db.session.add(train)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error=f"Train {number} already exists"), 409

    current_app.logger.info("[trains] created %s (%s)", train.train_number, train.type)
    return jsonify(train_payload(train)), 201


@trains_bp.route("/<int:train_id>", methods=["PATCH"])
@require_role("admin")
def update_train(train_id: int):
    train = db.get_or_404(Train, train_id)
    data = request.get_json(silent=True) or {}

    # number and type are fixed once a schedule references the train
    locked = [k for k in ("train_number", "type") if k in data and train.schedules]
    if locked:
        return jsonify(error=f"{', '.join(locked)} cannot change while schedules reference this train"), 409

    try:
        changes = _descriptive(data)
    except ValueError as e:
        return jsonify(error=f"invalid {e}"), 400

    if "type" in data:
        ttype = str(data["type"] or "").strip().lower()
        if ttype not in TRAIN_TYPES:
            return jsonify(error=f"type must be one of: {', '.join(TRAIN_TYPES)}"), 400
        changes["type"] = ttype
    if "train_number" in data:
        number = str(data["train_number"] or "").strip()
        if not number:
            return jsonify(error="train_number is required"), 400
        changes["train_number"] = number

    for k, v in changes.items():
        setattr(train, k, v)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="train_number already in use"), 409
    return jsonify(train_payload(train)), 200


@trains_bp.route("/import-types", methods=["POST"])
@require_role("admin")
def import_train_types():
    """
    Body: { "train_types": [ {type, description, max_speed?, priority_level?, features?}, ... ] }
    Each entry creates one train with a generated number <TYP><YYYYMMDD><seq>.
    """
    data = request.get_json(silent=True) or {}
    entries = data.get("train_types")
    if not isinstance(entries, list) or not entries:
        return jsonify(error="At least one train type is required"), 400

    success, failures = [], []
    taken = {n for (n,) in db.session.query(Train.train_number).all()}
    seq = 0

    for entry in entries:
        try:
            if not isinstance(entry, dict):
                raise ValueError("entry must be an object")
            if not str(entry.get("description") or "").strip():
                raise ValueError("Description is required")
            mapped = map_train_type(str(entry.get("type") or ""))
            extra = _descriptive(entry)
        except ValueError as e:
            failures.append({"train_type": entry, "error": str(e)})
            continue

        number = generate_train_number(mapped, seq)
        while number in taken:
            seq += 1
            number = generate_train_number(mapped, seq)
        taken.add(number)
        seq += 1

        train = Train(train_number=number, type=mapped, **extra)
        db.session.add(train)
        success.append((entry.get("type"), train))

    db.session.commit()

    current_app.logger.info(
        "[trains] import-types total=%d ok=%d failed=%d uid=%s",
        len(entries), len(success), len(failures), getattr(g, "user", None) and g.user.id,
    )
    return jsonify(
        message="Train types import completed",
        summary={"total": len(entries), "successful": len(success), "failed": len(failures)},
        successful_imports=[
            {"original_type": orig, "mapped_type": t.type, "train_number": t.train_number, "train_id": t.id}
            for orig, t in success
        ],
        failed_imports=failures,
        accepted_types=list(TRAIN_TYPES),
    ), 200
