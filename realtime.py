# realtime.py
from __future__ import annotations

from datetime import datetime, timezone

import jwt
from flask import current_app, request
from flask_socketio import SocketIO, emit, join_room, leave_room

from auth_guard import user_from_token
from db import db
from models.schedule import Schedule
from services.schedule_rules import ATTACH_STATUSES
from services.status_flow import InvalidTransition, apply_status_transition
from utils.payloads import schedule_payload

# one shared instance for the whole app
socketio = SocketIO(cors_allowed_origins="*", ping_interval=25, ping_timeout=20)

NS = "/rt"

# sid -> (user_id, role) for sockets that presented a valid token
_sessions: dict[str, tuple[int, str]] = {}

WRITE_ROLES = {"admin", "operator"}


@socketio.on("connect", namespace=NS)
def on_connect(auth=None):
    token = (auth or {}).get("token")
    if token:
        try:
            user = user_from_token(token)
        except jwt.InvalidTokenError:
            user = None
        if user:
            _sessions[request.sid] = (user.id, (user.role or "").lower())
    emit("connected", {"ok": True, "authenticated": request.sid in _sessions})


@socketio.on("disconnect", namespace=NS)
def on_disconnect(*_):
    _sessions.pop(request.sid, None)


@socketio.on("subscribe", namespace=NS)
def on_subscribe(data):
    train_id = (data or {}).get("train_id")
    if train_id:
        join_room(f"train:{train_id}")


@socketio.on("unsubscribe", namespace=NS)
def on_unsubscribe(data):
    train_id = (data or {}).get("train_id")
    if train_id:
        leave_room(f"train:{train_id}")


@socketio.on("schedule:update", namespace=NS)
def on_schedule_update(data):
    """
    Status / attach-status change pushed from an operator console.
    Goes through the same state machine as PATCH /api/schedules/<id>/status.
    """
    sess = _sessions.get(request.sid)
    if not sess or sess[1] not in WRITE_ROLES:
        emit("schedule:error", {"error": "Insufficient permissions"})
        return

    data = data or {}
    schedule = db.session.get(Schedule, data.get("id")) if data.get("id") else None
    if not schedule:
        emit("schedule:error", {"error": "Schedule not found", "id": data.get("id")})
        return

    if "attach_status" in data:
        # only schedules carrying an attach operation have an attach status
        if not schedule.attach_train_number:
            emit("schedule:error", {"error": "schedule has no attach operation", "id": schedule.id})
            return
        if data["attach_status"] not in ATTACH_STATUSES:
            emit("schedule:error", {"error": "invalid attach_status", "id": schedule.id})
            return

    try:
        if data.get("status"):
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            apply_status_transition(schedule, data["status"], now)
        if "attach_status" in data:
            schedule.attach_status = data["attach_status"]
        db.session.commit()
    except InvalidTransition as e:
        db.session.rollback()
        emit("schedule:error", {"id": schedule.id, **e.to_dict()})
        return

    current_app.logger.info("[rt] schedule %s updated by uid=%s status=%s", schedule.id, sess[0], schedule.status)
    publish_schedule_update(schedule)


def publish_schedule_update(schedule) -> None:
    """
    "Update applied" event: called after a successful write so every
    subscriber sees the new state. Broadcast to everyone on /rt and to the
    per-train room.
    """
    payload = schedule_payload(schedule)
    socketio.emit("schedule:updated", payload, namespace=NS)  # global
    if schedule.train_id:
        socketio.emit("schedule:updated", payload, to=f"train:{schedule.train_id}", namespace=NS)
