# routes/analytics.py
from __future__ import annotations

from collections import defaultdict

from flask import Blueprint, jsonify
from sqlalchemy import case, func

from db import db
from auth_guard import require_role
from models.location import Location
from models.schedule import Schedule
from models.train import Train

analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")

# departures in these hours count as peak
PEAK_HOURS = {7, 8, 9, 16, 17, 18}


@analytics_bp.route("/schedule-metrics", methods=["GET"])
@require_role()
def schedule_metrics():
    total, delayed, cancelled, completed = db.session.query(
        func.count(Schedule.id),
        func.sum(case((Schedule.status == "delayed", 1), else_=0)),
        func.sum(case((Schedule.is_cancelled.is_(True), 1), else_=0)),
        func.sum(case(((Schedule.status == "completed") & Schedule.actual_arrival.isnot(None), 1), else_=0)),
    ).one()

    utilization = (
        db.session.query(Train.id, Train.train_number, func.count(Schedule.id))
        .outerjoin(Schedule, Schedule.train_id == Train.id)
        .group_by(Train.id, Train.train_number)
        .order_by(Train.train_number.asc())
        .all()
    )

    # per departure location; delay averaged in Python so it works on any dialect
    rows = (
        db.session.query(
            Location.id, Location.name,
            Schedule.status, Schedule.scheduled_departure,
            Schedule.scheduled_arrival, Schedule.actual_arrival,
        )
        .join(Schedule, Schedule.departure_location_id == Location.id)
        .all()
    )
    routes = defaultdict(lambda: {"total": 0, "delayed": 0, "completed": 0, "peak": 0, "delays": []})
    names = {}
    for loc_id, loc_name, status, sched_dep, sched_arr, actual_arr in rows:
        r = routes[loc_id]
        names[loc_id] = loc_name
        r["total"] += 1
        if status == "delayed":
            r["delayed"] += 1
        if status == "completed" and actual_arr is not None:
            r["completed"] += 1
            r["delays"].append((actual_arr - sched_arr).total_seconds() / 60.0)
        if sched_dep is not None and sched_dep.hour in PEAK_HOURS:
            r["peak"] += 1

    route_performance = [
        {
            "departure_id": loc_id,
            "departure_name": names[loc_id],
            "total_trips": r["total"],
            "delayed_trips": r["delayed"],
            "completed_trips": r["completed"],
            "avg_delay_minutes": round(sum(r["delays"]) / len(r["delays"]), 1) if r["delays"] else None,
            "peak_hour_trips": r["peak"],
        }
        for loc_id, r in sorted(routes.items(), key=lambda kv: names[kv[0]])
    ]

    return jsonify(
        overview={
            "total": int(total or 0),
            "delayed": int(delayed or 0),
            "cancelled": int(cancelled or 0),
            "completed": int(completed or 0),
        },
        train_utilization=[
            {"train_id": tid, "train_number": num, "schedule_count": int(cnt)}
            for tid, num, cnt in utilization
        ],
        route_performance=route_performance,
    ), 200
