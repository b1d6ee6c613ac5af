# utils/payloads.py
"""JSON shapes shared by the HTTP routes and the realtime channel."""
from __future__ import annotations


def _iso(dt):
    return dt.isoformat() if dt else None


def train_payload(t) -> dict | None:
    if t is None:
        return None
    return {
        "id": t.id,
        "train_number": t.train_number,
        "type": t.type,
        "description": t.description or "",
        "max_speed": t.max_speed,
        "passenger_capacity": t.passenger_capacity,
        "cargo_capacity_tons": t.cargo_capacity_tons,
        "priority_level": t.priority_level,
        "features": list(t.features or []),
    }


def location_payload(loc) -> dict | None:
    if loc is None:
        return None
    return {"id": loc.id, "name": loc.name, "code": loc.code}


def schedule_payload(s, *, with_relations: bool = True) -> dict:
    out = {
        "id": s.id,
        "train_id": s.train_id,
        "departure_location_id": s.departure_location_id,
        "arrival_location_id": s.arrival_location_id,
        "scheduled_departure": _iso(s.scheduled_departure),
        "scheduled_arrival": _iso(s.scheduled_arrival),
        "actual_departure": _iso(s.actual_departure),
        "actual_arrival": _iso(s.actual_arrival),
        "status": s.status,
        "is_cancelled": bool(s.is_cancelled),
        "running_days": list(s.running_days or []),
        "effective_start_date": _iso(s.effective_start_date),
        "effective_end_date": _iso(s.effective_end_date),
        "short_route_location_id": s.short_route_location_id,
        "attach_location_id": s.attach_location_id,
        "attach_train_number": s.attach_train_number,
        "attach_time": _iso(s.attach_time),
        "attach_status": s.attach_status,
        "detach_location_id": s.detach_location_id,
        "detach_time": _iso(s.detach_time),
        "taking_over_time": _iso(s.taking_over_time),
        "handing_over_time": _iso(s.handing_over_time),
        "important_stations": list(s.important_stations or []),
        "remarks": s.remarks,
    }
    if with_relations:
        t = s.train
        out["train"] = (
            {"id": t.id, "train_number": t.train_number, "type": t.type, "description": t.description or ""}
            if t else None
        )
        out["departure_location"] = location_payload(s.departure_location)
        out["arrival_location"] = location_payload(s.arrival_location)
    return out
