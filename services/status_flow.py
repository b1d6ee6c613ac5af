# services/status_flow.py
"""
Schedule status state machine.

    scheduled -> running | cancelled
    running   -> delayed | completed | cancelled
    delayed   -> running | completed | cancelled
    completed, cancelled: terminal

Entering `running` stamps actual_departure, entering `completed` stamps
actual_arrival (only when not already recorded). Entering `cancelled` raises
the is_cancelled flag, which makes the recurrence evaluator report the
schedule inactive on every date.
"""
from __future__ import annotations

from datetime import datetime

from services.schedule_rules import SCHEDULE_STATUSES

__all__ = ["TRANSITIONS", "InvalidTransition", "can_transition", "apply_status_transition", "cancel_schedule"]

TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"running", "cancelled"}),
    "running":   frozenset({"delayed", "completed", "cancelled"}),
    "delayed":   frozenset({"running", "completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


class InvalidTransition(Exception):
    def __init__(self, current: str | None, requested: str | None):
        self.current = current
        self.requested = requested
        super().__init__(f"invalid transition: {current} -> {requested}")

    def to_dict(self) -> dict:
        allowed = sorted(TRANSITIONS.get(self.current or "", ()))
        return {
            "error": "invalid transition",
            "from": self.current,
            "to": self.requested,
            "allowed": allowed,
        }


def can_transition(current: str | None, new: str | None) -> bool:
    if new not in SCHEDULE_STATUSES or current not in TRANSITIONS:
        return False
    return current == new or new in TRANSITIONS[current]


def apply_status_transition(schedule, new_status: str, now: datetime):
    """
    Move `schedule` to `new_status`, applying the timestamp side effects.

    Raises InvalidTransition (leaving the schedule untouched) when the move
    is not allowed from the current status.
    """
    current = schedule.status or "scheduled"
    if not can_transition(current, new_status):
        raise InvalidTransition(current, new_status)
    if current == new_status:
        return schedule

    if new_status == "running" and schedule.actual_departure is None:
        schedule.actual_departure = now
    elif new_status == "completed" and schedule.actual_arrival is None:
        schedule.actual_arrival = now
    elif new_status == "cancelled":
        schedule.is_cancelled = True

    schedule.status = new_status
    return schedule


def cancel_schedule(schedule):
    """Raise the cancellation flag; sync status where the machine allows it."""
    schedule.is_cancelled = True
    if can_transition(schedule.status or "scheduled", "cancelled"):
        schedule.status = "cancelled"
    return schedule
