# services/schedule_rules.py
"""
Schedule validation rules.

validate_schedule() checks a candidate schedule (new or edited) against the
field-level and cross-field invariants and reports every violation at once.
It never touches the database: the caller resolves the train type and tells
us which referenced locations exist.

Expected problems come back as data (ValidationResult). Only a caller bug,
e.g. running_days handed over as a string, raises MalformedInput.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime

__all__ = [
    "TRAIN_TYPES",
    "ATTACH_TRAIN_TYPES",
    "SCHEDULE_STATUSES",
    "ATTACH_STATUSES",
    "ATTACH_FIELDS",
    "DETACH_FIELDS",
    "MalformedInput",
    "Violation",
    "ValidationResult",
    "ExistenceFlags",
    "validate_schedule",
]

TRAIN_TYPES = (
    "express", "local", "freight", "spic", "ftr", "saloon", "trc",
    "passenger", "mail_express", "superfast", "premium", "suburban",
    "memu", "demu",
)
# Only these may couple/uncouple mid-journey
ATTACH_TRAIN_TYPES = frozenset({"saloon", "ftr"})

SCHEDULE_STATUSES = ("scheduled", "running", "delayed", "completed", "cancelled")
ATTACH_STATUSES = ("pending", "completed", "cancelled")

ATTACH_FIELDS = ("attach_location_id", "attach_train_number", "attach_time")
DETACH_FIELDS = ("detach_location_id", "detach_time")

MSG_ATTACH_TYPE = "attach/detach only available for SALOON and FTR trains"
MSG_ATTACH_TRIPLE = "when specifying attach operations, location, train number, and time are all required"
MSG_DETACH_PAIR = "when specifying detach operations, location and time are both required"


class MalformedInput(ValueError):
    """The caller handed over data of the wrong shape or type."""


@dataclass(frozen=True)
class Violation:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    violations: list[Violation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    def add(self, field_name: str, message: str) -> None:
        self.violations.append(Violation(field_name, message))

    def fields(self) -> list[str]:
        return [v.field for v in self.violations]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass(frozen=True)
class ExistenceFlags:
    """Whether each referenced location id resolved to a row."""
    departure: bool = True
    arrival: bool = True
    attach: bool = True
    detach: bool = True


def _get(candidate, name: str):
    if isinstance(candidate, Mapping):
        return candidate.get(name)
    return getattr(candidate, name, None)


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _is_positive_id(value) -> bool:
    # bool is an int subclass; True is not a row id
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _timestamp(candidate, name: str) -> datetime | None:
    value = _get(candidate, name)
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise MalformedInput(f"{name} must be a datetime, got {type(value).__name__}")
    return value


def _day(candidate, name: str) -> date | None:
    value = _get(candidate, name)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, date):
        raise MalformedInput(f"{name} must be a date, got {type(value).__name__}")
    return value


def _check_references(candidate, result: ValidationResult) -> None:
    labels = {
        "train_id": "train",
        "departure_location_id": "departure location",
        "arrival_location_id": "arrival location",
    }
    for name, label in labels.items():
        if not _is_positive_id(_get(candidate, name)):
            result.add(name, f"{label} is required")

    dep = _get(candidate, "departure_location_id")
    arr = _get(candidate, "arrival_location_id")
    if _is_positive_id(dep) and dep == arr:
        result.add("arrival_location_id", "arrival location must differ from departure location")


def _check_times(dep: datetime | None, arr: datetime | None, result: ValidationResult) -> None:
    if dep is None:
        result.add("scheduled_departure", "scheduled departure is required")
    if arr is None:
        result.add("scheduled_arrival", "scheduled arrival is required")
    if dep is not None and arr is not None and arr <= dep:
        result.add("scheduled_arrival", "arrival must be after departure")


def _check_running_days(candidate, result: ValidationResult) -> None:
    days = _get(candidate, "running_days")
    if days is None:
        result.add("running_days", "running days are required")
        return
    if not isinstance(days, (list, tuple)):
        raise MalformedInput(f"running_days must be a list, got {type(days).__name__}")
    if len(days) != 7 or not all(isinstance(d, bool) for d in days):
        result.add("running_days", "running days must be exactly 7 true/false values (Monday first)")


def _check_effective_window(candidate, result: ValidationResult) -> None:
    start = _day(candidate, "effective_start_date")
    end = _day(candidate, "effective_end_date")
    if start is None:
        result.add("effective_start_date", "effective start date is required")
    elif end is not None and end <= start:
        result.add("effective_end_date", "effective end date must be after the start date")


def _check_attach_detach(candidate, train_type: str, result: ValidationResult) -> None:
    # "" means the caller could not resolve the train; train_id is already reported
    if train_type and train_type not in TRAIN_TYPES:
        result.add("train_id", f"unknown train type '{train_type}'")

    if train_type not in ATTACH_TRAIN_TYPES:
        for name in ATTACH_FIELDS + DETACH_FIELDS:
            if _present(_get(candidate, name)):
                result.add(name, MSG_ATTACH_TYPE)
        return

    for group, message in ((ATTACH_FIELDS, MSG_ATTACH_TRIPLE), (DETACH_FIELDS, MSG_DETACH_PAIR)):
        given = [name for name in group if _present(_get(candidate, name))]
        if given and len(given) != len(group):
            for name in group:
                if name not in given:
                    result.add(name, message)


def _check_within_journey(name: str, value: datetime | None, dep, arr, result: ValidationResult) -> None:
    if value is None or dep is None or arr is None:
        return
    if not (dep <= value <= arr):
        label = name.split("_")[0]
        result.add(name, f"{label} time must be between departure and arrival times")


def _check_existence(candidate, exists: ExistenceFlags, result: ValidationResult) -> None:
    pairs = (
        ("departure_location_id", exists.departure, "departure location"),
        ("arrival_location_id", exists.arrival, "arrival location"),
        ("attach_location_id", exists.attach, "attach location"),
        ("detach_location_id", exists.detach, "detach location"),
    )
    for name, found, label in pairs:
        if _is_positive_id(_get(candidate, name)) and not found:
            result.add(name, f"{label} does not exist")


def _check_enums(candidate, result: ValidationResult) -> None:
    status = _get(candidate, "status")
    if status is not None and status not in SCHEDULE_STATUSES:
        result.add("status", f"status must be one of: {', '.join(SCHEDULE_STATUSES)}")

    attach_status = _get(candidate, "attach_status")
    if attach_status is not None and attach_status not in ATTACH_STATUSES:
        result.add("attach_status", f"attach status must be one of: {', '.join(ATTACH_STATUSES)}")


def _check_important_stations(candidate, result: ValidationResult) -> None:
    stations = _get(candidate, "important_stations")
    if stations is None:
        return
    if not isinstance(stations, (list, tuple)):
        result.add("important_stations", "important stations must be a list")
        return
    for i, stop in enumerate(stations):
        if not isinstance(stop, Mapping) or not _is_positive_id(stop.get("location_id")):
            result.add(f"important_stations.{i}.location_id", "waypoint location is required")


def validate_schedule(candidate, train_type: str, exists: ExistenceFlags | None = None) -> ValidationResult:
    """
    Check a candidate schedule and return every violation found.

    `candidate` is a mapping or any object with the schedule attributes
    (snake_case names, as on models.schedule.Schedule). `train_type` is the
    referenced train's type ("" when it could not be resolved). `exists` reports which referenced location ids
    the caller could resolve.
    """
    if not isinstance(train_type, str):
        raise MalformedInput("train_type must be a string")
    exists = exists or ExistenceFlags()
    result = ValidationResult()

    dep = _timestamp(candidate, "scheduled_departure")
    arr = _timestamp(candidate, "scheduled_arrival")

    _check_references(candidate, result)
    _check_times(dep, arr, result)
    _check_running_days(candidate, result)
    _check_effective_window(candidate, result)
    _check_attach_detach(candidate, train_type.strip().lower(), result)
    _check_within_journey("attach_time", _timestamp(candidate, "attach_time"), dep, arr, result)
    _check_within_journey("detach_time", _timestamp(candidate, "detach_time"), dep, arr, result)
    _check_existence(candidate, exists, result)
    _check_enums(candidate, result)
    _check_important_stations(candidate, result)

    return result
