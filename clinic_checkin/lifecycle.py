"""
lifecycle.py
============
The check-in session state machine.

Status only moves forward along TRANSITIONS; `cancelled` is reachable from
any open status, and the administrative force-complete is the single path
outside the table. Nothing here touches the database: the service layer
asks this module whether a move is legal before applying it.
"""

from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from .errors import InvalidState, OutOfRangeVital
from .models import ServiceType, SessionStatus

S = SessionStatus

TERMINAL_STATUSES: FrozenSet[SessionStatus] = frozenset({
    S.completed,
    S.vaccination_completed,
    S.cancelled,
})

COMPLETED_STATUSES: FrozenSet[SessionStatus] = frozenset({
    S.completed,
    S.vaccination_completed,
})

TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    S.checked_in: frozenset({S.waiting, S.vitals_collected, S.cancelled}),
    S.waiting: frozenset({S.vitals_collected, S.cancelled}),
    S.vitals_collected: frozenset({S.doctor_notified, S.cancelled}),
    S.doctor_notified: frozenset({S.in_progress, S.cancelled}),
    S.in_progress: frozenset({S.completed, S.vaccination_completed, S.cancelled}),
    S.completed: frozenset(),
    S.vaccination_completed: frozenset(),
    S.cancelled: frozenset(),
}

# Inclusive (minimum, maximum) per vital sign
VITAL_RANGES: Dict[str, Tuple[float, float]] = {
    "temperature": (30.0, 45.0),
    "heart_rate": (30, 200),
    "systolic_bp": (60, 250),
    "diastolic_bp": (40, 150),
    "respiratory_rate": (5, 40),
    "oxygen_saturation": (60, 100),
    "weight": (0.5, 500.0),
    "height": (20, 300),
}

REQUIRED_VITALS = ("temperature", "heart_rate", "systolic_bp", "diastolic_bp")


def is_terminal(status: SessionStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: SessionStatus, target: SessionStatus) -> None:
    """Raise InvalidState unless `current -> target` is an edge of the graph."""
    if not can_transition(current, target):
        raise InvalidState(
            f"Cannot move session from '{current.value}' to '{target.value}'"
        )


def ensure_open(status: SessionStatus) -> None:
    if is_terminal(status):
        raise InvalidState(f"Session is already '{status.value}'")


def completion_status(service_type: ServiceType) -> SessionStatus:
    """Terminal status a normal completion lands in for this kind of visit."""
    if service_type.is_vaccination:
        return S.vaccination_completed
    return S.completed


def validate_vitals(vitals: Mapping[str, Optional[float]]) -> None:
    """
    Check every supplied vital against VITAL_RANGES.

    Missing required readings and out-of-bound values raise OutOfRangeVital
    naming the first offending field. Systolic pressure must also exceed
    diastolic pressure.
    """
    for field in REQUIRED_VITALS:
        if vitals.get(field) is None:
            minimum, maximum = VITAL_RANGES[field]
            raise OutOfRangeVital(field, None, minimum, maximum,
                                  message=f"{field} is required")

    for field, (minimum, maximum) in VITAL_RANGES.items():
        value = vitals.get(field)
        if value is None:
            continue
        if not minimum <= value <= maximum:
            raise OutOfRangeVital(field, value, minimum, maximum)

    systolic, diastolic = vitals["systolic_bp"], vitals["diastolic_bp"]
    if systolic <= diastolic:
        raise OutOfRangeVital(
            "systolic_bp", systolic, minimum=diastolic,
            maximum=VITAL_RANGES["systolic_bp"][1],
            message="Systolic pressure must be higher than diastolic pressure",
        )
