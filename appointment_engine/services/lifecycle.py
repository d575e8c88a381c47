"""Appointment state machine with per-role transition rules."""
from typing import Dict, FrozenSet

from ..core.exceptions import (
    AccessDeniedError, AppointmentImmutableError, InvalidTransitionError
)
from ..core.security import UserRole
from ..models.appointment import AppointmentStatus, TERMINAL_STATUSES

S = AppointmentStatus

# Targets each non-admin role may reach from a given status
TRANSITIONS: Dict[UserRole, Dict[AppointmentStatus, FrozenSet[AppointmentStatus]]] = {
    UserRole.PATIENT: {
        S.SCHEDULED: frozenset({S.CANCELLED}),
        S.CONFIRMED: frozenset({S.CANCELLED}),
    },
    UserRole.DOCTOR: {
        S.SCHEDULED: frozenset({S.CONFIRMED, S.CANCELLED}),
        S.CONFIRMED: frozenset({S.IN_PROGRESS, S.CANCELLED}),
        S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    },
}


def role_targets(role: UserRole) -> FrozenSet[AppointmentStatus]:
    """Every status a role can ever move an appointment into."""
    if role == UserRole.ADMIN:
        return frozenset(AppointmentStatus)
    targets = set()
    for allowed in TRANSITIONS[role].values():
        targets |= allowed
    return frozenset(targets)


def allowed_targets(role: UserRole, current: AppointmentStatus) -> FrozenSet[AppointmentStatus]:
    if current in TERMINAL_STATUSES:
        return frozenset()
    if role == UserRole.ADMIN:
        return frozenset(status for status in AppointmentStatus if status != current)
    return TRANSITIONS[role].get(current, frozenset())


def check_transition(role: UserRole, current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Validate ``current -> target`` for ``role`` or raise a typed error.

    A role asking for a status it can never set is denied outright, before
    the terminal-state and table checks.
    """
    if target not in role_targets(role):
        raise AccessDeniedError(
            f"A {role.value} cannot set an appointment to '{target.value}'",
        )

    if current in TERMINAL_STATUSES:
        raise AppointmentImmutableError(
            f"Appointment is already {current.value} and cannot be changed",
        )

    if target not in allowed_targets(role, current):
        raise InvalidTransitionError(
            f"Cannot move appointment from '{current.value}' to '{target.value}'",
        )
