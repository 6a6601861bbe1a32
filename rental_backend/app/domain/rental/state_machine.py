"""
Reservation state machine.

Status flow:
    PENDING_CUSTOMER → PENDING_APPROVAL → SCHEDULED → ACTIVE → COMPLETED
    Any status before ACTIVE can be rejected (the reservation is deleted)

Every lifecycle operation checks its transition here before touching state.
"""

import enum
from typing import Dict, FrozenSet, Optional

from rental_backend.app.core.exceptions import InvalidStateTransitionError
from rental_backend.app.models.rental_enums import ReservationStatus


class Transition(str, enum.Enum):
    """Lifecycle operations that change a reservation's status."""
    SUBMIT_CUSTOMER_DETAILS = "submit_customer_details"
    APPROVE = "approve"
    REJECT = "reject"
    ACTIVATE = "activate"
    COMPLETE = "complete"


# Transition -> (allowed source statuses, target status). None means deleted.
TRANSITIONS: Dict[Transition, tuple[FrozenSet[ReservationStatus], Optional[ReservationStatus]]] = {
    Transition.SUBMIT_CUSTOMER_DETAILS: (
        frozenset({ReservationStatus.PENDING_CUSTOMER}),
        ReservationStatus.PENDING_APPROVAL,
    ),
    Transition.APPROVE: (
        frozenset({ReservationStatus.PENDING_APPROVAL}),
        ReservationStatus.SCHEDULED,
    ),
    Transition.REJECT: (
        frozenset({
            ReservationStatus.PENDING_CUSTOMER,
            ReservationStatus.PENDING_APPROVAL,
            ReservationStatus.SCHEDULED,
        }),
        None,
    ),
    Transition.ACTIVATE: (
        frozenset({ReservationStatus.SCHEDULED}),
        ReservationStatus.ACTIVE,
    ),
    Transition.COMPLETE: (
        frozenset({ReservationStatus.ACTIVE}),
        ReservationStatus.COMPLETED,
    ),
}


def can_transition(current: ReservationStatus, transition: Transition) -> bool:
    sources, _ = TRANSITIONS[transition]
    return ReservationStatus(current) in sources


def ensure_transition(
    current: ReservationStatus,
    transition: Transition
) -> Optional[ReservationStatus]:
    """
    Check that ``transition`` may run from ``current``.

    Returns:
        The status the reservation moves to, or None when it is deleted

    Raises:
        InvalidStateTransitionError: If the transition is not in the table
    """
    if not can_transition(current, transition):
        raise InvalidStateTransitionError(ReservationStatus(current).value, transition.value)
    return TRANSITIONS[transition][1]
