"""
Availability Resolver.

Decides whether a vehicle can be booked for a half-open window
``[start, end)``. Only scheduled and active reservations block a vehicle;
one booking may end exactly when the next begins.

Pure functions over snapshots. Callers must pass a freshly read reservation
set and the naive UTC window returned by ``validate_interval``.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from rental_backend.app.core.clock import as_utc
from rental_backend.app.core.exceptions import InvalidIntervalError
from rental_backend.app.models.rental_enums import ReservationStatus, VehicleStatus
from rental_backend.app.schemas.snapshots import VehicleSnapshot, ReservationSnapshot

BLOCKING_STATUSES = frozenset({ReservationStatus.SCHEDULED, ReservationStatus.ACTIVE})


def validate_interval(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """
    Normalize a window to naive UTC and reject it if empty or inverted.

    Returns:
        The normalized (start, end) pair

    Raises:
        InvalidIntervalError: If end <= start
    """
    start, end = as_utc(start), as_utc(end)
    if end <= start:
        raise InvalidIntervalError(start, end)
    return start, end


def overlaps(start: datetime, end: datetime, reservation: ReservationSnapshot) -> bool:
    return start < reservation.end_date and end > reservation.start_date


def find_conflicts(
    start: datetime,
    end: datetime,
    reservations: Iterable[ReservationSnapshot]
) -> List[ReservationSnapshot]:
    """Blocking reservations whose window overlaps ``[start, end)``."""
    return [
        r for r in reservations
        if r.status in BLOCKING_STATUSES and overlaps(start, end, r)
    ]


def is_available(
    vehicle: VehicleSnapshot,
    start: datetime,
    end: datetime,
    existing_reservations: Iterable[ReservationSnapshot]
) -> bool:
    """
    Check whether ``vehicle`` can be booked for ``[start, end)``.

    Args:
        vehicle: Vehicle snapshot
        start: Window start (inclusive)
        end: Window end (exclusive)
        existing_reservations: Reservations of this vehicle

    Returns:
        False if the vehicle is in maintenance or a scheduled/active
        reservation overlaps the window, True otherwise
    """
    if vehicle.status == VehicleStatus.MAINTENANCE:
        return False
    return not find_conflicts(start, end, existing_reservations)


def available_from(
    vehicle: VehicleSnapshot,
    at: datetime,
    existing_reservations: Iterable[ReservationSnapshot],
    buffer: timedelta = timedelta(0)
) -> Optional[datetime]:
    """
    Earliest instant at or after ``at`` when the vehicle is free.

    A blocking reservation in progress at the candidate instant pushes the
    candidate to its end plus ``buffer`` (time to clean and refuel). Chains of
    back-to-back bookings are followed.

    Returns:
        The instant, or None for a vehicle in maintenance
    """
    if vehicle.status == VehicleStatus.MAINTENANCE:
        return None

    blocking = sorted(
        (r for r in existing_reservations if r.status in BLOCKING_STATUSES),
        key=lambda r: r.start_date
    )
    candidate = at
    for reservation in blocking:
        if reservation.start_date <= candidate < reservation.end_date + buffer:
            candidate = reservation.end_date + buffer
    return candidate
