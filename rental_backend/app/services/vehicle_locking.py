"""
Vehicle locking service.

Two layers keep a vehicle from being double-booked or handed over twice:

- a short-lived Redis advisory lock serializes booking and activation calls
  for the same vehicle, so availability is checked and applied atomically
  from the caller's point of view;
- a ``VehicleLock`` row taken at departure and released at return, whose
  partial unique index guarantees at most one active rental per vehicle.
"""

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_backend.app.core.config import settings
from rental_backend.app.core.exceptions import VehicleUnavailableError
from rental_backend.app.models.vehicle_lock import VehicleLock

logger = logging.getLogger("rental.locking")

VEHICLE_LOCK_PREFIX = "lock:vehicle:"
RETRY_INTERVAL_SECONDS = 0.05


@asynccontextmanager
async def vehicle_advisory_lock(
    redis_conn,
    vehicle_id: int,
    ttl_seconds: Optional[int] = None,
    wait_seconds: Optional[float] = None
):
    """
    Hold the advisory lock for ``vehicle_id`` for the duration of the block.

    Args:
        redis_conn: Redis client (``redis.asyncio``)
        vehicle_id: Vehicle to lock
        ttl_seconds: Expiry of the key, so a crashed holder cannot block forever
        wait_seconds: How long to retry before giving up

    Raises:
        VehicleUnavailableError: If another operation holds the lock past the wait

    If Redis itself is unreachable the block runs unlocked and a warning is
    logged; the database lock still prevents a second active rental.
    """
    ttl = ttl_seconds or settings.vehicle_lock_ttl_seconds
    wait = settings.vehicle_lock_wait_seconds if wait_seconds is None else wait_seconds
    key = f"{VEHICLE_LOCK_PREFIX}{vehicle_id}"
    token = secrets.token_hex(16)

    acquired = False
    redis_down = False
    try:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while True:
            acquired = bool(await redis_conn.set(key, token, nx=True, ex=ttl))
            if acquired or loop.time() >= deadline:
                break
            await asyncio.sleep(RETRY_INTERVAL_SECONDS)
    except redis.RedisError as e:
        logger.warning("Advisory lock unavailable for vehicle %s: %s", vehicle_id, e)
        redis_down = True

    if redis_down:
        yield
        return

    if not acquired:
        logger.warning("Vehicle %s is locked by another operation", vehicle_id)
        raise VehicleUnavailableError(
            vehicle_id,
            reason="Vehicle is being booked or handed over by another operation, try again"
        )

    try:
        yield
    finally:
        try:
            # Only delete our own key; it may have expired and been re-taken
            current = await redis_conn.get(key)
            if current == token:
                await redis_conn.delete(key)
        except redis.RedisError as e:
            logger.warning("Failed to release advisory lock for vehicle %s: %s", vehicle_id, e)


async def create_vehicle_lock(
    db: AsyncSession,
    vehicle_id: int,
    reservation_id: int,
    locked_at: datetime
) -> VehicleLock:
    """
    Create a vehicle lock for a departing rental.

    Args:
        db: Database session
        vehicle_id: Vehicle to lock
        reservation_id: Reservation taking the vehicle
        locked_at: Departure instant

    Returns:
        Created vehicle lock

    Raises:
        VehicleUnavailableError: If the vehicle already has an unreleased lock
    """
    lock = VehicleLock(
        vehicle_id=vehicle_id,
        reservation_id=reservation_id,
        locked_at=locked_at,
        released_at=None
    )

    db.add(lock)
    try:
        await db.flush()  # Will raise IntegrityError if unique constraint violated
    except IntegrityError:
        raise VehicleUnavailableError(
            vehicle_id,
            reason="Vehicle is already out on another rental"
        )

    return lock


async def get_active_lock(
    db: AsyncSession,
    vehicle_id: int
) -> Optional[VehicleLock]:
    """Unreleased lock for a vehicle, if any."""
    result = await db.execute(
        select(VehicleLock).where(
            VehicleLock.vehicle_id == vehicle_id,
            VehicleLock.released_at.is_(None)
        )
    )
    return result.scalar_one_or_none()


async def release_vehicle_lock(
    db: AsyncSession,
    vehicle_id: int,
    reservation_id: int,
    released_at: datetime
) -> bool:
    """
    Release a vehicle lock when the vehicle is returned.

    Returns:
        True if lock released, False if no lock found
    """
    result = await db.execute(
        select(VehicleLock).where(
            VehicleLock.vehicle_id == vehicle_id,
            VehicleLock.reservation_id == reservation_id,
            VehicleLock.released_at.is_(None)
        )
    )
    lock = result.scalar_one_or_none()

    if not lock:
        return False

    lock.released_at = released_at
    await db.flush()

    return True
