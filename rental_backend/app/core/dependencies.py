"""
Service dependencies for FastAPI.

Wires the lifecycle service to its collaborators. Tests override
``get_db``, ``get_redis``, ``get_storage`` and ``get_clock`` through
``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rental_backend.app.core.clock import Clock, system_clock
from rental_backend.app.core.redis_client import get_redis
from rental_backend.app.db.session import get_db
from rental_backend.app.domain.rental.lifecycle_service import ReservationLifecycleService
from rental_backend.app.services.file_storage import FileStorage, LocalFileStorage

_local_storage = LocalFileStorage()


async def get_storage() -> FileStorage:
    return _local_storage


async def get_clock() -> Clock:
    return system_clock


async def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
    redis_conn=Depends(get_redis),
    storage: FileStorage = Depends(get_storage),
    clock: Clock = Depends(get_clock)
) -> ReservationLifecycleService:
    """FastAPI dependency building a lifecycle service for the request's session."""
    return ReservationLifecycleService(db, redis_conn, storage, clock)
