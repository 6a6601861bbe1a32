"""
Audit logging service for tracking reservation lifecycle events.

Audit rows are written inside the caller's unit of work, so an event is
recorded exactly when the transition it describes is committed.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from rental_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Booking
    RESERVATION_CREATED = "RESERVATION_CREATED"
    PORTAL_LINK_ISSUED = "PORTAL_LINK_ISSUED"
    ONLINE_BOOKING_CREATED = "ONLINE_BOOKING_CREATED"
    CUSTOMER_DETAILS_SUBMITTED = "CUSTOMER_DETAILS_SUBMITTED"

    # Staff decisions
    RESERVATION_APPROVED = "RESERVATION_APPROVED"
    RESERVATION_REJECTED = "RESERVATION_REJECTED"

    # Handover
    VEHICLE_DEPARTED = "VEHICLE_DEPARTED"
    VEHICLE_RETURNED = "VEHICLE_RETURNED"

    # Money
    SETTLEMENT_RECORDED = "SETTLEMENT_RECORDED"
    EXPENSE_RECORDED = "EXPENSE_RECORDED"


class AuditActor:
    STAFF = "staff"
    PORTAL = "portal"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[str] = None,
    reservation_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an event to the audit log.

    Flushes but does not commit; the surrounding unit of work decides.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Who triggered it (use AuditActor constants)
        reservation_id: Reservation concerned, if any
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor=actor,
        action=action,
        reservation_id=reservation_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    reservation_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if reservation_id:
        query = query.where(AuditLog.reservation_id == reservation_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
