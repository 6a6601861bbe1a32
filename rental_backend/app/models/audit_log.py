"""
Audit Log Database Model.

Records every reservation lifecycle transition for later review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - RESERVATION_CREATED / PORTAL_LINK_ISSUED / CUSTOMER_DETAILS_SUBMITTED
    - RESERVATION_APPROVED / RESERVATION_REJECTED
    - VEHICLE_DEPARTED / VEHICLE_RETURNED
    - SETTLEMENT_RECORDED / EXPENSE_RECORDED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who triggered the action ("staff", "portal", "system")
    actor = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # Not a foreign key: rejected reservations are deleted but their trail stays
    reservation_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', reservation_id={self.reservation_id})>"
