"""
Vehicle Lock database model.

Ensures only one active rental per vehicle through a DB-level partial unique
index. A lock is taken when the vehicle departs and released on return.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Index
from rental_backend.app.db.session import Base


class VehicleLock(Base):
    """
    Vehicle Lock model.

    Backstop for "a vehicle is rented iff exactly one reservation for it is
    active": a second unreleased lock for the same vehicle violates the index.
    """
    __tablename__ = "vehicle_locks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    reservation_id = Column(Integer, ForeignKey('reservations.id'), nullable=False, index=True)

    locked_at = Column(DateTime(timezone=True), nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            'ix_vehicle_locks_active', 'vehicle_id', unique=True,
            postgresql_where=released_at.is_(None),
            sqlite_where=released_at.is_(None),
        ),
    )

    def __repr__(self):
        return f"<VehicleLock(vehicle_id={self.vehicle_id}, reservation_id={self.reservation_id}, active={self.released_at is None})>"
