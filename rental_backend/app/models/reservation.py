"""
Reservation database model.

The central entity of the rental lifecycle. Rows are only mutated through
the lifecycle service; rejection deletes the row outright.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.rental_enums import ReservationStatus


class Reservation(Base):
    """
    Reservation model.

    ``customer_id`` stays empty while a self-service link waits for the
    customer. ``portal_token`` is an opaque capability string; once the
    customer submits their details ``portal_token_consumed_at`` is set and
    the token can never be used again.
    """
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)

    # Rental window [start_date, end_date)
    start_date = Column(DateTime(timezone=True), nullable=False, index=True)
    end_date = Column(DateTime(timezone=True), nullable=False, index=True)

    # Status
    status = Column(Enum(ReservationStatus), nullable=False, index=True)

    # Odometer readings (start first, then end)
    start_mileage = Column(Integer, nullable=True)
    end_mileage = Column(Integer, nullable=True)

    notes = Column(Text, nullable=True)

    # Online booking details
    destination = Column(String(255), nullable=True)
    estimated_mileage = Column(Integer, nullable=True)

    # Self-service portal
    portal_token = Column(String(100), unique=True, nullable=True, index=True)
    portal_token_consumed_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_reservations_interval"),
        CheckConstraint(
            "end_mileage IS NULL OR (start_mileage IS NOT NULL AND end_mileage >= start_mileage)",
            name="ck_reservations_mileage_order"
        ),
    )

    def __repr__(self):
        return f"<Reservation(id={self.id}, vehicle_id={self.vehicle_id}, status='{self.status.value}')>"
