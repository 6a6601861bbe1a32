"""
Vehicle database model.

The fleet catalog: identification, rate schedule, status and odometer.
Status and mileage are moved by the reservation lifecycle on departure and
return; maintenance toggling belongs to fleet management.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.rental_enums import VehicleStatus


class Vehicle(Base):
    """
    Vehicle model.

    Rates: ``rate_4h`` covers rentals up to four hours, ``rate_12h`` up to
    twelve, ``daily_rate`` is charged per started day beyond that.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Identification
    name = Column(String(100), nullable=False)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    license_plate = Column(String(20), unique=True, nullable=False, index=True)

    # Status and odometer
    status = Column(Enum(VehicleStatus), default=VehicleStatus.AVAILABLE, nullable=False, index=True)
    current_mileage = Column(Integer, default=0, nullable=False)

    # Rate schedule
    rate_4h = Column(Float, nullable=False, default=0.0)
    rate_12h = Column(Float, nullable=False, default=0.0)
    daily_rate = Column(Float, nullable=False, default=0.0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("current_mileage >= 0", name="ck_vehicles_mileage_non_negative"),
        CheckConstraint("rate_4h >= 0 AND rate_12h >= 0 AND daily_rate >= 0", name="ck_vehicles_rates_non_negative"),
    )

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate='{self.license_plate}', status='{self.status.value}')>"
