"""
Vehicle Damage database model.

Damages are reported during the return step and never edited afterwards
except for the repair status kept by fleet management.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum
from rental_backend.app.db.session import Base
from rental_backend.app.models.rental_enums import DamageStatus


class VehicleDamage(Base):
    """Vehicle damage model."""
    __tablename__ = "vehicle_damages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    reservation_id = Column(Integer, ForeignKey('reservations.id'), nullable=True, index=True)

    description = Column(Text, nullable=False)
    location = Column(String(100), nullable=False)  # e.g. "rear bumper"
    image_url = Column(String(500), nullable=True)
    reported_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(Enum(DamageStatus), default=DamageStatus.REPORTED, nullable=False)

    def __repr__(self):
        return f"<VehicleDamage(id={self.id}, vehicle_id={self.vehicle_id}, location='{self.location}')>"
