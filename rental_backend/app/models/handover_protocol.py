"""
Handover Protocol database model.

One record per physical handover: departure and, separately, return.
Append-only.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, UniqueConstraint
from rental_backend.app.db.session import Base
from rental_backend.app.models.rental_enums import HandoverKind


class HandoverProtocol(Base):
    """Handover protocol model."""
    __tablename__ = "handover_protocols"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    reservation_id = Column(Integer, ForeignKey('reservations.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)

    kind = Column(Enum(HandoverKind), nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False)
    protocol_text = Column(Text, nullable=False)
    mileage = Column(Integer, nullable=False)  # odometer at the handover
    signature_url = Column(String(500), nullable=False)

    # At most one departure and one return per reservation
    __table_args__ = (
        UniqueConstraint('reservation_id', 'kind', name='uq_handover_protocols_reservation_kind'),
    )

    def __repr__(self):
        return f"<HandoverProtocol(id={self.id}, reservation_id={self.reservation_id}, kind='{self.kind.value}')>"
