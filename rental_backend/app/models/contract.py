"""
Contract database model.

One contract per reservation, drafted on approval with a signature
placeholder and finalized at vehicle handover.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime
from rental_backend.app.db.session import Base


class Contract(Base):
    """
    Contract model.

    The only change allowed after creation is the signature substitution,
    which rewrites ``contract_text`` and stamps ``signed_at``.
    """
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    reservation_id = Column(
        Integer, ForeignKey('reservations.id', ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)

    generated_at = Column(DateTime(timezone=True), nullable=False)
    contract_text = Column(Text, nullable=False)
    signature_placeholder = Column(String(100), nullable=False)
    signed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Contract(id={self.id}, reservation_id={self.reservation_id}, signed={self.signed_at is not None})>"
