"""
Financial Transaction database model.

Immutable income/expense records. Reservation-linked rows are written only
by the settlement recorder when a rental is completed.
"""

from sqlalchemy import Column, Integer, Float, String, ForeignKey, DateTime, Enum, CheckConstraint
from rental_backend.app.db.session import Base
from rental_backend.app.models.rental_enums import TransactionType, TransactionCategory


class FinancialTransaction(Base):
    """
    Financial transaction model.

    NO updates or deletions allowed.
    """
    __tablename__ = "financial_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    type = Column(Enum(TransactionType), nullable=False, index=True)
    category = Column(Enum(TransactionCategory), nullable=False, default=TransactionCategory.MANUAL)
    amount = Column(Float, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    description = Column(String(255), nullable=False)

    # Linkage (None for manual entries)
    reservation_id = Column(Integer, ForeignKey('reservations.id'), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_financial_transactions_amount_non_negative"),
    )

    def __repr__(self):
        return f"<FinancialTransaction(id={self.id}, type='{self.type.value}', amount={self.amount})>"
