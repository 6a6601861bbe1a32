"""
Billing Schemas.

Charge breakdowns produced by the pricing engine, transaction drafts produced
by the settlement recorder, and financial API payloads.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from rental_backend.app.models.rental_enums import TransactionType, TransactionCategory


class MileageCharge(BaseModel):
    """Mileage overage breakdown for a completed rental."""
    rental_days: int
    km_limit: int
    km_driven: int
    km_over: int
    overage_fee: float

    class Config:
        frozen = True


class RentalCharge(BaseModel):
    """Everything a completed rental is billed for."""
    base_price: float
    mileage: MileageCharge
    total_income: float

    class Config:
        frozen = True


class TransactionDraft(BaseModel):
    """A financial transaction about to be recorded."""
    type: TransactionType
    category: TransactionCategory
    amount: float = Field(..., ge=0)
    date: datetime
    description: str
    reservation_id: Optional[int] = None

    class Config:
        frozen = True


class ExpenseCreate(BaseModel):
    """Schema for a manual expense entry."""
    description: str = Field(..., min_length=1, max_length=255)
    amount: float = Field(..., ge=0)
    date: Optional[datetime] = None


class FinancialTransactionResponse(BaseModel):
    """Schema for displaying a financial transaction."""
    id: int
    type: TransactionType
    category: TransactionCategory
    amount: float
    date: datetime
    description: str
    reservation_id: Optional[int]

    class Config:
        from_attributes = True
