"""
Analytics Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class FinancialSummary(BaseModel):
    """Income, expense and profit over a period."""
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    total_income: float
    total_expense: float
    net_profit: float
    transaction_count: int


class VehicleIncome(BaseModel):
    """Income attributed to a single vehicle through its reservations."""
    vehicle_id: int
    name: str
    license_plate: str
    completed_rentals: int
    total_income: float
    total_km: int
