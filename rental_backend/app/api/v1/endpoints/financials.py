"""
Financials API Endpoints.

Read-only reports over recorded transactions plus manual expense entry.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rental_backend.app.core.clock import Clock
from rental_backend.app.core.dependencies import get_clock
from rental_backend.app.db.session import get_db
from rental_backend.app.schemas.analytics import FinancialSummary, VehicleIncome
from rental_backend.app.schemas.billing import ExpenseCreate, FinancialTransactionResponse
from rental_backend.app.services.analytics import AnalyticsService

router = APIRouter(prefix="/financials", tags=["Financials"])


@router.get("/summary", response_model=FinancialSummary)
async def get_financial_summary(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Total income, expense and profit, optionally limited to a period."""
    return await AnalyticsService.financial_summary(db, start_date, end_date)


@router.get("/vehicles", response_model=List[VehicleIncome])
async def get_vehicle_income(
    db: AsyncSession = Depends(get_db)
):
    """Income and kilometres per vehicle."""
    return await AnalyticsService.vehicle_income(db)


@router.post("/expenses", response_model=FinancialTransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(
    data: ExpenseCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """Record a manual expense (insurance, servicing, ...)."""
    return await AnalyticsService.record_expense(db, data, clock)
