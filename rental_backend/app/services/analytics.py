"""
Analytics Service.

Financial reporting over recorded transactions. Reads are side-effect free;
the only write is the manual expense entry used by staff for costs that do
not come from a rental (insurance, servicing, ...).
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case

from rental_backend.app.core.clock import Clock, as_utc, system_clock
from rental_backend.app.db.session import unit_of_work
from rental_backend.app.models.financial_transaction import FinancialTransaction
from rental_backend.app.models.reservation import Reservation
from rental_backend.app.models.vehicle import Vehicle
from rental_backend.app.models.rental_enums import (
    ReservationStatus, TransactionType, TransactionCategory
)
from rental_backend.app.schemas.analytics import FinancialSummary, VehicleIncome
from rental_backend.app.schemas.billing import ExpenseCreate
from rental_backend.app.services.audit import log_event, AuditAction, AuditActor


class AnalyticsService:

    @staticmethod
    async def financial_summary(
        db: AsyncSession,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> FinancialSummary:
        """Income, expense and profit for transactions dated in ``[start, end)``."""
        start, end = as_utc(start), as_utc(end)

        income = case((FinancialTransaction.type == TransactionType.INCOME, FinancialTransaction.amount), else_=0)
        expense = case((FinancialTransaction.type == TransactionType.EXPENSE, FinancialTransaction.amount), else_=0)
        stmt = select(
            func.coalesce(func.sum(income), 0).label("total_income"),
            func.coalesce(func.sum(expense), 0).label("total_expense"),
            func.count(FinancialTransaction.id).label("transaction_count")
        )
        if start is not None:
            stmt = stmt.where(FinancialTransaction.date >= start)
        if end is not None:
            stmt = stmt.where(FinancialTransaction.date < end)

        row = (await db.execute(stmt)).one()
        total_income = float(row.total_income)
        total_expense = float(row.total_expense)

        return FinancialSummary(
            period_start=start,
            period_end=end,
            total_income=total_income,
            total_expense=total_expense,
            net_profit=total_income - total_expense,
            transaction_count=row.transaction_count
        )

    @staticmethod
    async def vehicle_income(db: AsyncSession) -> List[VehicleIncome]:
        """Per-vehicle income from reservation-linked income transactions."""
        rentals_stmt = select(
            Reservation.vehicle_id,
            func.count(Reservation.id).label("completed_rentals"),
            func.coalesce(func.sum(Reservation.end_mileage - Reservation.start_mileage), 0).label("total_km")
        ).where(
            Reservation.status == ReservationStatus.COMPLETED
        ).group_by(Reservation.vehicle_id)
        rentals = {row.vehicle_id: row for row in await db.execute(rentals_stmt)}

        income_stmt = select(
            Reservation.vehicle_id,
            func.coalesce(func.sum(FinancialTransaction.amount), 0).label("total_income")
        ).join(
            Reservation, Reservation.id == FinancialTransaction.reservation_id
        ).where(
            FinancialTransaction.type == TransactionType.INCOME
        ).group_by(Reservation.vehicle_id)
        income = {row.vehicle_id: float(row.total_income) for row in await db.execute(income_stmt)}

        vehicles = (await db.execute(select(Vehicle).order_by(Vehicle.id))).scalars().all()

        data = []
        for vehicle in vehicles:
            rental_row = rentals.get(vehicle.id)
            data.append(VehicleIncome(
                vehicle_id=vehicle.id,
                name=vehicle.name,
                license_plate=vehicle.license_plate,
                completed_rentals=rental_row.completed_rentals if rental_row else 0,
                total_income=income.get(vehicle.id, 0.0),
                total_km=int(rental_row.total_km) if rental_row else 0
            ))
        return data

    @staticmethod
    async def record_expense(
        db: AsyncSession,
        data: ExpenseCreate,
        clock: Clock = system_clock
    ) -> FinancialTransaction:
        """Record a manual expense not tied to any reservation."""
        async with unit_of_work(db):
            transaction = FinancialTransaction(
                type=TransactionType.EXPENSE,
                category=TransactionCategory.MANUAL,
                amount=data.amount,
                date=as_utc(data.date) or clock.now(),
                description=data.description,
                reservation_id=None
            )
            db.add(transaction)
            await db.flush()

            await log_event(
                db,
                AuditAction.EXPENSE_RECORDED,
                actor=AuditActor.STAFF,
                metadata={"transaction_id": transaction.id, "amount": data.amount}
            )

        return transaction
