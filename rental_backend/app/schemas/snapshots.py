"""
Immutable snapshots handed to the rental core.

The lifecycle service reads ORM rows, freezes them into these models and
passes them to the pure availability, pricing, document and settlement
functions. The core never mutates a snapshot; persistence applies changes.
"""

from pydantic import BaseModel, field_validator
from datetime import datetime
from typing import Optional

from rental_backend.app.core.clock import as_utc
from rental_backend.app.models.rental_enums import VehicleStatus, ReservationStatus


class VehicleSnapshot(BaseModel):
    """Vehicle as seen by the core."""
    id: int
    name: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    license_plate: str
    status: VehicleStatus
    current_mileage: int
    rate_4h: float
    rate_12h: float
    daily_rate: float

    class Config:
        from_attributes = True
        frozen = True


class CustomerSnapshot(BaseModel):
    """Customer as seen by the core."""
    id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    company_id: Optional[str] = None
    driver_license_number: Optional[str] = None
    driver_license_image_url: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    class Config:
        from_attributes = True
        frozen = True


class ReservationSnapshot(BaseModel):
    """Reservation as seen by the core. Instants are naive UTC."""
    id: int
    customer_id: Optional[int] = None
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    status: ReservationStatus
    start_mileage: Optional[int] = None
    end_mileage: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_instant(cls, value: datetime) -> datetime:
        return as_utc(value)

    class Config:
        from_attributes = True
        frozen = True
