"""
Reservation schemas: lifecycle inputs, API requests and responses.

Service inputs carry raw bytes for signatures and photos. API requests carry
them base64-encoded and convert with ``to_details()``.
"""

from pydantic import BaseModel, Base64Bytes, Field, field_validator
from datetime import datetime
from typing import Optional, List

from rental_backend.app.core.clock import as_utc
from rental_backend.app.models.rental_enums import ReservationStatus, HandoverKind
from rental_backend.app.schemas.billing import RentalCharge, FinancialTransactionResponse


class BookingWindow(BaseModel):
    """A requested rental window. Ordering is checked by the lifecycle, not here."""
    vehicle_id: int
    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_instant(cls, value: datetime) -> datetime:
        return as_utc(value)


class ReservationCreate(BookingWindow):
    """Staff-entered reservation."""
    customer_id: int
    approve: bool = False  # create directly as scheduled, with a drafted contract
    notes: Optional[str] = None


class CustomerDetails(BaseModel):
    """Customer profile as submitted through the portal or the booking form."""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    driver_license_number: str = ""
    company_id: Optional[str] = None


class CustomerDetailsSubmission(CustomerDetails):
    """Portal submission: profile plus a scan of the driver license."""
    driver_license_image: Optional[Base64Bytes] = None
    driver_license_filename: str = "license.jpg"


class OnlineBookingCreate(BookingWindow):
    """Public booking form: window, customer profile and trip details."""
    customer: CustomerDetails
    destination: Optional[str] = None
    estimated_mileage: Optional[int] = Field(None, ge=0)


class DamageReport(BaseModel):
    """A damage found at return."""
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    photo: Optional[bytes] = None
    photo_filename: str = "damage.jpg"


class ReturnDetails(BaseModel):
    """Everything captured when the vehicle comes back."""
    end_mileage: int
    fuel_level: Optional[str] = None
    cleanliness: Optional[str] = None
    keys_and_docs_ok: Optional[bool] = None
    notes: Optional[str] = None
    signature: Optional[bytes] = None
    damages: List[DamageReport] = Field(default_factory=list)
    refueling_cost: float = Field(0.0, ge=0)
    forfeit_deposit: bool = False


class ActivateRequest(BaseModel):
    """Departure request body."""
    start_mileage: int
    signature: Optional[Base64Bytes] = None


class DamageReportRequest(BaseModel):
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    photo: Optional[Base64Bytes] = None
    photo_filename: str = "damage.jpg"


class CompleteRequest(BaseModel):
    """Return request body."""
    end_mileage: int
    fuel_level: Optional[str] = None
    cleanliness: Optional[str] = None
    keys_and_docs_ok: Optional[bool] = None
    notes: Optional[str] = None
    signature: Optional[Base64Bytes] = None
    damages: List[DamageReportRequest] = Field(default_factory=list)
    refueling_cost: float = Field(0.0, ge=0)
    forfeit_deposit: bool = False

    def to_details(self) -> ReturnDetails:
        return ReturnDetails(
            end_mileage=self.end_mileage,
            fuel_level=self.fuel_level,
            cleanliness=self.cleanliness,
            keys_and_docs_ok=self.keys_and_docs_ok,
            notes=self.notes,
            signature=self.signature,
            damages=[
                DamageReport(
                    description=damage.description,
                    location=damage.location,
                    photo=damage.photo,
                    photo_filename=damage.photo_filename,
                )
                for damage in self.damages
            ],
            refueling_cost=self.refueling_cost,
            forfeit_deposit=self.forfeit_deposit,
        )


class ReservationResponse(BaseModel):
    """Schema for displaying a reservation."""
    id: int
    customer_id: Optional[int]
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    status: ReservationStatus
    start_mileage: Optional[int]
    end_mileage: Optional[int]
    notes: Optional[str]
    destination: Optional[str] = None
    estimated_mileage: Optional[int] = None

    class Config:
        from_attributes = True


class PortalLinkResponse(BaseModel):
    """A freshly issued self-service link."""
    reservation_id: int
    portal_token: str
    status: ReservationStatus


class PortalReservationResponse(BaseModel):
    """What an unauthenticated customer may see through their link."""
    reservation_id: int
    vehicle_name: str
    start_date: datetime
    end_date: datetime
    status: ReservationStatus


class ContractResponse(BaseModel):
    id: int
    reservation_id: int
    generated_at: datetime
    contract_text: str
    signed_at: Optional[datetime]

    class Config:
        from_attributes = True


class HandoverProtocolResponse(BaseModel):
    id: int
    reservation_id: int
    kind: HandoverKind
    generated_at: datetime
    protocol_text: str
    mileage: int
    signature_url: str

    class Config:
        from_attributes = True


class ApprovalResult(BaseModel):
    """Response after approving a reservation."""
    reservation: ReservationResponse
    contract: ContractResponse


class ActivationResult(BaseModel):
    """Response after the vehicle departs."""
    reservation: ReservationResponse
    contract: ContractResponse
    protocol: HandoverProtocolResponse


class CompletionResult(BaseModel):
    """Response after the vehicle returns."""
    reservation: ReservationResponse
    protocol: HandoverProtocolResponse
    charge: RentalCharge
    transactions: List[FinancialTransactionResponse]
    damage_ids: List[int]


class AvailabilityResponse(BaseModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    available: bool
    conflicting_reservation_ids: List[int]
    available_from: Optional[datetime]


class QuoteResponse(BaseModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    base_price: float
    currency: str
