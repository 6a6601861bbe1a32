"""
Document Generator.

Renders the rental contract and the handover protocols as plain text.
Signatures are handled in two phases: a draft carries a unique placeholder
token, and ``finalize`` later swaps it for a reference to the stored
signature image. A missing placeholder is an error, never a silent no-op:
an unsigned contract must not pass as signed.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from rental_backend.app.core.config import settings
from rental_backend.app.core.exceptions import PlaceholderNotFoundError
from rental_backend.app.domain.rental.pricing import RentalTerms
from rental_backend.app.schemas.billing import MileageCharge
from rental_backend.app.schemas.snapshots import (
    VehicleSnapshot, CustomerSnapshot, ReservationSnapshot
)

RULE = "=" * 49
SECTION_RULE = "-" * 49


def new_placeholder() -> str:
    return f"{{{{SIGNATURE:{uuid.uuid4().hex}}}}}"


def render_signature(signature_ref: str) -> str:
    return f"[signature: {signature_ref}]"


def substitute_signature(text: str, placeholder: str, signature_ref: str) -> str:
    """
    Replace the signature placeholder with a reference to the stored image.

    Raises:
        PlaceholderNotFoundError: If ``placeholder`` does not occur in ``text``
    """
    if not placeholder or placeholder not in text:
        raise PlaceholderNotFoundError(placeholder)
    return text.replace(placeholder, render_signature(signature_ref), 1)


@dataclass(frozen=True)
class DocumentDraft:
    """Rendered text still waiting for its signature."""
    text: str
    placeholder: str

    def finalize(self, signature_ref: str) -> str:
        return substitute_signature(self.text, self.placeholder, signature_ref)


def format_amount(amount: float, currency: str) -> str:
    if float(amount).is_integer():
        return f"{int(amount):,} {currency}"
    return f"{amount:,.2f} {currency}"


def format_km(value: int) -> str:
    return f"{value:,} km"


def format_instant(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def _vehicle_line(vehicle: VehicleSnapshot) -> str:
    make_model = " ".join(part for part in (vehicle.make, vehicle.model) if part)
    if make_model:
        return f"{vehicle.name} ({make_model})"
    return vehicle.name


def render_contract(
    customer: CustomerSnapshot,
    vehicle: VehicleSnapshot,
    reservation: ReservationSnapshot,
    price: float,
    terms: RentalTerms,
    generated_at: datetime
) -> DocumentDraft:
    """Draft the rental contract. The lessee signs at vehicle handover."""
    placeholder = new_placeholder()
    deposit = format_amount(terms.deposit_amount, terms.currency)
    overage_fee = format_amount(terms.overage_fee_per_km, terms.currency)

    text = f"""VEHICLE RENTAL CONTRACT
{RULE}
Contract for reservation #{reservation.id}, generated {format_instant(generated_at)}

Article I. - Parties
{SECTION_RULE}
Lessor:
{settings.lessor_name}
{settings.lessor_address}
Company ID: {settings.lessor_company_id}

Lessee:
Name: {customer.full_name}
Address: {customer.address or '-'}
Email: {customer.email}
Phone: {customer.phone or '-'}
Driver license no.: {customer.driver_license_number or '-'}

Article II. - Subject of the rental
{SECTION_RULE}
1. The lessor lets the lessee use the following motor vehicle:
   Vehicle: {_vehicle_line(vehicle)}
   License plate: {vehicle.license_plate}
   Year of manufacture: {vehicle.year or '-'}
2. The lessee shall use the vehicle for its ordinary purpose and in accordance with the law.

Article III. - Rental period and price
{SECTION_RULE}
1. Rental period: from {format_instant(reservation.start_date)} to {format_instant(reservation.end_date)}.
2. Total rental price: {format_amount(price, terms.currency)}, payable at vehicle handover unless agreed otherwise.
3. The daily mileage allowance is {format_km(terms.free_km_per_day)}. Every kilometre above the allowance
   ({format_km(terms.free_km_per_day)} x number of rental days) is charged at {overage_fee}/km.

Article IV. - Refundable deposit
{SECTION_RULE}
1. At handover the lessee pays a refundable deposit of {deposit}.
2. The deposit secures the lessor's claims against the lessee (damage, contractual penalties, refueling costs).
3. The deposit is returned in full after proper return of the vehicle; otherwise the lessor may apply it
   to its claims.

Article V. - Rights and obligations
{SECTION_RULE}
1. The lessee confirms taking over the vehicle in good technical condition with full equipment and a full tank.
2. The lessee shall protect the vehicle from damage, loss or destruction.
3. Smoking in the vehicle is strictly prohibited.
4. The vehicle shall be returned with a full tank; otherwise refueling costs are charged.
5. The lessee may not modify, sublet, race the vehicle or use it to carry dangerous goods.

Article VI. - Final provisions
{SECTION_RULE}
1. This contract takes effect when signed by both parties.
2. The parties declare they have read the contract and agree with its content.

Lessee signature:
{placeholder}
"""
    return DocumentDraft(text=text, placeholder=placeholder)


def render_departure_protocol(
    customer: CustomerSnapshot,
    vehicle: VehicleSnapshot,
    reservation: ReservationSnapshot,
    start_mileage: int,
    generated_at: datetime
) -> DocumentDraft:
    """Draft the protocol signed when the vehicle leaves."""
    placeholder = new_placeholder()
    text = f"""HANDOVER PROTOCOL - VEHICLE DEPARTURE
{RULE}
Date and time: {format_instant(generated_at)}
Reservation ID: {reservation.id}
Vehicle: {vehicle.name} ({vehicle.license_plate})
Customer: {customer.full_name}

--- ODOMETER ---
Start mileage: {format_km(start_mileage)}

--- CUSTOMER CONSENT ---
The customer confirms taking over the vehicle in the stated condition.
{placeholder}
"""
    return DocumentDraft(text=text, placeholder=placeholder)


def render_return_protocol(
    customer: CustomerSnapshot,
    vehicle: VehicleSnapshot,
    reservation: ReservationSnapshot,
    end_mileage: int,
    mileage: MileageCharge,
    terms: RentalTerms,
    fuel_level: str,
    cleanliness: str,
    keys_and_docs_ok: bool,
    notes: Optional[str],
    damage_count: int,
    generated_at: datetime
) -> DocumentDraft:
    """Draft the protocol signed when the vehicle comes back."""
    placeholder = new_placeholder()
    keys_and_docs = "OK" if keys_and_docs_ok else "Missing / incomplete"
    damages = (
        f"{damage_count} new damage(s) recorded separately in the vehicle damage history."
        if damage_count else "No new damage reported."
    )
    text = f"""HANDOVER PROTOCOL - VEHICLE RETURN
{RULE}
Date and time: {format_instant(generated_at)}
Reservation ID: {reservation.id}
Vehicle: {vehicle.name} ({vehicle.license_plate})
Customer: {customer.full_name}

--- VEHICLE CONDITION ---
Fuel level: {fuel_level}
Cleanliness: {cleanliness}
Keys and documents: {keys_and_docs}
{damages}

--- MILEAGE ---
Start mileage: {format_km(reservation.start_mileage or 0)}
End mileage: {format_km(end_mileage)}
Driven: {format_km(mileage.km_driven)}
Allowance ({mileage.rental_days} day(s)): {format_km(mileage.km_limit)}
Over allowance: {format_km(mileage.km_over)}
Overage fee: {format_amount(mileage.overage_fee, terms.currency)}

--- STAFF NOTES ---
{notes or 'None.'}

--- CUSTOMER CONSENT ---
The customer agreed to the content of this protocol.
{placeholder}
"""
    return DocumentDraft(text=text, placeholder=placeholder)
