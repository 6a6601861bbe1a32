"""
Reservation Lifecycle Service (Domain Logic).

Drives a reservation from booking to return:

    pending-customer → pending-approval → scheduled → active → completed

Every operation follows the same shape:
1. Load fresh rows and freeze them into snapshots
2. Run every guard (state machine, availability, mileage, signature,
   checklist, placeholder) against the snapshots
3. Upload signature/photo files
4. Apply all database mutations inside one unit of work

A guard failure raises before anything is written; a failure inside the unit
of work rolls the whole transition back.
"""

import logging
import secrets
from datetime import datetime, timedelta
from functools import wraps
from typing import List, Optional, Tuple

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from rental_backend.app.core.clock import Clock, system_clock
from rental_backend.app.core.config import settings
from rental_backend.app.core.exceptions import (
    AppException,
    ResourceNotFoundError,
    VehicleUnavailableError,
    MissingRelatedEntityError,
    InvalidMileageError,
    MissingSignatureError,
    IncompleteChecklistError,
    InvalidTokenStateError,
    IncompleteCustomerProfileError,
    PlaceholderNotFoundError,
)
from rental_backend.app.db.session import unit_of_work
from rental_backend.app.domain.rental.availability import (
    BLOCKING_STATUSES, validate_interval, find_conflicts, is_available, available_from
)
from rental_backend.app.domain.rental.documents import (
    render_contract, render_departure_protocol, render_return_protocol, substitute_signature
)
from rental_backend.app.domain.rental.pricing import RentalTerms, base_price, settle_rental
from rental_backend.app.domain.rental.settlement import record_settlement
from rental_backend.app.domain.rental.state_machine import Transition, ensure_transition
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.customer import Customer
from rental_backend.app.models.financial_transaction import FinancialTransaction
from rental_backend.app.models.handover_protocol import HandoverProtocol
from rental_backend.app.models.rental_enums import (
    ReservationStatus, VehicleStatus, HandoverKind, DamageStatus
)
from rental_backend.app.models.reservation import Reservation
from rental_backend.app.models.vehicle import Vehicle
from rental_backend.app.models.vehicle_damage import VehicleDamage
from rental_backend.app.schemas.billing import FinancialTransactionResponse
from rental_backend.app.schemas.reservation import (
    CustomerDetails,
    ReturnDetails,
    ReservationResponse,
    ContractResponse,
    HandoverProtocolResponse,
    ApprovalResult,
    ActivationResult,
    CompletionResult,
    PortalReservationResponse,
    AvailabilityResponse,
    QuoteResponse,
)
from rental_backend.app.schemas.snapshots import (
    VehicleSnapshot, CustomerSnapshot, ReservationSnapshot
)
from rental_backend.app.services.audit import log_event, AuditAction, AuditActor
from rental_backend.app.services.file_storage import FileStorage, store_file
from rental_backend.app.services.vehicle_locking import (
    vehicle_advisory_lock, create_vehicle_lock, release_vehicle_lock
)

logger = logging.getLogger("rental.lifecycle")

# Required before a self-service reservation can go to staff
PORTAL_PROFILE_FIELDS = (
    "first_name", "last_name", "email", "phone", "address", "driver_license_number"
)
# Required by the public booking form
ONLINE_BOOKING_FIELDS = ("first_name", "last_name", "email", "address")
RETURN_CHECKLIST_FIELDS = ("fuel_level", "cleanliness", "keys_and_docs_ok")

SIGNATURE_FOLDER = "signatures"
DAMAGE_FOLDER = "damages"
LICENSE_FOLDER = "licenses"


def _log_refusals(func):
    """Log typed guard failures of a lifecycle operation at WARNING."""
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except AppException as e:
            logger.warning("%s refused: %s %s", func.__name__, e.error_code, e.message)
            raise
    return wrapper


def _is_blank(value) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class ReservationLifecycleService:
    """
    Reservation lifecycle operations.

    Args:
        db: Database session
        redis_conn: Redis client for the per-vehicle advisory lock
        storage: File storage collaborator for signatures and photos
        clock: Source of "now"
        terms: Rental terms used for pricing and contract text
    """

    def __init__(
        self,
        db: AsyncSession,
        redis_conn,
        storage: FileStorage,
        clock: Clock = system_clock,
        terms: Optional[RentalTerms] = None
    ):
        self.db = db
        self.redis = redis_conn
        self.storage = storage
        self.clock = clock
        self.terms = terms or RentalTerms.from_settings()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _get_reservation(self, reservation_id: int) -> Reservation:
        reservation = await self.db.get(Reservation, reservation_id, populate_existing=True)
        if not reservation:
            raise ResourceNotFoundError("Reservation", reservation_id)
        return reservation

    async def _get_vehicle(self, vehicle_id: int) -> Vehicle:
        vehicle = await self.db.get(Vehicle, vehicle_id, populate_existing=True)
        if not vehicle:
            raise ResourceNotFoundError("Vehicle", vehicle_id)
        return vehicle

    async def _get_customer(self, customer_id: int) -> Customer:
        customer = await self.db.get(Customer, customer_id, populate_existing=True)
        if not customer:
            raise ResourceNotFoundError("Customer", customer_id)
        return customer

    async def _resolve_related(self, reservation: Reservation) -> Tuple[Vehicle, Customer]:
        """
        Customer and vehicle of a reservation that is past booking.

        Raises:
            MissingRelatedEntityError: If either reference cannot be resolved
        """
        vehicle = await self.db.get(Vehicle, reservation.vehicle_id, populate_existing=True)
        if not vehicle:
            raise MissingRelatedEntityError("vehicle", reservation.id, reservation.vehicle_id)

        customer = None
        if reservation.customer_id is not None:
            customer = await self.db.get(Customer, reservation.customer_id, populate_existing=True)
        if not customer:
            raise MissingRelatedEntityError("customer", reservation.id, reservation.customer_id)

        return vehicle, customer

    async def _get_contract(self, reservation_id: int) -> Optional[Contract]:
        result = await self.db.execute(
            select(Contract)
            .where(Contract.reservation_id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_customer_by_email(self, email: str) -> Optional[Customer]:
        result = await self.db.execute(
            select(Customer).where(Customer.email == _normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def _blocking_reservations(
        self,
        vehicle_id: int,
        exclude_id: Optional[int] = None
    ) -> List[ReservationSnapshot]:
        """Freshly read scheduled/active reservations of a vehicle."""
        stmt = select(Reservation).where(
            Reservation.vehicle_id == vehicle_id,
            Reservation.status.in_(BLOCKING_STATUSES)
        ).execution_options(populate_existing=True)
        if exclude_id is not None:
            stmt = stmt.where(Reservation.id != exclude_id)

        result = await self.db.execute(stmt)
        return [ReservationSnapshot.model_validate(r) for r in result.scalars().all()]

    async def _ensure_available(
        self,
        vehicle: VehicleSnapshot,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None
    ) -> None:
        """
        Raises:
            VehicleUnavailableError: If the vehicle is in maintenance or booked
        """
        if vehicle.status == VehicleStatus.MAINTENANCE:
            raise VehicleUnavailableError(vehicle.id, reason="Vehicle is in maintenance")

        existing = await self._blocking_reservations(vehicle.id, exclude_id)
        conflicts = find_conflicts(start, end, existing)
        if conflicts:
            raise VehicleUnavailableError(
                vehicle.id,
                conflicting_reservation_ids=[r.id for r in conflicts]
            )

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @_log_refusals
    async def create_reservation(
        self,
        customer_id: int,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        approve: bool = False,
        notes: Optional[str] = None
    ) -> Reservation:
        """
        Staff-entered reservation.

        Created as pending-approval, or directly as scheduled with a drafted
        contract when ``approve`` is set.
        """
        start, end = validate_interval(start, end)

        async with vehicle_advisory_lock(self.redis, vehicle_id):
            vehicle = await self._get_vehicle(vehicle_id)
            customer = await self._get_customer(customer_id)
            vehicle_snap = VehicleSnapshot.model_validate(vehicle)
            await self._ensure_available(vehicle_snap, start, end)

            status = ReservationStatus.SCHEDULED if approve else ReservationStatus.PENDING_APPROVAL
            async with unit_of_work(self.db):
                reservation = Reservation(
                    customer_id=customer.id,
                    vehicle_id=vehicle.id,
                    start_date=start,
                    end_date=end,
                    status=status,
                    notes=notes,
                    start_mileage=None,
                    end_mileage=None,
                    destination=None,
                    estimated_mileage=None
                )
                self.db.add(reservation)
                await self.db.flush()

                if approve:
                    self._draft_contract(
                        ReservationSnapshot.model_validate(reservation),
                        vehicle_snap,
                        CustomerSnapshot.model_validate(customer)
                    )

                await log_event(
                    self.db,
                    AuditAction.RESERVATION_CREATED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={"vehicle_id": vehicle.id, "customer_id": customer.id, "status": status.value}
                )

        logger.info("Reservation %s created for vehicle %s (%s)", reservation.id, vehicle_id, status.value)
        return reservation

    @_log_refusals
    async def issue_portal_link(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        notes: Optional[str] = None
    ) -> Reservation:
        """Reserve the window and hand out a one-time self-service token."""
        start, end = validate_interval(start, end)

        async with vehicle_advisory_lock(self.redis, vehicle_id):
            vehicle = await self._get_vehicle(vehicle_id)
            await self._ensure_available(VehicleSnapshot.model_validate(vehicle), start, end)

            async with unit_of_work(self.db):
                reservation = Reservation(
                    customer_id=None,
                    vehicle_id=vehicle.id,
                    start_date=start,
                    end_date=end,
                    status=ReservationStatus.PENDING_CUSTOMER,
                    notes=notes,
                    start_mileage=None,
                    end_mileage=None,
                    destination=None,
                    estimated_mileage=None,
                    portal_token=secrets.token_urlsafe(32)
                )
                self.db.add(reservation)
                await self.db.flush()

                await log_event(
                    self.db,
                    AuditAction.PORTAL_LINK_ISSUED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={"vehicle_id": vehicle.id}
                )

        logger.info("Portal link issued for reservation %s", reservation.id)
        return reservation

    @_log_refusals
    async def create_online_booking(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        customer: CustomerDetails,
        destination: Optional[str] = None,
        estimated_mileage: Optional[int] = None
    ) -> Reservation:
        """Public booking form: find or create the customer, wait for approval."""
        start, end = validate_interval(start, end)
        missing = [f for f in ONLINE_BOOKING_FIELDS if _is_blank(getattr(customer, f))]
        if missing:
            raise IncompleteCustomerProfileError(missing)

        async with vehicle_advisory_lock(self.redis, vehicle_id):
            vehicle = await self._get_vehicle(vehicle_id)
            await self._ensure_available(VehicleSnapshot.model_validate(vehicle), start, end)
            existing = await self._find_customer_by_email(customer.email)

            async with unit_of_work(self.db):
                record = self._apply_profile(existing, customer)
                await self.db.flush()

                reservation = Reservation(
                    customer_id=record.id,
                    vehicle_id=vehicle.id,
                    start_date=start,
                    end_date=end,
                    status=ReservationStatus.PENDING_APPROVAL,
                    notes=None,
                    start_mileage=None,
                    end_mileage=None,
                    destination=destination,
                    estimated_mileage=estimated_mileage
                )
                self.db.add(reservation)
                await self.db.flush()

                await log_event(
                    self.db,
                    AuditAction.ONLINE_BOOKING_CREATED,
                    actor=AuditActor.PORTAL,
                    reservation_id=reservation.id,
                    metadata={"vehicle_id": vehicle.id, "customer_id": record.id}
                )

        logger.info("Online booking %s created for vehicle %s", reservation.id, vehicle_id)
        return reservation

    def _apply_profile(self, existing: Optional[Customer], details: CustomerDetails) -> Customer:
        """Create the customer, or fill in the fields the submission provides."""
        if existing is None:
            customer = Customer(
                first_name=details.first_name.strip(),
                last_name=details.last_name.strip(),
                email=_normalize_email(details.email),
                phone=details.phone or None,
                address=details.address or None,
                company_id=details.company_id or None,
                driver_license_number=details.driver_license_number or None,
                driver_license_image_url=None
            )
            self.db.add(customer)
            return customer

        for field in ("first_name", "last_name", "phone", "address", "company_id", "driver_license_number"):
            value = getattr(details, field)
            if not _is_blank(value):
                setattr(existing, field, value.strip())
        return existing

    # ------------------------------------------------------------------
    # Self-service portal
    # ------------------------------------------------------------------

    async def _get_by_token(self, token: Optional[str]) -> Reservation:
        """
        Raises:
            InvalidTokenStateError: If the token is missing, unknown or consumed
        """
        if _is_blank(token):
            raise InvalidTokenStateError("Portal token is missing")

        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.portal_token == token)
            .execution_options(populate_existing=True)
        )
        reservation = result.scalar_one_or_none()
        if reservation is None:
            raise InvalidTokenStateError("Portal link is unknown")
        if (
            reservation.portal_token_consumed_at is not None
            or reservation.status != ReservationStatus.PENDING_CUSTOMER
        ):
            raise InvalidTokenStateError("Portal link has already been used")
        return reservation

    @_log_refusals
    async def get_reservation_by_token(self, token: str) -> PortalReservationResponse:
        reservation = await self._get_by_token(token)
        vehicle = await self.db.get(Vehicle, reservation.vehicle_id)
        return PortalReservationResponse(
            reservation_id=reservation.id,
            vehicle_name=vehicle.name if vehicle else "",
            start_date=reservation.start_date,
            end_date=reservation.end_date,
            status=reservation.status
        )

    @_log_refusals
    async def submit_customer_details(
        self,
        token: str,
        details: CustomerDetails,
        license_image: Optional[bytes] = None,
        license_filename: str = "license.jpg"
    ) -> Reservation:
        """
        pending-customer → pending-approval.

        The token is consumed by this call; a replay fails with
        ``InvalidTokenStateError`` and changes nothing.
        """
        reservation = await self._get_by_token(token)
        ensure_transition(reservation.status, Transition.SUBMIT_CUSTOMER_DETAILS)

        existing = None
        if not _is_blank(details.email):
            existing = await self._find_customer_by_email(details.email)

        missing = [f for f in PORTAL_PROFILE_FIELDS if _is_blank(getattr(details, f))]
        license_on_file = existing is not None and existing.driver_license_image_url
        if not license_image and not license_on_file:
            missing.append("driver_license_image")
        if missing:
            raise IncompleteCustomerProfileError(missing)

        image_url = None
        if license_image:
            image_url = await store_file(self.storage, LICENSE_FOLDER, license_filename, license_image)

        now = self.clock.now()
        async with unit_of_work(self.db):
            customer = self._apply_profile(existing, details)
            if image_url:
                customer.driver_license_image_url = image_url
            await self.db.flush()

            # Conditional update: only one submission can consume the token
            result = await self.db.execute(
                update(Reservation)
                .where(
                    Reservation.id == reservation.id,
                    Reservation.portal_token_consumed_at.is_(None)
                )
                .values(
                    customer_id=customer.id,
                    status=ReservationStatus.PENDING_APPROVAL,
                    portal_token_consumed_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTokenStateError("Portal link has already been used")

            await log_event(
                self.db,
                AuditAction.CUSTOMER_DETAILS_SUBMITTED,
                actor=AuditActor.PORTAL,
                reservation_id=reservation.id,
                metadata={"customer_id": customer.id}
            )

        logger.info("Customer %s submitted details for reservation %s", customer.id, reservation.id)
        return await self._get_reservation(reservation.id)

    # ------------------------------------------------------------------
    # Staff decisions
    # ------------------------------------------------------------------

    def _draft_contract(
        self,
        reservation: ReservationSnapshot,
        vehicle: VehicleSnapshot,
        customer: CustomerSnapshot
    ) -> Contract:
        now = self.clock.now()
        draft = render_contract(
            customer,
            vehicle,
            reservation,
            base_price(vehicle, reservation.start_date, reservation.end_date),
            self.terms,
            now
        )
        contract = Contract(
            reservation_id=reservation.id,
            customer_id=customer.id,
            vehicle_id=vehicle.id,
            generated_at=now,
            contract_text=draft.text,
            signature_placeholder=draft.placeholder,
            signed_at=None
        )
        self.db.add(contract)
        return contract

    @_log_refusals
    async def approve(self, reservation_id: int) -> ApprovalResult:
        """pending-approval → scheduled, drafting the contract."""
        reservation = await self._get_reservation(reservation_id)
        ensure_transition(reservation.status, Transition.APPROVE)

        async with vehicle_advisory_lock(self.redis, reservation.vehicle_id):
            reservation = await self._get_reservation(reservation_id)
            target = ensure_transition(reservation.status, Transition.APPROVE)
            vehicle, customer = await self._resolve_related(reservation)

            reservation_snap = ReservationSnapshot.model_validate(reservation)
            vehicle_snap = VehicleSnapshot.model_validate(vehicle)
            await self._ensure_available(
                vehicle_snap, reservation_snap.start_date, reservation_snap.end_date,
                exclude_id=reservation.id
            )

            async with unit_of_work(self.db):
                reservation.status = target
                contract = self._draft_contract(
                    reservation_snap, vehicle_snap, CustomerSnapshot.model_validate(customer)
                )
                await self.db.flush()

                await log_event(
                    self.db,
                    AuditAction.RESERVATION_APPROVED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={"contract_id": contract.id}
                )

        logger.info("Reservation %s approved, contract %s drafted", reservation.id, contract.id)
        return ApprovalResult(
            reservation=ReservationResponse.model_validate(reservation),
            contract=ContractResponse.model_validate(contract)
        )

    @_log_refusals
    async def reject(self, reservation_id: int) -> None:
        """Delete a reservation that has not departed yet, with its draft contract."""
        reservation = await self._get_reservation(reservation_id)
        ensure_transition(reservation.status, Transition.REJECT)

        async with vehicle_advisory_lock(self.redis, reservation.vehicle_id):
            reservation = await self._get_reservation(reservation_id)
            previous = reservation.status
            ensure_transition(previous, Transition.REJECT)

            async with unit_of_work(self.db):
                await self.db.execute(
                    delete(Contract).where(Contract.reservation_id == reservation.id)
                )
                await log_event(
                    self.db,
                    AuditAction.RESERVATION_REJECTED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={
                        "previous_status": ReservationStatus(previous).value,
                        "vehicle_id": reservation.vehicle_id,
                        "customer_id": reservation.customer_id
                    }
                )
                await self.db.delete(reservation)

        logger.info("Reservation %s rejected and deleted", reservation_id)

    # ------------------------------------------------------------------
    # Handover
    # ------------------------------------------------------------------

    @_log_refusals
    async def activate(
        self,
        reservation_id: int,
        start_mileage: int,
        signature: Optional[bytes]
    ) -> ActivationResult:
        """
        scheduled → active: the vehicle leaves with the customer.

        Re-checks availability against fresh data under the vehicle lock, so
        two reservations approved for overlapping windows cannot both depart.
        """
        reservation = await self._get_reservation(reservation_id)
        ensure_transition(reservation.status, Transition.ACTIVATE)
        if not signature:
            raise MissingSignatureError("vehicle departure")

        async with vehicle_advisory_lock(self.redis, reservation.vehicle_id):
            reservation = await self._get_reservation(reservation_id)
            target = ensure_transition(reservation.status, Transition.ACTIVATE)
            vehicle, customer = await self._resolve_related(reservation)

            reservation_snap = ReservationSnapshot.model_validate(reservation)
            vehicle_snap = VehicleSnapshot.model_validate(vehicle)
            customer_snap = CustomerSnapshot.model_validate(customer)

            if vehicle_snap.status == VehicleStatus.RENTED:
                raise VehicleUnavailableError(vehicle.id, reason="Vehicle is already out on another rental")
            await self._ensure_available(
                vehicle_snap, reservation_snap.start_date, reservation_snap.end_date,
                exclude_id=reservation.id
            )
            if start_mileage < vehicle_snap.current_mileage:
                raise InvalidMileageError(
                    "Start mileage is below the vehicle's current reading",
                    details={"start_mileage": start_mileage, "current_mileage": vehicle_snap.current_mileage}
                )

            contract = await self._get_contract(reservation.id)
            if contract is not None and contract.signature_placeholder not in contract.contract_text:
                raise PlaceholderNotFoundError(contract.signature_placeholder)

            now = self.clock.now()
            departure = render_departure_protocol(
                customer_snap, vehicle_snap, reservation_snap, start_mileage, now
            )

            signature_url = await store_file(self.storage, SIGNATURE_FOLDER, "departure.png", signature)

            async with unit_of_work(self.db):
                if contract is None:
                    # Scheduled without a draft (legacy rows): draft it now
                    contract = self._draft_contract(reservation_snap, vehicle_snap, customer_snap)
                contract.contract_text = substitute_signature(
                    contract.contract_text, contract.signature_placeholder, signature_url
                )
                contract.signed_at = now

                vehicle.status = VehicleStatus.RENTED
                vehicle.current_mileage = start_mileage

                reservation.status = target
                reservation.start_mileage = start_mileage

                protocol = HandoverProtocol(
                    reservation_id=reservation.id,
                    customer_id=customer.id,
                    vehicle_id=vehicle.id,
                    kind=HandoverKind.DEPARTURE,
                    generated_at=now,
                    protocol_text=departure.finalize(signature_url),
                    mileage=start_mileage,
                    signature_url=signature_url
                )
                self.db.add(protocol)
                await self.db.flush()

                await create_vehicle_lock(self.db, vehicle.id, reservation.id, now)

                await log_event(
                    self.db,
                    AuditAction.VEHICLE_DEPARTED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={"vehicle_id": vehicle.id, "start_mileage": start_mileage}
                )

        logger.info("Reservation %s active, vehicle %s departed at %s km", reservation.id, vehicle.id, start_mileage)
        return ActivationResult(
            reservation=ReservationResponse.model_validate(reservation),
            contract=ContractResponse.model_validate(contract),
            protocol=HandoverProtocolResponse.model_validate(protocol)
        )

    @_log_refusals
    async def complete(self, reservation_id: int, details: ReturnDetails) -> CompletionResult:
        """
        active → completed: the vehicle is back.

        Order of effects: damages, return protocol, vehicle state, reservation
        state, pricing, settlement transactions, lock release.
        """
        reservation = await self._get_reservation(reservation_id)
        ensure_transition(reservation.status, Transition.COMPLETE)

        missing = [f for f in RETURN_CHECKLIST_FIELDS if _is_blank(getattr(details, f))]
        if missing:
            raise IncompleteChecklistError(missing)
        if not details.signature:
            raise MissingSignatureError("vehicle return")

        async with vehicle_advisory_lock(self.redis, reservation.vehicle_id):
            reservation = await self._get_reservation(reservation_id)
            target = ensure_transition(reservation.status, Transition.COMPLETE)
            vehicle, customer = await self._resolve_related(reservation)

            reservation_snap = ReservationSnapshot.model_validate(reservation)
            vehicle_snap = VehicleSnapshot.model_validate(vehicle)
            customer_snap = CustomerSnapshot.model_validate(customer)

            start_mileage = reservation_snap.start_mileage
            if start_mileage is None:
                raise InvalidMileageError(
                    "Active reservation has no recorded start mileage",
                    details={"reservation_id": reservation.id}
                )
            if details.end_mileage <= start_mileage:
                raise InvalidMileageError(
                    "End mileage must be greater than start mileage",
                    details={"start_mileage": start_mileage, "end_mileage": details.end_mileage}
                )

            charge = settle_rental(
                vehicle_snap,
                reservation_snap.start_date,
                reservation_snap.end_date,
                start_mileage,
                details.end_mileage,
                self.terms
            )
            now = self.clock.now()
            return_draft = render_return_protocol(
                customer_snap,
                vehicle_snap,
                reservation_snap,
                details.end_mileage,
                charge.mileage,
                self.terms,
                details.fuel_level,
                details.cleanliness,
                details.keys_and_docs_ok,
                details.notes,
                len(details.damages),
                now
            )
            drafts = record_settlement(
                reservation_snap,
                vehicle_snap,
                customer_snap,
                charge,
                details.refueling_cost,
                details.forfeit_deposit,
                self.terms.deposit_amount,
                now
            )

            signature_url = await store_file(self.storage, SIGNATURE_FOLDER, "return.png", details.signature)
            photo_urls = []
            for damage in details.damages:
                photo_url = None
                if damage.photo:
                    photo_url = await store_file(self.storage, DAMAGE_FOLDER, damage.photo_filename, damage.photo)
                photo_urls.append(photo_url)

            async with unit_of_work(self.db):
                damages = [
                    VehicleDamage(
                        vehicle_id=vehicle.id,
                        reservation_id=reservation.id,
                        description=damage.description,
                        location=damage.location,
                        image_url=photo_url,
                        reported_at=now,
                        status=DamageStatus.REPORTED
                    )
                    for damage, photo_url in zip(details.damages, photo_urls)
                ]
                self.db.add_all(damages)

                protocol = HandoverProtocol(
                    reservation_id=reservation.id,
                    customer_id=customer.id,
                    vehicle_id=vehicle.id,
                    kind=HandoverKind.RETURN,
                    generated_at=now,
                    protocol_text=return_draft.finalize(signature_url),
                    mileage=details.end_mileage,
                    signature_url=signature_url
                )
                self.db.add(protocol)

                vehicle.status = VehicleStatus.AVAILABLE
                vehicle.current_mileage = details.end_mileage

                reservation.status = target
                reservation.end_mileage = details.end_mileage
                if details.notes:
                    reservation.notes = details.notes

                transactions = [FinancialTransaction(**draft.model_dump()) for draft in drafts]
                self.db.add_all(transactions)
                await self.db.flush()

                await release_vehicle_lock(self.db, vehicle.id, reservation.id, now)

                await log_event(
                    self.db,
                    AuditAction.VEHICLE_RETURNED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={
                        "vehicle_id": vehicle.id,
                        "end_mileage": details.end_mileage,
                        "damage_ids": [d.id for d in damages]
                    }
                )
                await log_event(
                    self.db,
                    AuditAction.SETTLEMENT_RECORDED,
                    actor=AuditActor.STAFF,
                    reservation_id=reservation.id,
                    metadata={
                        "transaction_ids": [t.id for t in transactions],
                        "total_income": charge.total_income
                    }
                )

        logger.info(
            "Reservation %s completed: %s km driven, income %.2f %s",
            reservation.id, charge.mileage.km_driven, charge.total_income, self.terms.currency
        )
        return CompletionResult(
            reservation=ReservationResponse.model_validate(reservation),
            protocol=HandoverProtocolResponse.model_validate(protocol),
            charge=charge,
            transactions=[FinancialTransactionResponse.model_validate(t) for t in transactions],
            damage_ids=[d.id for d in damages]
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_reservation(self, reservation_id: int) -> Reservation:
        return await self._get_reservation(reservation_id)

    async def check_availability(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime
    ) -> AvailabilityResponse:
        """Availability of a vehicle for a window, plus when it frees up."""
        start, end = validate_interval(start, end)
        vehicle = VehicleSnapshot.model_validate(await self._get_vehicle(vehicle_id))
        existing = await self._blocking_reservations(vehicle_id)

        return AvailabilityResponse(
            vehicle_id=vehicle_id,
            start_date=start,
            end_date=end,
            available=is_available(vehicle, start, end, existing),
            conflicting_reservation_ids=[r.id for r in find_conflicts(start, end, existing)],
            available_from=available_from(
                vehicle, start, existing,
                buffer=timedelta(minutes=settings.preparation_buffer_minutes)
            )
        )

    async def quote(self, vehicle_id: int, start: datetime, end: datetime) -> QuoteResponse:
        """Base price preview for a window."""
        start, end = validate_interval(start, end)
        vehicle = VehicleSnapshot.model_validate(await self._get_vehicle(vehicle_id))
        return QuoteResponse(
            vehicle_id=vehicle_id,
            start_date=start,
            end_date=end,
            base_price=base_price(vehicle, start, end),
            currency=self.terms.currency
        )
