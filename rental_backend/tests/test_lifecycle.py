"""
Reservation Lifecycle Tests.

Drives the service against the in-memory database: booking, portal
self-service, approval, departure, return and rejection, including the
guarantee that a refused transition leaves nothing behind.
"""

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import select, func

from rental_backend.app.core.exceptions import (
    VehicleUnavailableError,
    InvalidIntervalError,
    MissingRelatedEntityError,
    InvalidMileageError,
    MissingSignatureError,
    IncompleteChecklistError,
    InvalidTokenStateError,
    IncompleteCustomerProfileError,
    InvalidStateTransitionError,
    PlaceholderNotFoundError,
    ResourceNotFoundError,
)
from rental_backend.app.models.audit_log import AuditLog
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.customer import Customer
from rental_backend.app.models.financial_transaction import FinancialTransaction
from rental_backend.app.models.handover_protocol import HandoverProtocol
from rental_backend.app.models.rental_enums import (
    ReservationStatus, VehicleStatus, HandoverKind, TransactionType, TransactionCategory
)
from rental_backend.app.models.reservation import Reservation
from rental_backend.app.models.vehicle import Vehicle
from rental_backend.app.models.vehicle_damage import VehicleDamage
from rental_backend.app.models.vehicle_lock import VehicleLock
from rental_backend.app.schemas.reservation import CustomerDetails, ReturnDetails, DamageReport
from rental_backend.app.services.audit import AuditAction, get_audit_trail

START = datetime(2025, 6, 2, 9, 0)
END = START + timedelta(hours=24)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 6, 2, hour, minute)


def return_details(**overrides) -> ReturnDetails:
    values = dict(
        end_mileage=50400,
        fuel_level="Full",
        cleanliness="Clean",
        keys_and_docs_ok=True,
        signature=b"return-signature",
    )
    values.update(overrides)
    return ReturnDetails(**values)


def portal_details(**overrides) -> CustomerDetails:
    values = dict(
        first_name="Petr",
        last_name="Svoboda",
        email="petr.svoboda@example.com",
        phone="+420 603 555 111",
        address="Husova 5, 11000 Praha",
        driver_license_number="EK778899",
    )
    values.update(overrides)
    return CustomerDetails(**values)


async def fresh(db, model, ident):
    return await db.get(model, ident, populate_existing=True)


async def scheduled_reservation(lifecycle, customer, vehicle, start=START, end=END):
    reservation = await lifecycle.create_reservation(customer.id, vehicle.id, start, end)
    await lifecycle.approve(reservation.id)
    return reservation.id


# --- End-to-end ---

async def test_full_rental_settles_base_price_plus_overage(lifecycle, db_session, vehicle, customer, storage):
    reservation = await lifecycle.create_reservation(customer.id, vehicle.id, START, END)
    assert reservation.status == ReservationStatus.PENDING_APPROVAL

    approval = await lifecycle.approve(reservation.id)
    assert approval.reservation.status == ReservationStatus.SCHEDULED
    assert "{{SIGNATURE:" in approval.contract.contract_text
    assert approval.contract.signed_at is None

    activation = await lifecycle.activate(reservation.id, 50000, b"departure-signature")
    assert activation.reservation.status == ReservationStatus.ACTIVE
    assert activation.reservation.start_mileage == 50000
    assert activation.contract.signed_at is not None
    assert "[signature: memory://signatures/1-departure.png]" in activation.contract.contract_text
    assert "{{SIGNATURE:" not in activation.contract.contract_text
    assert activation.protocol.kind == HandoverKind.DEPARTURE
    assert activation.protocol.mileage == 50000

    departed = await fresh(db_session, Vehicle, vehicle.id)
    assert departed.status == VehicleStatus.RENTED
    assert departed.current_mileage == 50000

    result = await lifecycle.complete(reservation.id, return_details())

    assert result.reservation.status == ReservationStatus.COMPLETED
    assert result.reservation.end_mileage == 50400
    assert result.charge.base_price == 1500
    assert result.charge.mileage.km_driven == 400
    assert result.charge.mileage.km_limit == 300
    assert result.charge.mileage.km_over == 100
    assert result.charge.mileage.overage_fee == 300
    assert result.charge.total_income == 1800
    assert result.protocol.kind == HandoverKind.RETURN
    assert "{{SIGNATURE:" not in result.protocol.protocol_text

    assert len(result.transactions) == 1
    income = result.transactions[0]
    assert income.type == TransactionType.INCOME
    assert income.amount == 1800
    assert income.reservation_id == reservation.id

    returned = await fresh(db_session, Vehicle, vehicle.id)
    assert returned.status == VehicleStatus.AVAILABLE
    assert returned.current_mileage == 50400

    protocols = (await db_session.execute(
        select(HandoverProtocol).where(HandoverProtocol.reservation_id == reservation.id)
    )).scalars().all()
    assert sorted(p.kind for p in protocols) == [HandoverKind.DEPARTURE, HandoverKind.RETURN]
    assert len(storage.files) == 2


async def test_return_with_refueling_forfeit_and_damage(lifecycle, db_session, vehicle, customer, storage):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    result = await lifecycle.complete(reservation_id, return_details(
        end_mileage=50100,
        refueling_cost=650.0,
        forfeit_deposit=True,
        damages=[DamageReport(description="Deep scratch", location="rear bumper", photo=b"jpeg")]
    ))

    categories = [t.category for t in result.transactions]
    assert categories == [
        TransactionCategory.RENTAL, TransactionCategory.REFUELING, TransactionCategory.FORFEITED_DEPOSIT
    ]
    assert result.transactions[0].amount == 1500
    assert result.transactions[1].type == TransactionType.EXPENSE
    assert result.transactions[1].amount == 650.0
    assert result.transactions[2].amount == 5000

    assert len(result.damage_ids) == 1
    damage = await fresh(db_session, VehicleDamage, result.damage_ids[0])
    assert damage.location == "rear bumper"
    assert damage.reservation_id == reservation_id
    assert damage.image_url.startswith("memory://damages/")


async def test_vehicle_lock_taken_on_departure_and_released_on_return(lifecycle, db_session, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    lock = (await db_session.execute(
        select(VehicleLock).where(VehicleLock.vehicle_id == vehicle.id)
    )).scalar_one()
    assert lock.released_at is None

    await lifecycle.complete(reservation_id, return_details())

    lock = await fresh(db_session, VehicleLock, lock.id)
    assert lock.released_at is not None


async def test_transitions_are_audited(lifecycle, db_session, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")
    await lifecycle.complete(reservation_id, return_details())

    trail = await get_audit_trail(db_session, reservation_id=reservation_id)
    assert [entry.action for entry in reversed(trail)] == [
        AuditAction.RESERVATION_CREATED,
        AuditAction.RESERVATION_APPROVED,
        AuditAction.VEHICLE_DEPARTED,
        AuditAction.VEHICLE_RETURNED,
        AuditAction.SETTLEMENT_RECORDED,
    ]

    departed = await get_audit_trail(db_session, action=AuditAction.VEHICLE_DEPARTED)
    assert departed[0].meta_data == {"vehicle_id": vehicle.id, "start_mileage": 50000}


# --- Booking ---

async def test_double_booking_rejected_back_to_back_accepted(lifecycle, vehicle, customer):
    await lifecycle.create_reservation(customer.id, vehicle.id, at(10), at(14), approve=True)

    with pytest.raises(VehicleUnavailableError) as exc:
        await lifecycle.create_reservation(customer.id, vehicle.id, at(13), at(16))
    assert exc.value.details["conflicting_reservation_ids"]

    accepted = await lifecycle.create_reservation(customer.id, vehicle.id, at(14), at(16))
    assert accepted.status == ReservationStatus.PENDING_APPROVAL


async def test_create_with_approve_drafts_contract(lifecycle, db_session, vehicle, customer):
    reservation = await lifecycle.create_reservation(customer.id, vehicle.id, START, END, approve=True)

    assert reservation.status == ReservationStatus.SCHEDULED
    contract = (await db_session.execute(
        select(Contract).where(Contract.reservation_id == reservation.id)
    )).scalar_one()
    assert contract.signature_placeholder in contract.contract_text
    assert "1,500 CZK" in contract.contract_text


async def test_aware_instants_are_compared_as_utc(lifecycle, vehicle, customer):
    await lifecycle.create_reservation(customer.id, vehicle.id, at(10), at(14), approve=True)
    utc = timezone.utc
    prague = timezone(timedelta(hours=2))

    with pytest.raises(VehicleUnavailableError):
        await lifecycle.create_reservation(
            customer.id, vehicle.id, at(13).replace(tzinfo=utc), at(16).replace(tzinfo=utc)
        )

    # 16:00-18:00 in Prague is 14:00-16:00 UTC, right after the existing booking
    accepted = await lifecycle.create_reservation(
        customer.id, vehicle.id, at(16).replace(tzinfo=prague), at(18).replace(tzinfo=prague)
    )
    assert accepted.start_date == at(14)
    assert accepted.end_date == at(16)

    result = await lifecycle.check_availability(
        vehicle.id, at(12).replace(tzinfo=utc), at(15).replace(tzinfo=utc)
    )
    assert result.available is False
    assert result.available_from == at(14, 20)


async def test_inverted_interval_rejected(lifecycle, vehicle, customer):
    with pytest.raises(InvalidIntervalError):
        await lifecycle.create_reservation(customer.id, vehicle.id, END, START)


async def test_booking_vehicle_in_maintenance_rejected(lifecycle, make_vehicle, customer):
    vehicle = await make_vehicle(license_plate="2BC 0001", status=VehicleStatus.MAINTENANCE)

    with pytest.raises(VehicleUnavailableError):
        await lifecycle.create_reservation(customer.id, vehicle.id, START, END)


async def test_booking_unknown_vehicle_or_customer(lifecycle, vehicle, customer):
    with pytest.raises(ResourceNotFoundError):
        await lifecycle.create_reservation(customer.id, 9999, START, END)
    with pytest.raises(ResourceNotFoundError):
        await lifecycle.create_reservation(9999, vehicle.id, START, END)


async def test_online_booking_creates_customer_once(lifecycle, db_session, vehicle):
    first = await lifecycle.create_online_booking(
        vehicle.id, at(9), at(12), portal_details(email="Petr.Svoboda@Example.com"),
        destination="Vienna", estimated_mileage=280
    )
    second = await lifecycle.create_online_booking(
        vehicle.id, at(13), at(17), portal_details(phone="")
    )

    assert first.status == ReservationStatus.PENDING_APPROVAL
    assert first.destination == "Vienna"
    assert first.estimated_mileage == 280
    assert first.customer_id == second.customer_id

    count = (await db_session.execute(select(func.count(Customer.id)))).scalar()
    assert count == 1


async def test_online_booking_requires_contact_details(lifecycle, vehicle):
    with pytest.raises(IncompleteCustomerProfileError) as exc:
        await lifecycle.create_online_booking(vehicle.id, at(9), at(12), portal_details(address=""))
    assert exc.value.details["missing_fields"] == ["address"]


# --- Portal ---

async def test_portal_submission_moves_to_pending_approval(lifecycle, db_session, vehicle, storage):
    link = await lifecycle.issue_portal_link(vehicle.id, START, END)
    assert link.status == ReservationStatus.PENDING_CUSTOMER
    assert link.customer_id is None
    assert link.portal_token

    view = await lifecycle.get_reservation_by_token(link.portal_token)
    assert view.vehicle_name == "Skoda Octavia"

    reservation = await lifecycle.submit_customer_details(
        link.portal_token, portal_details(), license_image=b"license-scan", license_filename="scan.png"
    )

    assert reservation.status == ReservationStatus.PENDING_APPROVAL
    assert reservation.portal_token_consumed_at is not None
    customer = await fresh(db_session, Customer, reservation.customer_id)
    assert customer.email == "petr.svoboda@example.com"
    assert customer.driver_license_image_url.startswith("memory://licenses/")
    assert customer.driver_license_image_url.endswith("scan.png")


async def test_portal_token_cannot_be_replayed(lifecycle, db_session, vehicle):
    link = await lifecycle.issue_portal_link(vehicle.id, START, END)
    token = link.portal_token
    reservation_id = link.id

    first = await lifecycle.submit_customer_details(token, portal_details(), license_image=b"scan")
    customer_id = first.customer_id

    with pytest.raises(InvalidTokenStateError):
        await lifecycle.submit_customer_details(
            token, portal_details(email="someone.else@example.com"), license_image=b"scan"
        )
    with pytest.raises(InvalidTokenStateError):
        await lifecycle.get_reservation_by_token(token)

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.customer_id == customer_id
    count = (await db_session.execute(select(func.count(Customer.id)))).scalar()
    assert count == 1


@pytest.mark.parametrize("token", ["", "not-a-real-token"])
async def test_unknown_or_missing_token_rejected(lifecycle, vehicle, token):
    with pytest.raises(InvalidTokenStateError):
        await lifecycle.submit_customer_details(token, portal_details(), license_image=b"scan")


async def test_incomplete_profile_keeps_token_usable(lifecycle, vehicle, storage):
    link = await lifecycle.issue_portal_link(vehicle.id, START, END)

    with pytest.raises(IncompleteCustomerProfileError) as exc:
        await lifecycle.submit_customer_details(link.portal_token, portal_details(phone=""))
    assert exc.value.details["missing_fields"] == ["phone", "driver_license_image"]
    assert storage.files == {}

    reservation = await lifecycle.submit_customer_details(
        link.portal_token, portal_details(), license_image=b"scan"
    )
    assert reservation.status == ReservationStatus.PENDING_APPROVAL


async def test_license_on_file_satisfies_portal(lifecycle, vehicle, customer):
    link = await lifecycle.issue_portal_link(vehicle.id, START, END)

    reservation = await lifecycle.submit_customer_details(
        link.portal_token, portal_details(email=customer.email)
    )

    assert reservation.customer_id == customer.id


# --- Approval and rejection ---

async def test_approve_rechecks_availability(lifecycle, vehicle, customer):
    pending = await lifecycle.create_reservation(customer.id, vehicle.id, at(13), at(16))
    await lifecycle.create_reservation(customer.id, vehicle.id, at(10), at(14), approve=True)

    with pytest.raises(VehicleUnavailableError):
        await lifecycle.approve(pending.id)


async def test_approve_without_customer_fails(lifecycle, db_session, vehicle):
    orphan = Reservation(
        customer_id=None, vehicle_id=vehicle.id, start_date=START, end_date=END,
        status=ReservationStatus.PENDING_APPROVAL
    )
    db_session.add(orphan)
    await db_session.commit()

    with pytest.raises(MissingRelatedEntityError) as exc:
        await lifecycle.approve(orphan.id)
    assert exc.value.details["entity"] == "customer"


async def test_approve_twice_is_an_illegal_transition(lifecycle, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle.approve(reservation_id)


@pytest.mark.parametrize("approve", [False, True])
async def test_reject_deletes_reservation_and_draft(lifecycle, db_session, vehicle, customer, approve):
    reservation = await lifecycle.create_reservation(customer.id, vehicle.id, START, END, approve=approve)
    reservation_id = reservation.id

    await lifecycle.reject(reservation_id)

    assert await fresh(db_session, Reservation, reservation_id) is None
    contracts = (await db_session.execute(
        select(func.count(Contract.id)).where(Contract.reservation_id == reservation_id)
    )).scalar()
    assert contracts == 0
    trail = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.RESERVATION_REJECTED)
    )).scalar_one()
    assert trail.reservation_id == reservation_id


async def test_reject_active_reservation_refused(lifecycle, db_session, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle.reject(reservation_id)

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.ACTIVE


# --- Activation guards ---

async def test_activation_without_signature_changes_nothing(lifecycle, db_session, vehicle, customer, storage):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)

    with pytest.raises(MissingSignatureError):
        await lifecycle.activate(reservation_id, 50000, None)

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.SCHEDULED
    assert storage.files == {}


async def test_activation_below_current_mileage_changes_nothing(lifecycle, db_session, vehicle, customer, storage):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)

    with pytest.raises(InvalidMileageError):
        await lifecycle.activate(reservation_id, 49999, b"sig")

    reservation = await fresh(db_session, Reservation, reservation_id)
    current = await fresh(db_session, Vehicle, vehicle.id)
    assert reservation.status == ReservationStatus.SCHEDULED
    assert current.current_mileage == 50000
    assert current.status == VehicleStatus.AVAILABLE
    assert storage.files == {}


async def test_activation_rechecks_availability(lifecycle, db_session, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle, at(10), at(14))
    # A concurrent booking slipped in for an overlapping window
    rival = Reservation(
        customer_id=customer.id, vehicle_id=vehicle.id, start_date=at(12), end_date=at(16),
        status=ReservationStatus.SCHEDULED
    )
    db_session.add(rival)
    await db_session.commit()

    with pytest.raises(VehicleUnavailableError):
        await lifecycle.activate(reservation_id, 50000, b"sig")

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.SCHEDULED


async def test_activation_refused_while_vehicle_is_out(lifecycle, vehicle, customer):
    first = await scheduled_reservation(lifecycle, customer, vehicle, at(8), at(10))
    second = await scheduled_reservation(lifecycle, customer, vehicle, at(10), at(12))
    await lifecycle.activate(first, 50000, b"sig")

    with pytest.raises(VehicleUnavailableError):
        await lifecycle.activate(second, 50000, b"sig")


async def test_activation_refuses_contract_without_placeholder(lifecycle, db_session, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    contract = (await db_session.execute(
        select(Contract).where(Contract.reservation_id == reservation_id)
    )).scalar_one()
    contract.contract_text = "Contract text edited by hand"
    await db_session.commit()

    with pytest.raises(PlaceholderNotFoundError):
        await lifecycle.activate(reservation_id, 50000, b"sig")

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.SCHEDULED


async def test_activate_pending_reservation_is_illegal(lifecycle, vehicle, customer):
    reservation = await lifecycle.create_reservation(customer.id, vehicle.id, START, END)

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle.activate(reservation.id, 50000, b"sig")


# --- Completion guards ---

async def test_completion_requires_checklist(lifecycle, db_session, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    with pytest.raises(IncompleteChecklistError) as exc:
        await lifecycle.complete(reservation_id, return_details(fuel_level=None, keys_and_docs_ok=None))
    assert exc.value.details["missing_fields"] == ["fuel_level", "keys_and_docs_ok"]

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.ACTIVE


async def test_completion_accepts_missing_keys_as_an_answer(lifecycle, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    result = await lifecycle.complete(reservation_id, return_details(keys_and_docs_ok=False))

    assert "Keys and documents: Missing / incomplete" in result.protocol.protocol_text


async def test_completion_requires_signature(lifecycle, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    with pytest.raises(MissingSignatureError):
        await lifecycle.complete(reservation_id, return_details(signature=None))


@pytest.mark.parametrize("end_mileage", [50000, 49900])
async def test_completion_requires_increasing_mileage(lifecycle, db_session, vehicle, customer, end_mileage):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)
    await lifecycle.activate(reservation_id, 50000, b"sig")

    with pytest.raises(InvalidMileageError):
        await lifecycle.complete(reservation_id, return_details(end_mileage=end_mileage))

    current = await fresh(db_session, Vehicle, vehicle.id)
    assert current.status == VehicleStatus.RENTED
    transactions = (await db_session.execute(select(func.count(FinancialTransaction.id)))).scalar()
    assert transactions == 0


async def test_completion_without_start_mileage_refused(lifecycle, db_session, vehicle, customer):
    corrupted = Reservation(
        customer_id=customer.id, vehicle_id=vehicle.id, start_date=START, end_date=END,
        status=ReservationStatus.ACTIVE, start_mileage=None
    )
    db_session.add(corrupted)
    await db_session.commit()
    reservation_id = corrupted.id

    with pytest.raises(InvalidMileageError) as exc:
        await lifecycle.complete(reservation_id, return_details())
    assert exc.value.details == {"reservation_id": reservation_id}

    reservation = await fresh(db_session, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.ACTIVE
    transactions = (await db_session.execute(select(func.count(FinancialTransaction.id)))).scalar()
    assert transactions == 0


async def test_complete_scheduled_reservation_is_illegal(lifecycle, vehicle, customer):
    reservation_id = await scheduled_reservation(lifecycle, customer, vehicle)

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle.complete(reservation_id, return_details())


# --- Read helpers ---

async def test_availability_reports_conflicts_and_next_free_slot(lifecycle, vehicle, customer):
    existing = await lifecycle.create_reservation(customer.id, vehicle.id, at(10), at(14), approve=True)

    result = await lifecycle.check_availability(vehicle.id, at(12), at(15))

    assert result.available is False
    assert result.conflicting_reservation_ids == [existing.id]
    assert result.available_from == at(14, 20)


async def test_quote_uses_rate_tiers(lifecycle, vehicle):
    quote = await lifecycle.quote(vehicle.id, at(9), at(20))

    assert quote.base_price == 1200
    assert quote.currency == "CZK"
