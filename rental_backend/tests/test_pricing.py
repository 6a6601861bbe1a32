"""
Pricing Engine Tests.

Rate tiers at their exact boundaries, started-day rounding and mileage
overage.
"""

import pytest
from datetime import datetime, timedelta

from rental_backend.app.core.exceptions import InvalidMileageError
from rental_backend.app.domain.rental.pricing import (
    RentalTerms, base_price, mileage_overage, rental_days, settle_rental
)
from rental_backend.app.models.rental_enums import VehicleStatus
from rental_backend.app.schemas.snapshots import VehicleSnapshot

START = datetime(2025, 6, 2, 9, 0)

VEHICLE = VehicleSnapshot(
    id=1, name="Skoda Octavia", license_plate="1AB 2345", status=VehicleStatus.AVAILABLE,
    current_mileage=50000, rate_4h=800, rate_12h=1200, daily_rate=1500
)

TERMS = RentalTerms(free_km_per_day=300, overage_fee_per_km=3.0, deposit_amount=5000.0)


@pytest.mark.parametrize("duration,expected", [
    (timedelta(hours=1), 800),
    (timedelta(hours=4), 800),
    (timedelta(hours=4, seconds=1), 1200),
    (timedelta(hours=12), 1200),
    (timedelta(hours=12, seconds=1), 1500),
    (timedelta(hours=23, minutes=59, seconds=59), 1500),
    (timedelta(hours=24), 1500),
    (timedelta(hours=24, seconds=1), 3000),
    (timedelta(days=3), 4500),
])
def test_base_price_tiers(duration, expected):
    assert base_price(VEHICLE, START, START + duration) == expected


@pytest.mark.parametrize("duration,days", [
    (timedelta(hours=2), 1),
    (timedelta(hours=24), 1),
    (timedelta(hours=24, minutes=1), 2),
    (timedelta(days=7), 7),
])
def test_rental_days_counts_started_days(duration, days):
    assert rental_days(START, START + duration) == days


def test_overage_charged_beyond_daily_allowance():
    charge = mileage_overage(START, START + timedelta(hours=24), 50000, 50400, TERMS)

    assert charge.rental_days == 1
    assert charge.km_limit == 300
    assert charge.km_driven == 400
    assert charge.km_over == 100
    assert charge.overage_fee == 300


@pytest.mark.parametrize("km_driven,km_over,fee", [
    (350, 50, 150),
    (300, 0, 0),
    (0, 0, 0),
])
def test_overage_at_allowance_boundary(km_driven, km_over, fee):
    charge = mileage_overage(START, START + timedelta(hours=24), 50000, 50000 + km_driven, TERMS)

    assert charge.km_over == km_over
    assert charge.overage_fee == fee


def test_short_rental_still_gets_a_full_day_allowance():
    charge = mileage_overage(START, START + timedelta(hours=3), 1000, 1250, TERMS)

    assert charge.km_limit == 300
    assert charge.km_over == 0
    assert charge.overage_fee == 0


def test_multi_day_allowance():
    charge = mileage_overage(START, START + timedelta(days=2, hours=1), 0, 1000, TERMS)

    assert charge.rental_days == 3
    assert charge.km_limit == 900
    assert charge.km_over == 100


def test_backwards_odometer_rejected():
    with pytest.raises(InvalidMileageError):
        mileage_overage(START, START + timedelta(hours=5), 50000, 49999, TERMS)


def test_settle_rental_end_to_end_figures():
    charge = settle_rental(VEHICLE, START, START + timedelta(hours=24), 50000, 50400, TERMS)

    assert charge.base_price == 1500
    assert charge.mileage.overage_fee == 300
    assert charge.total_income == 1800


def test_terms_follow_settings():
    from rental_backend.app.core.config import Settings

    config = Settings(free_km_per_day=250, overage_fee_per_km=4.5, deposit_amount=3000, currency="EUR")
    terms = RentalTerms.from_settings(config)

    assert terms.free_km_per_day == 250
    assert terms.overage_fee_per_km == 4.5
    assert terms.deposit_amount == 3000
    assert terms.currency == "EUR"
