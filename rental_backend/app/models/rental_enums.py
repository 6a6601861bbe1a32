"""
Rental-related enumerations.
"""

import enum


class VehicleStatus(str, enum.Enum):
    """Vehicle status enumeration."""
    AVAILABLE = "available"  # On the lot, can be handed over
    RENTED = "rented"  # Out with a customer (exactly one active reservation)
    MAINTENANCE = "maintenance"  # Blocked for booking


class ReservationStatus(str, enum.Enum):
    """Reservation status enumeration."""
    PENDING_CUSTOMER = "pending-customer"  # Portal link issued, customer has not submitted details
    PENDING_APPROVAL = "pending-approval"  # Waiting for staff approval
    SCHEDULED = "scheduled"  # Approved, contract drafted
    ACTIVE = "active"  # Vehicle departed
    COMPLETED = "completed"  # Vehicle returned (terminal)


class HandoverKind(str, enum.Enum):
    """Handover protocol kind."""
    DEPARTURE = "departure"
    RETURN = "return"


class TransactionType(str, enum.Enum):
    """Financial transaction type."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionCategory(str, enum.Enum):
    """What produced a financial transaction."""
    RENTAL = "rental"  # Base price plus mileage overage
    REFUELING = "refueling"
    FORFEITED_DEPOSIT = "forfeited_deposit"
    MANUAL = "manual"  # Entered by staff, not tied to a reservation


class DamageStatus(str, enum.Enum):
    """Vehicle damage status."""
    REPORTED = "reported"
    REPAIRED = "repaired"
