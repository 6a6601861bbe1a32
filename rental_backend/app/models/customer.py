"""
Customer database model.

Customers are created by staff or through the self-service portal and are
referenced by id from reservations.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class Customer(Base):
    """Customer model."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(255), nullable=True)
    company_id = Column(String(20), nullable=True)  # business registration number

    # Driver license
    driver_license_number = Column(String(50), nullable=True)
    driver_license_image_url = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Customer(id={self.id}, email='{self.email}')>"
