"""
Customer-side entities: who the work is for and where it happens.

  Company  - a commercial account (property manager, builder, landlord).
  Customer - the billable party; optionally belongs to a Company.
  Site     - a service address owned by a Customer.
  Employee - technicians and office staff.
  Asset    - installed equipment at a Site (furnace, water heater, panel).
"""

from sqlalchemy import (
    Column, String, Boolean, Text, Numeric, Date,
    DateTime, ForeignKey, Index, Enum as SAEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid

from fieldops.storage.database import Base


def generate_id():
    return str(uuid.uuid4())


class CustomerType(str, enum.Enum):
    residential = "residential"
    commercial = "commercial"


class Company(Base):
    __tablename__ = "companies"
    __table_args__ = (
        Index("ix_companies_name", "name"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customers = relationship("Customer", back_populates="company")


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        Index("ix_customers_name", "name"),
        Index("ix_customers_company", "company_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    company_id = Column(String, ForeignKey("companies.id"), nullable=True)
    name = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    customer_type = Column(SAEnum(CustomerType), default=CustomerType.residential, nullable=False)
    primary_phone = Column(String, nullable=True)
    primary_email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip = Column(String, nullable=True)
    balance_owed = Column(Numeric(12, 2), default=0, nullable=False)
    tags = Column(String, nullable=True)           # comma separated
    notes = Column(Text, nullable=True)
    needs_review = Column(Boolean, default=False, nullable=False)  # created in the field
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="customers")
    sites = relationship("Site", back_populates="customer")


class Site(Base):
    __tablename__ = "sites"
    __table_args__ = (
        Index("ix_sites_customer", "customer_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    company_id = Column(String, ForeignKey("companies.id"), nullable=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip = Column(String, nullable=True)
    property_type = Column(String, nullable=True)   # house, apartment, retail...
    access_notes = Column(Text, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="sites")
    assets = relationship("Asset", back_populates="site")


class Employee(Base):
    __tablename__ = "employees"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    role = Column(String, nullable=True)            # tech, office, owner
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    hourly_rate = Column(Numeric(12, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Asset(Base):
    __tablename__ = "assets"
    __table_args__ = (
        Index("ix_assets_site", "site_id"),
        Index("ix_assets_serial", "serial_number"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    site_id = Column(String, ForeignKey("sites.id"), nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    name = Column(String, nullable=False)
    asset_type = Column(String, nullable=True)
    brand = Column(String, nullable=True)
    model_number = Column(String, nullable=True)
    serial_number = Column(String, nullable=True)
    install_date = Column(Date, nullable=True)
    warranty_expires = Column(Date, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    site = relationship("Site", back_populates="assets")
