"""
Money and stock: what is sold, what it costs, and what is owed.
"""

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Text, Numeric, Date,
    DateTime, ForeignKey, Index, Enum as SAEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from fieldops.storage.database import Base
from fieldops.models.customers import generate_id


class EstimateStatus(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    accepted = "accepted"
    declined = "declined"
    expired = "expired"


class InvoiceStatus(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    void = "void"


# ── Catalog & stock ───────────────────────────────────────────────────────────

class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    contact_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_sku", "sku"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    supplier_id = Column(String, ForeignKey("suppliers.id"), nullable=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True)
    category = Column(String, nullable=True)
    unit_price = Column(Numeric(12, 2), default=0, nullable=False)
    unit_cost = Column(Numeric(12, 2), default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        Index("ix_inventory_items_product", "product_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    product_id = Column(String, ForeignKey("products.id"), nullable=True)
    name = Column(String, nullable=False)
    location = Column(String, nullable=True)       # warehouse, truck 2...
    quantity = Column(Integer, default=0, nullable=False)
    min_quantity = Column(Integer, default=0, nullable=False)
    unit_cost = Column(Numeric(12, 2), default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class DropdownOption(Base):
    """User-editable pick lists (job types, expense categories...)."""
    __tablename__ = "dropdown_options"
    __table_args__ = (
        Index("ix_dropdown_options_category", "category"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    category = Column(String, nullable=False)
    value = Column(String, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ── Estimates & invoices ──────────────────────────────────────────────────────

class Estimate(Base):
    __tablename__ = "estimates"
    __table_args__ = (
        Index("ix_estimates_customer", "customer_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    estimate_number = Column(String, nullable=False)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    site_id = Column(String, ForeignKey("sites.id"), nullable=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    title = Column(String, nullable=True)
    status = Column(SAEnum(EstimateStatus), default=EstimateStatus.draft, nullable=False)
    issue_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=True)
    subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    lines = relationship("EstimateLine", back_populates="estimate", cascade="all, delete-orphan")


class EstimateLine(Base):
    __tablename__ = "estimate_lines"

    id = Column(String, primary_key=True, default=generate_id)
    estimate_id = Column(String, ForeignKey("estimates.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=True)
    description = Column(String, nullable=False)
    quantity = Column(Float, default=1.0, nullable=False)
    unit_price = Column(Numeric(12, 2), default=0, nullable=False)
    line_total = Column(Numeric(12, 2), default=0, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    estimate = relationship("Estimate", back_populates="lines")


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_customer", "customer_id"),
        Index("ix_invoices_status", "status"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    invoice_number = Column(String, nullable=False)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    estimate_id = Column(String, ForeignKey("estimates.id"), nullable=True)
    status = Column(SAEnum(InvoiceStatus), default=InvoiceStatus.draft, nullable=False)
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), default=0, nullable=False)
    amount_paid = Column(Numeric(12, 2), default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    lines = relationship("InvoiceLine", back_populates="invoice", cascade="all, delete-orphan")


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id = Column(String, primary_key=True, default=generate_id)
    invoice_id = Column(String, ForeignKey("invoices.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=True)
    description = Column(String, nullable=False)
    quantity = Column(Float, default=1.0, nullable=False)
    unit_price = Column(Numeric(12, 2), default=0, nullable=False)
    line_total = Column(Numeric(12, 2), default=0, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    invoice = relationship("Invoice", back_populates="lines")


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        Index("ix_expenses_job", "job_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    employee_id = Column(String, ForeignKey("employees.id"), nullable=True)
    supplier_id = Column(String, ForeignKey("suppliers.id"), nullable=True)
    category = Column(String, nullable=True)
    description = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), default=0, nullable=False)
    expense_date = Column(Date, nullable=True)
    receipt_url = Column(String, nullable=True)
    is_reimbursable = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
