from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Text, Numeric, Date,
    DateTime, ForeignKey, Index, Enum as SAEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from fieldops.storage.database import Base
from fieldops.models.customers import generate_id


class JobStatus(str, enum.Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    on_hold = "on_hold"
    completed = "completed"
    closed = "closed"
    cancelled = "cancelled"


class JobPriority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class AgreementStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_job_number", "job_number", unique=True),
        Index("ix_jobs_customer", "customer_id"),
        Index("ix_jobs_status", "status"),
        Index("ix_jobs_scheduled", "scheduled_date"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    job_number = Column(String, nullable=False)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    site_id = Column(String, ForeignKey("sites.id"), nullable=True)
    assigned_employee_id = Column(String, ForeignKey("employees.id"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SAEnum(JobStatus), default=JobStatus.scheduled, nullable=False)
    priority = Column(SAEnum(JobPriority), default=JobPriority.normal, nullable=False)
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    time_entries = relationship("TimeEntry", back_populates="job")


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (
        Index("ix_time_entries_job", "job_id"),
        Index("ix_time_entries_employee", "employee_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    employee_id = Column(String, ForeignKey("employees.id"), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)   # null while clocked in
    hours = Column(Float, default=0.0, nullable=False)
    is_billable = Column(Boolean, default=True, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    job = relationship("Job", back_populates="time_entries")


class CalendarEvent(Base):
    __tablename__ = "calendar_events"
    __table_args__ = (
        Index("ix_calendar_events_start", "start_time"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    employee_id = Column(String, ForeignKey("employees.id"), nullable=True)
    title = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    all_day = Column(Boolean, default=False, nullable=False)
    location = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class QuickNote(Base):
    __tablename__ = "quick_notes"

    id = Column(String, primary_key=True, default=generate_id)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    text = Column(Text, nullable=False)
    is_pinned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_job", "job_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    file_name = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    url = Column(String, nullable=True)
    size_bytes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ServiceAgreement(Base):
    __tablename__ = "service_agreements"
    __table_args__ = (
        Index("ix_service_agreements_customer", "customer_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True)
    site_id = Column(String, ForeignKey("sites.id"), nullable=True)
    agreement_number = Column(String, nullable=False)
    title = Column(String, nullable=True)
    coverage_level = Column(String, nullable=True)     # basic, premium...
    status = Column(SAEnum(AgreementStatus), default=AgreementStatus.pending, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    visits_included = Column(Integer, default=0, nullable=False)
    visits_used = Column(Integer, default=0, nullable=False)
    price = Column(Numeric(12, 2), default=0, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ServiceHistoryRecord(Base):
    __tablename__ = "service_history"
    __table_args__ = (
        Index("ix_service_history_asset", "asset_id"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    asset_id = Column(String, ForeignKey("assets.id"), nullable=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    service_date = Column(Date, nullable=True)
    description = Column(Text, nullable=True)
    technician = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class MaterialList(Base):
    __tablename__ = "material_lists"

    id = Column(String, primary_key=True, default=generate_id)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    name = Column(String, nullable=False)
    items_json = Column(Text, nullable=True)     # JSON: [{"product_id", "quantity"}]
    is_template = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
