"""
Database models for the job feed catalog.

This module defines the SQLAlchemy ORM models for imported job postings
and the audit trail of import runs.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (  # type: ignore
    JSON, DateTime, Float, Index, Integer, String, Text, Boolean,
    CheckConstraint, UniqueConstraint, Uuid, func
)
from sqlalchemy.dialects.postgresql import JSONB  # type: ignore
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column  # type: ignore

# Identity fields forming the upsert conflict key for job postings
IDENTITY_FIELDS = ("company_slug", "internal_job_id")

# JSONB on PostgreSQL, plain JSON elsewhere
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class Job(Base):
    """
    A job posting reconciled from an external feed.

    Rows are keyed by (company_slug, internal_job_id); repeated imports
    update the same row instead of creating duplicates.
    """
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_slug: Mapped[str] = mapped_column(Text, nullable=False)
    internal_job_id: Mapped[str] = mapped_column(Text, nullable=False)
    job_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    company_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    departments: Mapped[Optional[list]] = mapped_column(JsonDocument, nullable=True)
    offices: Mapped[Optional[list]] = mapped_column(JsonDocument, nullable=True)
    employment_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    workplace_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    remote_hint: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    shift: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    requisition_open_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True)
    job_category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    benefits: Mapped[Optional[list]] = mapped_column(JsonDocument, nullable=True)
    travel_requirement: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    years_experience: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    experience_range: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contractor_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Location
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    state: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Compensation
    salary_currency: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    salary_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    salary_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    content_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_html: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Feed fields without a dedicated column
    extra: Mapped[Optional[dict]] = mapped_column(JsonDocument, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(*IDENTITY_FIELDS, name="uq_jobs_identity"),
        CheckConstraint(
            "salary_min IS NULL OR salary_min >= 0", name="jobs_salary_min_check"),
        CheckConstraint(
            "salary_max IS NULL OR salary_max >= 0", name="jobs_salary_max_check"),
        Index("idx_jobs_company_slug", "company_slug"),
    )


class ImportRun(Base):
    """
    Audit record for one import run.

    Stores the final counts and the capped sample of rejected records so
    an import can be inspected after the response has been returned.
    """
    __tablename__ = "import_run"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    feed_format: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    insert_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    read_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    written_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_sample: Mapped[Optional[list]] = mapped_column(JsonDocument, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('done', 'aborted')", name="import_run_status_check"),
        Index("idx_import_run_started_at", "started_at"),
    )
