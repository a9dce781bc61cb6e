"""Source models — one connector import and its normalized activity rows.

Normalized rows carry only allow-listed fields: ids, timestamps, amounts,
canonical statuses, job type and coarse geo (lower-cased city, 3-char postal
prefix). Names, emails and street addresses never reach these tables.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base, new_uuid, utcnow

SOURCE_STATUSES = ("pending", "ingested", "bucketed", "snapshot_generated", "insufficient_data")


class Source(Base):
    __tablename__ = "sources"
    id = Column(String(36), primary_key=True, default=new_uuid)
    installation_id = Column(String(64), nullable=False, index=True)
    source_type = Column(String(40), nullable=False)  # file, jobber, quickbooks, ...
    source_name = Column(String(255))
    status = Column(String(30), nullable=False, default="pending")
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    estimates = relationship("EstimateNormalized", cascade="all, delete-orphan", passive_deletes=True)
    invoices = relationship("InvoiceNormalized", cascade="all, delete-orphan", passive_deletes=True)
    jobs = relationship("JobNormalized", cascade="all, delete-orphan", passive_deletes=True)
    clients = relationship("ClientNormalized", cascade="all, delete-orphan", passive_deletes=True)
    payments = relationship("PaymentNormalized", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (Index("ix_sources_installation_created", "installation_id", "created_at"),)


class EstimateNormalized(Base):
    __tablename__ = "estimates_normalized"
    id = Column(Integer, primary_key=True)
    source_id = Column(String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    estimate_id = Column(String(128), nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime)
    closed_at = Column(UTCDateTime)
    amount = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)
    job_type = Column(String(80))
    client_id = Column(String(128))
    job_id = Column(String(128))
    geo_city = Column(String(120))
    geo_postal = Column(String(3))

    __table_args__ = (
        UniqueConstraint("source_id", "estimate_id", name="uq_estimates_source_estimate"),
        Index("ix_estimates_source", "source_id"),
    )


class InvoiceNormalized(Base):
    __tablename__ = "invoices_normalized"
    id = Column(Integer, primary_key=True)
    source_id = Column(String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    invoice_id = Column(String(128), nullable=False)
    invoice_date = Column(UTCDateTime, nullable=False)
    invoice_total = Column(Float, nullable=False)
    invoice_status = Column(String(20), nullable=False)
    linked_estimate_id = Column(String(128))
    client_id = Column(String(128))
    job_id = Column(String(128))

    __table_args__ = (
        UniqueConstraint("source_id", "invoice_id", name="uq_invoices_source_invoice"),
        Index("ix_invoices_source", "source_id"),
    )


class JobNormalized(Base):
    __tablename__ = "jobs_normalized"
    id = Column(Integer, primary_key=True)
    source_id = Column(String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    job_id = Column(String(128), nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    start_at = Column(UTCDateTime)
    end_at = Column(UTCDateTime)
    job_status = Column(String(20), nullable=False)
    job_total = Column(Float)
    job_type = Column(String(80))
    client_id = Column(String(128))

    __table_args__ = (
        UniqueConstraint("source_id", "job_id", name="uq_jobs_source_job"),
        Index("ix_jobs_source", "source_id"),
    )


class ClientNormalized(Base):
    __tablename__ = "clients_normalized"
    id = Column(Integer, primary_key=True)
    source_id = Column(String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(String(128), nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime)
    is_lead = Column(Boolean, default=False)
    geo_city = Column(String(120))
    geo_postal = Column(String(3))

    __table_args__ = (
        UniqueConstraint("source_id", "client_id", name="uq_clients_source_client"),
        Index("ix_clients_source", "source_id"),
    )


class PaymentNormalized(Base):
    __tablename__ = "payments_normalized"
    id = Column(Integer, primary_key=True)
    source_id = Column(String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    payment_id = Column(String(128), nullable=False)
    payment_date = Column(UTCDateTime, nullable=False)
    payment_total = Column(Float, nullable=False)
    payment_type = Column(String(20), nullable=False)
    invoice_id = Column(String(128))
    client_id = Column(String(128))

    __table_args__ = (
        UniqueConstraint("source_id", "payment_id", name="uq_payments_source_payment"),
        Index("ix_payments_source", "source_id"),
    )
