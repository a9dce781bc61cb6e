"""Bucket models — one fixed-shape aggregate row per source.

Band columns are a closed set; distributions are stored as JSON lists of
{key, count} objects in display order.
"""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String

from ..database import UTCDateTime
from .base import Base, utcnow


class EstimateBucket(Base):
    __tablename__ = "estimate_buckets"
    id = Column(Integer, primary_key=True)
    source_id = Column(
        String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    estimate_count = Column(Integer, nullable=False, default=0)
    meaningful_count = Column(Integer, nullable=False, default=0)

    price_band_lt_500 = Column(Integer, nullable=False, default=0)
    price_band_500_1500 = Column(Integer, nullable=False, default=0)
    price_band_1500_5000 = Column(Integer, nullable=False, default=0)
    price_band_5000_plus = Column(Integer, nullable=False, default=0)

    latency_band_0_2 = Column(Integer, nullable=False, default=0)
    latency_band_3_7 = Column(Integer, nullable=False, default=0)
    latency_band_8_21 = Column(Integer, nullable=False, default=0)
    latency_band_22_plus = Column(Integer, nullable=False, default=0)

    weekly_volume = Column(JSON, default=list)  # [{week, count}]
    job_type_distribution = Column(JSON, default=list)  # [{job_type, count}]
    status_distribution = Column(JSON, default=dict)  # {status: count}
    geo_city_distribution = Column(JSON, default=list)  # [{city, count}]
    geo_postal_prefix_distribution = Column(JSON, default=list)  # [{postal_prefix, count}]

    unique_client_count = Column(Integer, nullable=False, default=0)
    repeat_client_count = Column(Integer, nullable=False, default=0)

    first_activity_at = Column(UTCDateTime)
    last_activity_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class InvoiceBucket(Base):
    __tablename__ = "invoice_buckets"
    id = Column(Integer, primary_key=True)
    source_id = Column(
        String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    invoice_count = Column(Integer, nullable=False, default=0)

    price_band_lt_500 = Column(Integer, nullable=False, default=0)
    price_band_500_1500 = Column(Integer, nullable=False, default=0)
    price_band_1500_5000 = Column(Integer, nullable=False, default=0)
    price_band_5000_plus = Column(Integer, nullable=False, default=0)

    time_to_invoice_0_7 = Column(Integer, nullable=False, default=0)
    time_to_invoice_8_14 = Column(Integer, nullable=False, default=0)
    time_to_invoice_15_30 = Column(Integer, nullable=False, default=0)
    time_to_invoice_31_plus = Column(Integer, nullable=False, default=0)

    status_distribution = Column(JSON, default=list)  # [{status, count}] over every invoice status
    weekly_volume = Column(JSON, default=list)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
