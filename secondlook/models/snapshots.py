"""Snapshot model — one report generation attempt and its lifecycle."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String

from ..database import UTCDateTime
from .base import Base, new_uuid, utcnow

SNAPSHOT_STATUSES = ("created", "queued", "running", "complete", "failed")
TERMINAL_SNAPSHOT_STATUSES = ("complete", "failed")


class Snapshot(Base):
    __tablename__ = "snapshots"
    id = Column(String(36), primary_key=True, default=new_uuid)
    source_id = Column(String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    installation_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="created")
    mode_used = Column(String(30))  # deterministic, externally_assisted
    estimate_count = Column(Integer)
    confidence_level = Column(String(10))  # low, medium, high
    input_summary = Column(JSON, default=dict)
    result = Column(JSON)
    error = Column(JSON)  # {kind, message}
    created_at = Column(UTCDateTime, default=utcnow)
    started_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)

    __table_args__ = (
        Index("ix_snapshots_source", "source_id"),
        Index("ix_snapshots_installation_created", "installation_id", "created_at"),
    )
