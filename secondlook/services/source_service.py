"""
source_service.py — Source lookup and forward-only status transitions

Source.status is the ordering barrier between pipeline steps:
pending → ingested → bucketed → {snapshot_generated | insufficient_data}.
Transitions are compare-and-set UPDATEs guarded on the expected prior
status, so two concurrent callers cannot both advance the same source and
nothing ever moves a source backwards.

Called by: services/ingest_service.py, services/bucketing.py,
           services/snapshot_service.py, routers/
Depends on: models (Source)
"""

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models import Source
from ..models.base import utcnow

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS = {
    "ingested": frozenset({"pending"}),
    "bucketed": frozenset({"ingested"}),
    "snapshot_generated": frozenset({"bucketed", "snapshot_generated", "insufficient_data"}),
    "insufficient_data": frozenset({"bucketed", "snapshot_generated", "insufficient_data"}),
}

BUCKETABLE_STATUSES = frozenset({"ingested", "bucketed", "snapshot_generated", "insufficient_data"})
SNAPSHOT_READY_STATUSES = frozenset({"bucketed", "snapshot_generated", "insufficient_data"})


class SourceNotFoundError(LookupError):
    pass


class SourceStateError(Exception):
    """Source is not in a status that allows the requested pipeline step."""

    def __init__(self, source_id: str, status: str, step: str):
        super().__init__(f"source {source_id} is '{status}', cannot {step}")
        self.source_id = source_id
        self.status = status
        self.step = step


def get_source(db: Session, source_id: str, installation_id: str | None = None) -> Source:
    """Load a source, scoped to an installation when one is given."""
    source = db.get(Source, source_id)
    if source is None or (installation_id is not None and source.installation_id != installation_id):
        raise SourceNotFoundError(source_id)
    return source


def advance_source_status(db: Session, source_id: str, to_status: str, *, meta: dict | None = None) -> bool:
    """Move a source to `to_status` if its current status allows it.

    Returns True when this call performed the transition. Does not commit.
    """
    allowed_from = ALLOWED_TRANSITIONS.get(to_status)
    if allowed_from is None:
        raise ValueError(f"unknown source status: {to_status}")
    values = {"status": to_status, "updated_at": utcnow()}
    if meta is not None:
        values["meta"] = meta
    result = db.execute(
        update(Source)
        .where(Source.id == source_id, Source.status.in_(allowed_from))
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def list_sources(db: Session, installation_id: str, limit: int = 50) -> list[Source]:
    """An installation's sources, newest first."""
    return (
        db.query(Source)
        .filter(Source.installation_id == installation_id)
        .order_by(Source.created_at.desc(), Source.id)
        .limit(limit)
        .all()
    )
