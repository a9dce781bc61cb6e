"""
ingest_service.py — Run one connector payload through the normalizers

Business Rules:
- When no source_id is given a new pending source is created (and committed)
  first; if normalization then fails that auto-created source is deleted
- An existing source must belong to the installation and still be pending
- All five normalizers run in one transaction, committed once
- On success the source becomes "ingested" with metadata
  {meaningful_estimates, required_min, totals{...}}
- Payloads from OAuth connectors get ingest_start / ingest_success /
  ingest_error connection events

Called by: routers/ingest.py, connectors (after fetch)
Depends on: services/normalizers.py, services/source_service.py,
            services/connection_events.py
"""

from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..models import Source
from ..schemas.connector import OAUTH_KINDS, ConnectorPayload
from .connection_events import log_connection_event
from .normalizers import (
    NormalizationError,
    normalize_clients,
    normalize_estimates,
    normalize_invoices,
    normalize_jobs,
    normalize_payments,
)
from .source_service import SourceStateError, advance_source_status, get_source


@dataclass
class IngestResult:
    source_id: str
    status: str
    received: int
    kept: int
    rejected: int
    meaningful_estimates: int
    required_min: int
    totals: dict[str, int] = field(default_factory=dict)


def run_ingest(
    db: Session,
    payload: ConnectorPayload,
    installation_id: str,
    *,
    source_id: str | None = None,
    source_name: str | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> IngestResult:
    settings = settings or get_settings()
    oauth_backed = payload.kind in OAUTH_KINDS

    auto_created = source_id is None
    if auto_created:
        source = Source(
            installation_id=installation_id,
            source_type=payload.kind,
            source_name=source_name or f"{payload.kind} import",
            status="pending",
            meta={},
        )
        db.add(source)
        db.commit()
        source_id = source.id
    else:
        source = get_source(db, source_id, installation_id)
        if source.status != "pending":
            raise SourceStateError(source_id, source.status, "ingest")

    if oauth_backed:
        log_connection_event(
            db, installation_id, "ingest_start",
            {"source_id": source_id, "kind": payload.kind}, provider=payload.kind,
        )

    received = sum(
        len(rows)
        for rows in (payload.estimates, payload.invoices, payload.jobs, payload.clients, payload.payments)
    )
    kwargs = {"now": now, "settings": settings, "commit": False}
    try:
        estimates = normalize_estimates(db, source_id, payload.estimates, **kwargs)
        invoices = normalize_invoices(db, source_id, payload.invoices, **kwargs)
        jobs = normalize_jobs(db, source_id, payload.jobs, **kwargs)
        clients = normalize_clients(db, source_id, payload.clients, **kwargs)
        payments = normalize_payments(db, source_id, payload.payments, **kwargs)

        totals = {
            "estimates": estimates.kept,
            "invoices": invoices.kept,
            "jobs": jobs.kept,
            "clients": clients.kept,
            "payments": payments.kept,
        }
        meta = dict(source.meta or {})
        meta.update(
            meaningful_estimates=estimates.meaningful,
            required_min=settings.required_min_estimates,
            totals=totals,
            window_days=settings.window_days,
        )
        if not advance_source_status(db, source_id, "ingested", meta=meta):
            raise SourceStateError(source_id, source.status, "ingest")
        db.commit()
    except (NormalizationError, SourceStateError) as e:
        db.rollback()
        if auto_created:
            _delete_source(db, source_id)
        if oauth_backed:
            log_connection_event(
                db, installation_id, "ingest_error",
                {"source_id": None if auto_created else source_id, "error": type(e).__name__},
                provider=payload.kind,
            )
        raise

    results = (estimates, invoices, jobs, clients, payments)
    kept = sum(r.kept for r in results)
    rejected = sum(r.rejected for r in results)
    logger.info(
        "Ingest complete",
        source_id=source_id,
        kind=payload.kind,
        kept=kept,
        rejected=rejected,
        meaningful=estimates.meaningful,
    )
    if oauth_backed:
        log_connection_event(
            db, installation_id, "ingest_success",
            {"source_id": source_id, "totals": totals, "meaningful_estimates": estimates.meaningful},
            provider=payload.kind,
        )

    return IngestResult(
        source_id=source_id,
        status="ingested",
        received=received,
        kept=kept,
        rejected=rejected,
        meaningful_estimates=estimates.meaningful,
        required_min=settings.required_min_estimates,
        totals=totals,
    )


def _delete_source(db: Session, source_id: str) -> None:
    source = db.get(Source, source_id)
    if source is not None:
        db.delete(source)
        db.commit()
        logger.info("Deleted auto-created source after failed ingest", source_id=source_id)
