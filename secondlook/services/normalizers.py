"""
normalizers.py — Data-safety filter for connector rows

One normalizer per entity (estimates, invoices, jobs, clients, payments).
Each one takes canonical rows for a single source, keeps the ones that pass
the safety contract and writes them in one batch.

Business Rules:
- A row is rejected when its timestamp is unparsable, older than the window
  (90 days by default) or in the future
- A row is rejected when a required amount is missing, non-finite or negative
- Statuses collapse onto fixed vocabularies; unrecognized values → "unknown"
- Only allow-listed columns are stored; geo is lower-cased city and a 3-char
  postal prefix
- At most max_records_per_entity rows per source per entity; once the cap is
  reached the rest are counted as rejected, so kept + rejected == len(rows)
- Duplicate natural ids within a source are rejected
- The batch write is all-or-nothing: any DB error rolls back and raises
  NormalizationError

Called by: services/ingest_service.py
Depends on: models (normalized tables), services/statuses.py, utils/sanitize.py
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from pydantic import BaseModel, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..models import (
    ClientNormalized,
    EstimateNormalized,
    InvoiceNormalized,
    JobNormalized,
    PaymentNormalized,
)
from ..schemas.connector import ClientRow, EstimateRow, InvoiceRow, JobRow, PaymentRow
from ..utils.sanitize import (
    clean_id,
    parse_datetime,
    sanitize_city,
    sanitize_job_type,
    sanitize_money,
    sanitize_postal,
)
from .statuses import (
    is_meaningful,
    normalize_estimate_status,
    normalize_invoice_status,
    normalize_job_status,
    normalize_payment_type,
)

log = logging.getLogger(__name__)


class NormalizationError(Exception):
    """Persisting a normalized batch failed. Nothing from the batch was kept."""


@dataclass
class NormalizeResult:
    kept: int = 0
    rejected: int = 0
    meaningful: int = 0


class _Window:
    def __init__(self, now: datetime, days: int):
        self.now = now
        self.start = now - timedelta(days=days)

    def contains(self, ts: datetime | None) -> bool:
        return ts is not None and self.start <= ts <= self.now


def _amount(raw, *, required: bool) -> tuple[bool, float | None]:
    """Return (ok, amount). Missing optional amounts are ok with None."""
    if raw is None or raw == "":
        return (not required), None
    amount = sanitize_money(raw)
    if amount is None or amount < 0:
        return False, None
    return True, amount


# ── Row builders: return a model instance, or None to reject ─────────


def _build_estimate(row: EstimateRow, source_id: str, window: _Window):
    created = parse_datetime(row.created_at)
    if created is None or created > window.now:
        return None
    closed = parse_datetime(row.closed_at)
    if closed is not None and closed < created:
        closed = None
    updated = parse_datetime(row.updated_at)
    activity = closed or updated or created
    if not window.contains(activity):
        return None
    ok, amount = _amount(row.amount, required=True)
    if not ok:
        return None
    return EstimateNormalized(
        source_id=source_id,
        estimate_id=clean_id(row.estimate_id),
        created_at=created,
        updated_at=updated,
        closed_at=closed,
        amount=amount,
        status=normalize_estimate_status(row.status),
        job_type=sanitize_job_type(row.job_type),
        client_id=clean_id(row.client_id),
        job_id=clean_id(row.job_id),
        geo_city=sanitize_city(row.geo_city),
        geo_postal=sanitize_postal(row.geo_postal),
    )


def _build_invoice(row: InvoiceRow, source_id: str, window: _Window):
    invoice_date = parse_datetime(row.invoice_date)
    if not window.contains(invoice_date):
        return None
    ok, total = _amount(row.invoice_total, required=True)
    if not ok:
        return None
    return InvoiceNormalized(
        source_id=source_id,
        invoice_id=clean_id(row.invoice_id),
        invoice_date=invoice_date,
        invoice_total=total,
        invoice_status=normalize_invoice_status(row.invoice_status),
        linked_estimate_id=clean_id(row.linked_estimate_id),
        client_id=clean_id(row.client_id),
        job_id=clean_id(row.job_id),
    )


def _build_job(row: JobRow, source_id: str, window: _Window):
    created = parse_datetime(row.created_at)
    if created is None or created > window.now:
        return None
    start = parse_datetime(row.start_at)
    if not window.contains(start or created):
        return None
    ok, total = _amount(row.job_total, required=False)
    if not ok:
        return None
    return JobNormalized(
        source_id=source_id,
        job_id=clean_id(row.job_id),
        created_at=created,
        start_at=start,
        end_at=parse_datetime(row.end_at),
        job_status=normalize_job_status(row.job_status),
        job_total=total,
        job_type=sanitize_job_type(row.job_type),
        client_id=clean_id(row.client_id),
    )


def _build_client(row: ClientRow, source_id: str, window: _Window):
    created = parse_datetime(row.created_at)
    if created is None or created > window.now:
        return None
    updated = parse_datetime(row.updated_at)
    if not window.contains(updated or created):
        return None
    return ClientNormalized(
        source_id=source_id,
        client_id=clean_id(row.client_id),
        created_at=created,
        updated_at=updated,
        is_lead=bool(row.is_lead),
        geo_city=sanitize_city(row.geo_city),
        geo_postal=sanitize_postal(row.geo_postal),
    )


def _build_payment(row: PaymentRow, source_id: str, window: _Window):
    payment_date = parse_datetime(row.payment_date)
    if not window.contains(payment_date):
        return None
    ok, total = _amount(row.payment_total, required=True)
    if not ok:
        return None
    return PaymentNormalized(
        source_id=source_id,
        payment_id=clean_id(row.payment_id),
        payment_date=payment_date,
        payment_total=total,
        payment_type=normalize_payment_type(row.payment_type),
        invoice_id=clean_id(row.invoice_id),
        client_id=clean_id(row.client_id),
    )


# ── Shared driver ────────────────────────────────────────────────────


def _normalize(
    db: Session,
    source_id: str,
    rows: Iterable,
    *,
    row_type: type[BaseModel],
    model,
    id_attr: str,
    build: Callable,
    now: datetime | None,
    settings: Settings | None,
    commit: bool,
) -> tuple[NormalizeResult, list]:
    settings = settings or get_settings()
    window = _Window(now or datetime.now(timezone.utc), settings.window_days)
    existing = (
        db.query(func.count(model.id)).filter(model.source_id == source_id).scalar() or 0
    )
    capacity = max(settings.max_records_per_entity - existing, 0)

    result = NormalizeResult()
    accepted = []
    seen: set[str] = set()
    for raw in rows:
        if len(accepted) >= capacity:
            result.rejected += 1
            continue
        try:
            row = raw if isinstance(raw, row_type) else row_type.model_validate(raw)
        except ValidationError:
            result.rejected += 1
            continue
        obj = build(row, source_id, window)
        natural_id = getattr(obj, id_attr, None) if obj is not None else None
        if obj is None or natural_id is None or natural_id in seen:
            result.rejected += 1
            continue
        seen.add(natural_id)
        accepted.append(obj)

    try:
        db.add_all(accepted)
        db.flush()
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"{model.__tablename__}: batch write failed for source {source_id}: {e}")
        raise NormalizationError(f"failed to store {model.__tablename__} for source {source_id}") from e

    result.kept = len(accepted)
    log.info(
        f"{model.__tablename__}: source={source_id} kept={result.kept} rejected={result.rejected}"
    )
    return result, accepted


def normalize_estimates(db, source_id, rows, *, now=None, settings=None, commit=True) -> NormalizeResult:
    """Normalize estimate rows. `meaningful` counts kept rows in sent/accepted/converted."""
    result, accepted = _normalize(
        db, source_id, rows,
        row_type=EstimateRow, model=EstimateNormalized, id_attr="estimate_id",
        build=_build_estimate, now=now, settings=settings, commit=commit,
    )
    result.meaningful = sum(1 for e in accepted if is_meaningful(e.status))
    return result


def normalize_invoices(db, source_id, rows, *, now=None, settings=None, commit=True) -> NormalizeResult:
    result, _ = _normalize(
        db, source_id, rows,
        row_type=InvoiceRow, model=InvoiceNormalized, id_attr="invoice_id",
        build=_build_invoice, now=now, settings=settings, commit=commit,
    )
    return result


def normalize_jobs(db, source_id, rows, *, now=None, settings=None, commit=True) -> NormalizeResult:
    result, _ = _normalize(
        db, source_id, rows,
        row_type=JobRow, model=JobNormalized, id_attr="job_id",
        build=_build_job, now=now, settings=settings, commit=commit,
    )
    return result


def normalize_clients(db, source_id, rows, *, now=None, settings=None, commit=True) -> NormalizeResult:
    result, _ = _normalize(
        db, source_id, rows,
        row_type=ClientRow, model=ClientNormalized, id_attr="client_id",
        build=_build_client, now=now, settings=settings, commit=commit,
    )
    return result


def normalize_payments(db, source_id, rows, *, now=None, settings=None, commit=True) -> NormalizeResult:
    result, _ = _normalize(
        db, source_id, rows,
        row_type=PaymentRow, model=PaymentNormalized, id_attr="payment_id",
        build=_build_payment, now=now, settings=settings, commit=commit,
    )
    return result
