"""
bucketing.py — Turn normalized rows into fixed-shape bucket aggregates

Business Rules:
- Price bands: <500, 500-1500, 1500-5000, 5000+ (by amount)
- Decision latency bands: 0-2d, 3-7d, 8-21d, 22+d (whole days from created
  to closed, only for estimates with a closed_at)
- Weekly volume: ISO week of created_at, ascending, only weeks with rows
- Job type / city / postal prefix: descending by count, ties keep first-seen
  order; missing job type → "unknown"
- Repeat client = client with 2+ meaningful estimates
- Invoices: same price bands, time-to-invoice bands 0-7d, 8-14d, 15-30d, 31+d
  for invoices linked to a known estimate, status counts over every invoice status
- One bucket row per source (upsert), so re-running is idempotent
- A source must be ingested (or later) to bucket; ingested → bucketed

Called by: routers/bucket.py
Depends on: models, services/source_service.py, services/statuses.py
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    ClientNormalized,
    EstimateBucket,
    EstimateNormalized,
    InvoiceBucket,
    InvoiceNormalized,
)
from .source_service import BUCKETABLE_STATUSES, SourceStateError, advance_source_status, get_source
from .statuses import ESTIMATE_STATUSES, INVOICE_STATUSES, is_meaningful

log = logging.getLogger(__name__)

PRICE_BAND_COLUMNS = {
    "<500": "price_band_lt_500",
    "500-1500": "price_band_500_1500",
    "1500-5000": "price_band_1500_5000",
    "5000+": "price_band_5000_plus",
}
LATENCY_BAND_COLUMNS = {
    "0-2d": "latency_band_0_2",
    "3-7d": "latency_band_3_7",
    "8-21d": "latency_band_8_21",
    "22+d": "latency_band_22_plus",
}
TIME_TO_INVOICE_COLUMNS = {
    "0-7d": "time_to_invoice_0_7",
    "8-14d": "time_to_invoice_8_14",
    "15-30d": "time_to_invoice_15_30",
    "31+d": "time_to_invoice_31_plus",
}


class BucketingError(Exception):
    pass


@dataclass
class BucketResult:
    source_id: str
    status: str
    estimate_count: int
    invoice_count: int
    weeks: int


# ── Band helpers ─────────────────────────────────────────────────────


def price_band(amount: float) -> str:
    if amount < 500:
        return "<500"
    if amount < 1500:
        return "500-1500"
    if amount < 5000:
        return "1500-5000"
    return "5000+"


def _whole_days(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 86400)


def latency_band(days: int) -> str:
    if days <= 2:
        return "0-2d"
    if days <= 7:
        return "3-7d"
    if days <= 21:
        return "8-21d"
    return "22+d"


def time_to_invoice_band(days: int) -> str:
    if days <= 7:
        return "0-7d"
    if days <= 14:
        return "8-14d"
    if days <= 30:
        return "15-30d"
    return "31+d"


def iso_week(dt: datetime) -> str:
    year, week, _ = dt.isocalendar()
    return f"{year}-W{week:02d}"


def _weekly(dates) -> list[dict]:
    counts = Counter(iso_week(d) for d in dates)
    return [{"week": w, "count": c} for w, c in sorted(counts.items())]


def _ranked(values, key: str) -> list[dict]:
    """Counts sorted by count descending; Counter keeps first-seen order for ties."""
    counts = Counter(values)
    ordered = sorted(counts.items(), key=lambda kv: -kv[1])
    return [{key: value, "count": c} for value, c in ordered]


# ── Pure aggregation ─────────────────────────────────────────────────


def compute_estimate_buckets(estimates: list, clients: list | None = None) -> dict:
    """Aggregate estimate rows into bucket column values."""
    client_geo = {c.client_id: (c.geo_city, c.geo_postal) for c in (clients or [])}

    values = {col: 0 for col in PRICE_BAND_COLUMNS.values()}
    values.update({col: 0 for col in LATENCY_BAND_COLUMNS.values()})
    cities, postals, meaningful_by_client = [], [], Counter()
    statuses = Counter()

    for e in estimates:
        values[PRICE_BAND_COLUMNS[price_band(e.amount)]] += 1
        if e.closed_at is not None:
            days = max(_whole_days(e.created_at, e.closed_at), 0)
            values[LATENCY_BAND_COLUMNS[latency_band(days)]] += 1
        statuses[e.status] += 1

        fallback_city, fallback_postal = client_geo.get(e.client_id, (None, None))
        city = e.geo_city or fallback_city
        postal = e.geo_postal or fallback_postal
        if city:
            cities.append(city)
        if postal:
            postals.append(postal)
        if e.client_id and is_meaningful(e.status):
            meaningful_by_client[e.client_id] += 1

    created = [e.created_at for e in estimates]
    values.update(
        estimate_count=len(estimates),
        meaningful_count=sum(1 for e in estimates if is_meaningful(e.status)),
        weekly_volume=_weekly(created),
        job_type_distribution=_ranked((e.job_type or "unknown" for e in estimates), "job_type"),
        status_distribution={s: statuses.get(s, 0) for s in ESTIMATE_STATUSES},
        geo_city_distribution=_ranked(cities, "city"),
        geo_postal_prefix_distribution=_ranked(postals, "postal_prefix"),
        unique_client_count=len({e.client_id for e in estimates if e.client_id}),
        repeat_client_count=sum(1 for n in meaningful_by_client.values() if n >= 2),
        first_activity_at=min(created) if created else None,
        last_activity_at=max(created) if created else None,
    )
    return values


def compute_invoice_buckets(invoices: list, estimates: list) -> dict:
    """Aggregate invoice rows; time-to-invoice uses the linked estimate's close date."""
    anchors = {e.estimate_id: e.closed_at or e.created_at for e in estimates}

    values = {col: 0 for col in PRICE_BAND_COLUMNS.values()}
    values.update({col: 0 for col in TIME_TO_INVOICE_COLUMNS.values()})
    statuses = Counter()
    for inv in invoices:
        values[PRICE_BAND_COLUMNS[price_band(inv.invoice_total)]] += 1
        statuses[inv.invoice_status] += 1
        anchor = anchors.get(inv.linked_estimate_id) if inv.linked_estimate_id else None
        if anchor is not None:
            days = max(_whole_days(anchor, inv.invoice_date), 0)
            values[TIME_TO_INVOICE_COLUMNS[time_to_invoice_band(days)]] += 1

    values.update(
        invoice_count=len(invoices),
        status_distribution=[{"status": s, "count": statuses.get(s, 0)} for s in INVOICE_STATUSES],
        weekly_volume=_weekly(inv.invoice_date for inv in invoices),
    )
    return values


# ── Persistence ──────────────────────────────────────────────────────


def _upsert(db: Session, model, source_id: str, values: dict):
    row = db.query(model).filter(model.source_id == source_id).first()
    if row is None:
        row = model(source_id=source_id)
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    db.flush()
    return row


def _rows(db: Session, model, source_id: str, *order_by) -> list:
    return db.query(model).filter(model.source_id == source_id).order_by(*order_by, model.id).all()


def bucket_estimates(db: Session, source_id: str) -> EstimateBucket:
    """Upsert the estimate bucket for one source. Flushes; the caller commits."""
    estimates = _rows(db, EstimateNormalized, source_id, EstimateNormalized.created_at)
    clients = _rows(db, ClientNormalized, source_id)
    return _upsert(db, EstimateBucket, source_id, compute_estimate_buckets(estimates, clients))


def bucket_invoices(db: Session, source_id: str) -> InvoiceBucket | None:
    """Upsert the invoice bucket, or return None when the source has no invoices."""
    invoices = _rows(db, InvoiceNormalized, source_id, InvoiceNormalized.invoice_date)
    if not invoices:
        return None
    estimates = _rows(db, EstimateNormalized, source_id)
    return _upsert(db, InvoiceBucket, source_id, compute_invoice_buckets(invoices, estimates))


def bucket_source(db: Session, source_id: str, installation_id: str | None = None) -> BucketResult:
    """Bucket a source's estimates and invoices and mark it bucketed.

    Raises SourceStateError while the source is still pending.
    """
    source = get_source(db, source_id, installation_id)
    if source.status not in BUCKETABLE_STATUSES:
        raise SourceStateError(source_id, source.status, "bucket")

    try:
        estimate_bucket = bucket_estimates(db, source_id)
        invoice_bucket = bucket_invoices(db, source_id)
        advance_source_status(db, source_id, "bucketed")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"Bucketing failed for source {source_id}: {e}")
        raise BucketingError(f"failed to bucket source {source_id}") from e

    db.refresh(source)
    result = BucketResult(
        source_id=source_id,
        status=source.status,
        estimate_count=estimate_bucket.estimate_count,
        invoice_count=invoice_bucket.invoice_count if invoice_bucket is not None else 0,
        weeks=len(estimate_bucket.weekly_volume or []),
    )
    log.info(
        f"Bucketed source {source_id}: estimates={result.estimate_count} "
        f"invoices={result.invoice_count} weeks={result.weeks}"
    )
    return result
