"""Build the aggregate document a snapshot is scored from.

Reads only bucket rows, never normalized rows, so nothing per-customer can
leak into a report or a reasoning prompt.
"""

from sqlalchemy.orm import Session

from ..models import EstimateBucket, InvoiceBucket, Source
from .bucketing import LATENCY_BAND_COLUMNS, PRICE_BAND_COLUMNS, TIME_TO_INVOICE_COLUMNS


class BucketMissingError(LookupError):
    pass


def _bands(row, columns: dict[str, str]) -> list[dict]:
    return [{"band": band, "count": getattr(row, col) or 0} for band, col in columns.items()]


def _iso(dt) -> str | None:
    return dt.isoformat() if dt is not None else None


def load_aggregates(db: Session, source_id: str) -> dict:
    """Assemble the aggregates dict for a source from its persisted buckets.

    Raises BucketMissingError when the source was never bucketed.
    """
    bucket = db.query(EstimateBucket).filter(EstimateBucket.source_id == source_id).first()
    if bucket is None:
        raise BucketMissingError(source_id)
    source = db.get(Source, source_id)

    unique_clients = bucket.unique_client_count or 0
    repeat_clients = bucket.repeat_client_count or 0
    aggregates = {
        "source_id": source_id,
        "source_tool": source.source_type if source else None,
        "date_range": {
            "earliest": _iso(bucket.first_activity_at),
            "latest": _iso(bucket.last_activity_at),
        },
        "estimate_count": bucket.estimate_count,
        "meaningful_count": bucket.meaningful_count,
        "status_breakdown": {k: v for k, v in (bucket.status_distribution or {}).items() if v} or None,
        "weekly_volume": list(bucket.weekly_volume or []),
        "price_distribution": _bands(bucket, PRICE_BAND_COLUMNS),
        "latency_distribution": _bands(bucket, LATENCY_BAND_COLUMNS),
        "job_type_distribution": list(bucket.job_type_distribution or []),
        "geo_city_distribution": list(bucket.geo_city_distribution or []),
        "geo_postal_prefix_distribution": list(bucket.geo_postal_prefix_distribution or []),
        "unique_client_count": unique_clients,
        "repeat_client_count": repeat_clients,
        "repeat_client_ratio": round(repeat_clients / unique_clients, 4) if unique_clients else None,
        "invoice_signals": None,
    }

    invoice_bucket = db.query(InvoiceBucket).filter(InvoiceBucket.source_id == source_id).first()
    if invoice_bucket is not None:
        aggregates["invoice_signals"] = {
            "invoice_count": invoice_bucket.invoice_count,
            "price_distribution": _bands(invoice_bucket, PRICE_BAND_COLUMNS),
            "time_to_invoice": _bands(invoice_bucket, TIME_TO_INVOICE_COLUMNS),
            "status_distribution": list(invoice_bucket.status_distribution or []),
            "weekly_volume": list(invoice_bucket.weekly_volume or []),
        }
    return aggregates
