"""CSV file connector — uploaded estimate and invoice exports.

Header names are matched case-insensitively against common export
variations. Rows missing an id are skipped here; everything else (dates,
amounts, statuses) is judged by the normalizers.

Called by: routers/ingest.py (POST /api/ingest/file)
"""

import csv
import io
import logging

from ..schemas.connector import ConnectorPayload, EstimateRow, InvoiceRow
from .base import BaseConnector, ConnectorError

log = logging.getLogger(__name__)

MAX_FILE_BYTES = 5 * 1024 * 1024

# canonical field -> accepted header variations
ESTIMATE_HEADERS = {
    "estimate_id": {"estimate_id", "estimate id", "quote_id", "quote id", "quote #", "estimate #", "id"},
    "created_at": {"created_at", "created", "created date", "date", "estimate date", "quote date"},
    "updated_at": {"updated_at", "updated", "last updated"},
    "closed_at": {"closed_at", "closed", "closed date", "approved date", "approved_at"},
    "amount": {"amount", "total", "estimate total", "quote total", "price"},
    "status": {"status", "estimate status", "quote status"},
    "job_type": {"job_type", "job type", "service", "service type", "category"},
    "client_id": {"client_id", "client id", "customer_id", "customer id"},
    "geo_city": {"geo_city", "city"},
    "geo_postal": {"geo_postal", "postal", "postal code", "zip", "zip code", "postcode"},
}
INVOICE_HEADERS = {
    "invoice_id": {"invoice_id", "invoice id", "invoice #", "id"},
    "invoice_date": {"invoice_date", "invoice date", "created_at", "created", "date", "issued date"},
    "invoice_total": {"invoice_total", "invoice total", "total", "amount"},
    "invoice_status": {"invoice_status", "invoice status", "status"},
    "linked_estimate_id": {"linked_estimate_id", "estimate_id", "estimate id", "quote id"},
    "client_id": {"client_id", "client id", "customer_id", "customer id"},
}
REQUIRED_ESTIMATE_FIELDS = ("estimate_id", "created_at", "amount", "status")


def parse_csv(content: bytes) -> list[dict]:
    """Parse CSV bytes into row dicts with stripped, lower-cased headers."""
    text = content.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    return [
        {k.strip().lower(): (v or "").strip() for k, v in row.items() if k}
        for row in reader
    ]


def _header_map(headers, aliases: dict[str, set[str]]) -> dict[str, str]:
    """canonical field -> the header actually present in the file."""
    found = {}
    for field, names in aliases.items():
        for h in headers:
            if h in names:
                found[field] = h
                break
    return found


def _map_rows(rows: list[dict], aliases: dict[str, set[str]], id_field: str) -> list[dict]:
    if not rows:
        return []
    mapping = _header_map(rows[0].keys(), aliases)
    out = []
    for r in rows:
        mapped = {field: r.get(header) or None for field, header in mapping.items()}
        if not mapped.get(id_field):
            continue
        out.append(mapped)
    return out


class FileConnector(BaseConnector):
    kind = "file"

    def __init__(self, estimates_csv: bytes, invoices_csv: bytes | None = None, **kwargs):
        kwargs.setdefault("max_retries", 0)
        super().__init__(**kwargs)
        self.estimates_csv = estimates_csv
        self.invoices_csv = invoices_csv

    def _check_size(self, content: bytes, label: str) -> None:
        if len(content) > MAX_FILE_BYTES:
            raise ConnectorError(f"{label} file is larger than {MAX_FILE_BYTES // (1024 * 1024)} MB")

    def parse(self) -> ConnectorPayload:
        self._check_size(self.estimates_csv, "Estimates")
        raw = parse_csv(self.estimates_csv)
        if not raw:
            raise ConnectorError("File must contain a header row and at least one data row")
        mapping = _header_map(raw[0].keys(), ESTIMATE_HEADERS)
        missing = [f for f in REQUIRED_ESTIMATE_FIELDS if f not in mapping]
        if missing:
            raise ConnectorError(f"Missing required columns: {', '.join(missing)}")
        estimates = [EstimateRow(**r) for r in _map_rows(raw, ESTIMATE_HEADERS, "estimate_id")]

        invoices = []
        if self.invoices_csv:
            self._check_size(self.invoices_csv, "Invoices")
            invoices = [
                InvoiceRow(**r)
                for r in _map_rows(parse_csv(self.invoices_csv), INVOICE_HEADERS, "invoice_id")
            ]

        log.info(f"File connector parsed {len(estimates)} estimates, {len(invoices)} invoices")
        return ConnectorPayload(
            kind="file", window_days=self.window_days, estimates=estimates, invoices=invoices
        )

    async def _do_fetch(self) -> ConnectorPayload:
        return self.parse()
