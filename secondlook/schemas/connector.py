"""
schemas/connector.py — Canonical connector payload

Every connector (CSV file, Jobber, QuickBooks, ...) converts its own row
shapes into these models before anything reaches the normalizers. Unknown
keys are dropped on parse, so names, emails and street addresses that a
connector forgets to strip never get further than this boundary.

Called by: connectors/, routers/ingest.py, services/ingest_service.py
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ConnectorKind = Literal["file", "jobber", "quickbooks", "square", "stripe", "housecallpro", "joist"]

# Connector kinds that authenticate through an OAuth connection
OAUTH_KINDS = frozenset({"jobber", "quickbooks", "square", "stripe"})

Timestamp = datetime | str | None
Money = float | str | None


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class EstimateRow(_Row):
    estimate_id: str
    created_at: Timestamp = None
    updated_at: Timestamp = None
    closed_at: Timestamp = None
    amount: Money = None
    status: str | None = None
    job_type: str | None = None
    client_id: str | None = None
    job_id: str | None = None
    geo_city: str | None = None
    geo_postal: str | None = None


class InvoiceRow(_Row):
    invoice_id: str
    invoice_date: Timestamp = None
    invoice_total: Money = None
    invoice_status: str | None = None
    linked_estimate_id: str | None = None
    client_id: str | None = None
    job_id: str | None = None


class JobRow(_Row):
    job_id: str
    created_at: Timestamp = None
    start_at: Timestamp = None
    end_at: Timestamp = None
    job_status: str | None = None
    job_total: Money = None
    job_type: str | None = None
    client_id: str | None = None


class ClientRow(_Row):
    client_id: str
    created_at: Timestamp = None
    updated_at: Timestamp = None
    is_lead: bool = False
    geo_city: str | None = None
    geo_postal: str | None = None


class PaymentRow(_Row):
    payment_id: str
    payment_date: Timestamp = None
    payment_total: Money = None
    payment_type: str | None = None
    invoice_id: str | None = None
    client_id: str | None = None


class ConnectorPayload(BaseModel):
    """One batch of activity rows from a single connector fetch."""

    model_config = ConfigDict(extra="ignore")

    kind: ConnectorKind
    window_days: int = Field(default=90, ge=1, le=365)
    clients: list[ClientRow] = []
    estimates: list[EstimateRow] = []
    invoices: list[InvoiceRow] = []
    jobs: list[JobRow] = []
    payments: list[PaymentRow] = []


class IngestRequest(ConnectorPayload):
    source_id: str | None = None
    source_name: str | None = Field(default=None, max_length=255)


class IngestResponse(BaseModel):
    source_id: str
    status: str
    received: int
    kept: int
    rejected: int
    meaningful_estimates: int
    required_min: int
    totals: dict[str, int]
