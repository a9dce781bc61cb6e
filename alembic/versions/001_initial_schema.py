"""initial schema - sources, normalized rows, buckets, snapshots, connections

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    ]


def _source_fk():
    return sa.Column(
        "source_id", sa.String(36), sa.ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )


def _bands(*names):
    return [sa.Column(n, sa.Integer(), nullable=False, server_default="0") for n in names]


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("installation_id", sa.String(64), nullable=False),
        sa.Column("source_type", sa.String(40), nullable=False),
        sa.Column("source_name", sa.String(255)),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("metadata", sa.JSON()),
        *_timestamps(),
    )
    op.create_index("ix_sources_installation_id", "sources", ["installation_id"])
    op.create_index("ix_sources_installation_created", "sources", ["installation_id", "created_at"])

    op.create_table(
        "estimates_normalized",
        sa.Column("id", sa.Integer(), primary_key=True),
        _source_fk(),
        sa.Column("estimate_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("closed_at", sa.DateTime()),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("job_type", sa.String(80)),
        sa.Column("client_id", sa.String(128)),
        sa.Column("job_id", sa.String(128)),
        sa.Column("geo_city", sa.String(120)),
        sa.Column("geo_postal", sa.String(3)),
        sa.UniqueConstraint("source_id", "estimate_id", name="uq_estimates_source_estimate"),
    )
    op.create_index("ix_estimates_source", "estimates_normalized", ["source_id"])

    op.create_table(
        "invoices_normalized",
        sa.Column("id", sa.Integer(), primary_key=True),
        _source_fk(),
        sa.Column("invoice_id", sa.String(128), nullable=False),
        sa.Column("invoice_date", sa.DateTime(), nullable=False),
        sa.Column("invoice_total", sa.Float(), nullable=False),
        sa.Column("invoice_status", sa.String(20), nullable=False),
        sa.Column("linked_estimate_id", sa.String(128)),
        sa.Column("client_id", sa.String(128)),
        sa.Column("job_id", sa.String(128)),
        sa.UniqueConstraint("source_id", "invoice_id", name="uq_invoices_source_invoice"),
    )
    op.create_index("ix_invoices_source", "invoices_normalized", ["source_id"])

    op.create_table(
        "jobs_normalized",
        sa.Column("id", sa.Integer(), primary_key=True),
        _source_fk(),
        sa.Column("job_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("start_at", sa.DateTime()),
        sa.Column("end_at", sa.DateTime()),
        sa.Column("job_status", sa.String(20), nullable=False),
        sa.Column("job_total", sa.Float()),
        sa.Column("job_type", sa.String(80)),
        sa.Column("client_id", sa.String(128)),
        sa.UniqueConstraint("source_id", "job_id", name="uq_jobs_source_job"),
    )
    op.create_index("ix_jobs_source", "jobs_normalized", ["source_id"])

    op.create_table(
        "clients_normalized",
        sa.Column("id", sa.Integer(), primary_key=True),
        _source_fk(),
        sa.Column("client_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("is_lead", sa.Boolean()),
        sa.Column("geo_city", sa.String(120)),
        sa.Column("geo_postal", sa.String(3)),
        sa.UniqueConstraint("source_id", "client_id", name="uq_clients_source_client"),
    )
    op.create_index("ix_clients_source", "clients_normalized", ["source_id"])

    op.create_table(
        "payments_normalized",
        sa.Column("id", sa.Integer(), primary_key=True),
        _source_fk(),
        sa.Column("payment_id", sa.String(128), nullable=False),
        sa.Column("payment_date", sa.DateTime(), nullable=False),
        sa.Column("payment_total", sa.Float(), nullable=False),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("invoice_id", sa.String(128)),
        sa.Column("client_id", sa.String(128)),
        sa.UniqueConstraint("source_id", "payment_id", name="uq_payments_source_payment"),
    )
    op.create_index("ix_payments_source", "payments_normalized", ["source_id"])

    op.create_table(
        "estimate_buckets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "source_id", sa.String(36), sa.ForeignKey("sources.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        *_bands(
            "estimate_count", "meaningful_count",
            "price_band_lt_500", "price_band_500_1500", "price_band_1500_5000", "price_band_5000_plus",
            "latency_band_0_2", "latency_band_3_7", "latency_band_8_21", "latency_band_22_plus",
            "unique_client_count", "repeat_client_count",
        ),
        sa.Column("weekly_volume", sa.JSON()),
        sa.Column("job_type_distribution", sa.JSON()),
        sa.Column("status_distribution", sa.JSON()),
        sa.Column("geo_city_distribution", sa.JSON()),
        sa.Column("geo_postal_prefix_distribution", sa.JSON()),
        sa.Column("first_activity_at", sa.DateTime()),
        sa.Column("last_activity_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "invoice_buckets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "source_id", sa.String(36), sa.ForeignKey("sources.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        *_bands(
            "invoice_count",
            "price_band_lt_500", "price_band_500_1500", "price_band_1500_5000", "price_band_5000_plus",
            "time_to_invoice_0_7", "time_to_invoice_8_14", "time_to_invoice_15_30", "time_to_invoice_31_plus",
        ),
        sa.Column("status_distribution", sa.JSON()),
        sa.Column("weekly_volume", sa.JSON()),
        *_timestamps(),
    )

    op.create_table(
        "snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        _source_fk(),
        sa.Column("installation_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="created"),
        sa.Column("mode_used", sa.String(30)),
        sa.Column("estimate_count", sa.Integer()),
        sa.Column("confidence_level", sa.String(10)),
        sa.Column("input_summary", sa.JSON()),
        sa.Column("result", sa.JSON()),
        sa.Column("error", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
    )
    op.create_index("ix_snapshots_source", "snapshots", ["source_id"])
    op.create_index("ix_snapshots_installation_created", "snapshots", ["installation_id", "created_at"])

    op.create_table(
        "oauth_connections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("installation_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(40), nullable=False),
        sa.Column("access_token_enc", sa.Text(), nullable=False),
        sa.Column("refresh_token_enc", sa.Text()),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scopes", sa.JSON()),
        sa.Column("external_account_id", sa.String(255)),
        sa.Column("metadata", sa.JSON()),
        *_timestamps(),
        sa.UniqueConstraint("installation_id", "provider", name="uq_oauth_installation_provider"),
    )

    op.create_table(
        "connection_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False, unique=True),
        sa.Column("installation_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(40), nullable=False, server_default="jobber"),
        sa.Column("phase", sa.String(30), nullable=False),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_conn_events_installation_created", "connection_events", ["installation_id", "created_at"]
    )


def downgrade() -> None:
    """Drop all tables. Destructive: dev/test environments only."""
    for table in (
        "connection_events",
        "oauth_connections",
        "snapshots",
        "invoice_buckets",
        "estimate_buckets",
        "payments_normalized",
        "clients_normalized",
        "jobs_normalized",
        "invoices_normalized",
        "estimates_normalized",
        "sources",
    ):
        op.drop_table(table)
