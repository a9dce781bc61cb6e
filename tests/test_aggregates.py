"""
test_aggregates.py — Aggregate document assembly and validation

Called by: pytest
Depends on: secondlook.services.aggregates, secondlook.schemas.snapshot
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from secondlook.schemas.connector import ConnectorPayload
from secondlook.schemas.snapshot import AggregateValidationError, validate_aggregates
from secondlook.services.aggregates import BucketMissingError, load_aggregates
from secondlook.services.bucketing import bucket_source
from secondlook.services.ingest_service import run_ingest

NOW = datetime(2026, 3, 30, 12, 0, tzinfo=timezone.utc)


def _bucketed_source(db, installation_id, estimate_rows, invoices=()):
    rows = estimate_rows(20, now=NOW, client_id="c1")
    payload = ConnectorPayload(kind="jobber", estimates=rows, invoices=list(invoices))
    source_id = run_ingest(db, payload, installation_id, now=NOW).source_id
    bucket_source(db, source_id)
    return source_id


def test_missing_bucket(db_session, make_source):
    src = make_source(status="ingested")
    with pytest.raises(BucketMissingError):
        load_aggregates(db_session, src.id)


def test_aggregates_validate(db_session, installation_id, estimate_rows):
    source_id = _bucketed_source(db_session, installation_id, estimate_rows)
    agg = validate_aggregates(load_aggregates(db_session, source_id))
    assert agg.source_tool == "jobber"
    assert agg.estimate_count == 20
    assert [p.band for p in agg.price_distribution] == ["<500", "500-1500", "1500-5000", "5000+"]
    assert agg.status_breakdown == {"sent": 20}
    assert agg.unique_client_count == 1
    assert agg.repeat_client_ratio == 1.0
    assert agg.invoice_signals is None
    assert agg.date_range.earliest is not None


def test_invoice_signals_included(db_session, installation_id, estimate_rows):
    invoices = [{"invoice_id": "i1", "invoice_date": (NOW - timedelta(days=1)).isoformat(),
                 "invoice_total": 5200, "invoice_status": "sent"}]
    source_id = _bucketed_source(db_session, installation_id, estimate_rows, invoices)
    agg = validate_aggregates(load_aggregates(db_session, source_id))
    assert agg.invoice_signals.invoice_count == 1
    assert agg.invoice_signals.price_distribution[3].count == 1


class TestValidation:
    def _valid(self):
        return {
            "source_id": "s1",
            "estimate_count": 2,
            "weekly_volume": [{"week": "2026-W10", "count": 2}],
            "price_distribution": [
                {"band": "<500", "count": 1}, {"band": "500-1500", "count": 1},
                {"band": "1500-5000", "count": 0}, {"band": "5000+", "count": 0},
            ],
            "latency_distribution": [],
        }

    def test_valid(self):
        assert validate_aggregates(self._valid()).estimate_count == 2

    def test_unknown_key_rejected(self):
        data = self._valid() | {"customer_names": ["x"]}
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_price_sum_mismatch_rejected(self):
        data = self._valid() | {"estimate_count": 3}
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_bad_week_label_rejected(self):
        data = self._valid() | {"weekly_volume": [{"week": "March", "count": 2}]}
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_oversized_distribution_rejected(self):
        data = self._valid() | {
            "job_type_distribution": [{"job_type": f"t{i}", "count": 0} for i in range(101)]
        }
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_not_a_dict(self):
        with pytest.raises(AggregateValidationError):
            validate_aggregates(["nope"])

    def test_string_count_rejected(self):
        data = self._valid() | {"estimate_count": "2"}
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_bool_weekly_count_rejected(self):
        data = self._valid() | {"weekly_volume": [{"week": "2026-W10", "count": True}]}
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_string_ratio_rejected(self):
        data = self._valid() | {"repeat_client_ratio": "0.5"}
        with pytest.raises(AggregateValidationError):
            validate_aggregates(data)

    def test_json_loaded_values_accepted(self):
        data = json.loads(json.dumps(self._valid() | {"repeat_client_ratio": 0.5}))
        assert validate_aggregates(data).repeat_client_ratio == 0.5
