"""
test_normalizers.py — Data-safety filter for connector rows

Covers window/future rejection, the per-source cap, duplicate ids, amount
rules, the kept + rejected accounting and all-or-nothing writes.

Called by: pytest
Depends on: secondlook.services.normalizers, conftest (db_session, make_source)
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from secondlook.config import Settings
from secondlook.models import (
    ClientNormalized,
    EstimateNormalized,
    InvoiceNormalized,
    JobNormalized,
    PaymentNormalized,
)
from secondlook.services.normalizers import (
    NormalizationError,
    normalize_clients,
    normalize_estimates,
    normalize_invoices,
    normalize_jobs,
    normalize_payments,
)

NOW = datetime(2026, 3, 30, 12, 0, tzinfo=timezone.utc)


def _iso(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat()


def _estimate(eid: str, days_ago: float = 5, **kw) -> dict:
    return {"estimate_id": eid, "created_at": _iso(days_ago), "amount": 900, "status": "sent", **kw}


class TestEstimateWindow:
    def test_old_and_future_rows_rejected(self, db_session, make_source):
        src = make_source()
        rows = [_estimate("a", 10), _estimate("old", 120), _estimate("future", -3)]
        result = normalize_estimates(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (1, 2)
        stored = db_session.query(EstimateNormalized).all()
        assert [e.estimate_id for e in stored] == ["a"]

    def test_recent_close_keeps_old_estimate(self, db_session, make_source):
        """Window is judged on the last activity: closed, then updated, then created."""
        src = make_source()
        rows = [_estimate("late-close", 120, closed_at=_iso(3), status="accepted")]
        result = normalize_estimates(db_session, src.id, rows, now=NOW)
        assert result.kept == 1

    def test_missing_or_unparsable_created_rejected(self, db_session, make_source):
        src = make_source()
        rows = [
            {"estimate_id": "x", "amount": 100, "status": "sent"},
            {"estimate_id": "y", "created_at": "yesterday", "amount": 100, "status": "sent"},
        ]
        result = normalize_estimates(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (0, 2)

    def test_close_before_created_is_dropped(self, db_session, make_source):
        src = make_source()
        normalize_estimates(db_session, src.id, [_estimate("a", 5, closed_at=_iso(8))], now=NOW)
        assert db_session.query(EstimateNormalized).one().closed_at is None


class TestEstimateFields:
    def test_amount_rules(self, db_session, make_source):
        src = make_source()
        rows = [
            _estimate("ok", amount="$1,200"),
            _estimate("neg", amount=-10),
            _estimate("none", amount=None),
            _estimate("text", amount="call me"),
        ]
        result = normalize_estimates(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (1, 3)
        assert db_session.query(EstimateNormalized).one().amount == 1200.0

    def test_geo_and_status_are_coarsened(self, db_session, make_source):
        src = make_source()
        row = _estimate("a", status="Approved", geo_city=" Denver ", geo_postal="80202-1111",
                        customer_name="Jane Doe", email="jane@example.com")
        normalize_estimates(db_session, src.id, [row], now=NOW)
        stored = db_session.query(EstimateNormalized).one()
        assert stored.status == "accepted"
        assert stored.geo_city == "denver"
        assert stored.geo_postal == "802"
        assert not hasattr(stored, "email")

    def test_duplicate_ids_rejected(self, db_session, make_source):
        src = make_source()
        result = normalize_estimates(db_session, src.id, [_estimate("a"), _estimate("a")], now=NOW)
        assert (result.kept, result.rejected) == (1, 1)

    def test_meaningful_count(self, db_session, make_source):
        src = make_source()
        rows = [_estimate("s", status="sent"), _estimate("d", status="draft"),
                _estimate("c", status="converted"), _estimate("x", status="declined")]
        result = normalize_estimates(db_session, src.id, rows, now=NOW)
        assert result.meaningful == 2


class TestCap:
    def test_rows_past_cap_counted_as_rejected(self, db_session, make_source):
        src = make_source()
        rows = [_estimate(f"e{i}", days_ago=1 + i % 60) for i in range(130)]
        result = normalize_estimates(db_session, src.id, rows, now=NOW)
        assert result.kept == 100
        assert result.kept + result.rejected == len(rows)
        assert db_session.query(EstimateNormalized).count() == 100

    def test_cap_counts_existing_rows(self, db_session, make_source):
        src = make_source()
        settings = Settings(max_records_per_entity=5)
        normalize_estimates(db_session, src.id, [_estimate(f"a{i}") for i in range(3)], now=NOW, settings=settings)
        result = normalize_estimates(
            db_session, src.id, [_estimate(f"b{i}") for i in range(4)], now=NOW, settings=settings
        )
        assert (result.kept, result.rejected) == (2, 2)


class TestOtherEntities:
    def test_invoices(self, db_session, make_source):
        src = make_source()
        rows = [
            {"invoice_id": "i1", "invoice_date": _iso(4), "invoice_total": "450", "invoice_status": "Paid"},
            {"invoice_id": "i2", "invoice_date": _iso(200), "invoice_total": 10},
            {"invoice_id": "i3", "invoice_date": _iso(4)},
        ]
        result = normalize_invoices(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (1, 2)
        assert db_session.query(InvoiceNormalized).one().invoice_status == "paid"

    def test_jobs_amount_optional(self, db_session, make_source):
        src = make_source()
        rows = [
            {"job_id": "j1", "created_at": _iso(3), "job_status": "scheduled"},
            {"job_id": "j2", "created_at": _iso(3), "job_total": -1},
        ]
        result = normalize_jobs(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (1, 1)
        assert db_session.query(JobNormalized).one().job_status == "active"

    def test_clients(self, db_session, make_source):
        src = make_source()
        rows = [
            {"client_id": "c1", "created_at": _iso(30), "geo_city": "Austin", "name": "Someone"},
            {"client_id": "c2", "created_at": _iso(-1)},
        ]
        result = normalize_clients(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (1, 1)
        assert db_session.query(ClientNormalized).one().geo_city == "austin"

    def test_payments(self, db_session, make_source):
        src = make_source()
        rows = [
            {"payment_id": "p1", "payment_date": _iso(2), "payment_total": 300, "payment_type": "cheque"},
            {"payment_id": "p2", "payment_date": _iso(2), "payment_total": "n/a"},
        ]
        result = normalize_payments(db_session, src.id, rows, now=NOW)
        assert (result.kept, result.rejected) == (1, 1)
        assert db_session.query(PaymentNormalized).one().payment_type == "check"

    def test_invalid_row_shape_rejected(self, db_session, make_source):
        src = make_source()
        result = normalize_invoices(db_session, src.id, [{"invoice_total": 5}], now=NOW)
        assert (result.kept, result.rejected) == (0, 1)


def test_write_failure_rolls_back_and_raises(db_session, make_source):
    src = make_source()
    with patch.object(db_session, "flush", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
        with pytest.raises(NormalizationError):
            normalize_estimates(db_session, src.id, [_estimate("a")], now=NOW)
    assert db_session.query(EstimateNormalized).count() == 0
