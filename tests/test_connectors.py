"""
test_connectors.py — Connector registry, CSV file connector, OAuth retry
and the Jobber GraphQL connector

Called by: pytest
Depends on: secondlook.connectors
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from secondlook.connectors import (
    BaseConnector,
    ConnectorAuthError,
    ConnectorError,
    FileConnector,
    JobberConnector,
    OAuthConnector,
    get_connector,
)
from secondlook.connectors.file_connector import MAX_FILE_BYTES, parse_csv
from secondlook.schemas.connector import ConnectorPayload
from secondlook.services.credential_service import NeedsReauthError, TokenBundle

ESTIMATES_CSV = (
    "Quote #,Created,Total,Status,Service Type,City,Customer ID\n"
    "Q-1,2026-03-01,450.00,Sent,Roofing,Springfield,C-1\n"
    "Q-2,2026-03-02,1200,Approved,Gutters,Springfield,C-2\n"
    ",2026-03-03,99,Sent,,,\n"
).encode()

INVOICES_CSV = (
    "Invoice #,Issued Date,Total,Status,Quote ID\n"
    "I-1,2026-03-10,1200,Paid,Q-2\n"
).encode()


# ── Registry ─────────────────────────────────────────────────────────


def test_get_connector_file():
    connector = get_connector("file", estimates_csv=ESTIMATES_CSV)
    assert isinstance(connector, FileConnector)
    assert connector.max_retries == 0


def test_get_connector_unknown_kind():
    with pytest.raises(ConnectorError, match="quickbooks"):
        get_connector("quickbooks")


# ── CSV file connector ───────────────────────────────────────────────


class TestFileConnector:
    def test_parse_csv_normalizes_headers(self):
        rows = parse_csv(b"\xef\xbb\xbf Quote # ,TOTAL\nQ-1, 10 \n")
        assert rows == [{"quote #": "Q-1", "total": "10"}]

    def test_header_aliases(self):
        payload = FileConnector(ESTIMATES_CSV).parse()
        assert payload.kind == "file"
        assert [e.estimate_id for e in payload.estimates] == ["Q-1", "Q-2"]
        first = payload.estimates[0]
        assert first.amount == "450.00"
        assert first.status == "Sent"
        assert first.job_type == "Roofing"
        assert first.geo_city == "Springfield"
        assert first.client_id == "C-1"

    def test_invoices(self):
        payload = FileConnector(ESTIMATES_CSV, INVOICES_CSV).parse()
        [invoice] = payload.invoices
        assert invoice.invoice_id == "I-1"
        assert invoice.invoice_total == "1200"
        assert invoice.invoice_status == "Paid"
        assert invoice.linked_estimate_id == "Q-2"

    def test_missing_required_columns(self):
        with pytest.raises(ConnectorError, match="amount"):
            FileConnector(b"id,created,status\n1,2026-03-01,sent\n").parse()

    def test_header_only_file(self):
        with pytest.raises(ConnectorError):
            FileConnector(b"id,created,total,status\n").parse()

    def test_oversize_file(self):
        with pytest.raises(ConnectorError, match="larger"):
            FileConnector(b"x" * (MAX_FILE_BYTES + 1)).parse()

    @pytest.mark.asyncio
    async def test_fetch_does_not_retry(self):
        with patch("secondlook.connectors.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ConnectorError):
                await FileConnector(b"").fetch()
        sleep.assert_not_awaited()


# ── Retry policy ─────────────────────────────────────────────────────


class FlakyConnector(BaseConnector):
    kind = "file"

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = list(failures)
        self.calls = 0

    async def _do_fetch(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return ConnectorPayload(kind="file")


@pytest.mark.asyncio
class TestRetry:
    async def test_transient_errors_retried_with_backoff(self):
        connector = FlakyConnector([ConnectorError("502"), httpx.ReadTimeout("slow")])
        with patch("secondlook.connectors.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            payload = await connector.fetch()
        assert payload.kind == "file"
        assert connector.calls == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    async def test_gives_up_after_max_retries(self):
        connector = FlakyConnector([ConnectorError("a"), ConnectorError("b"), ConnectorError("c")], max_retries=2)
        with patch("secondlook.connectors.base.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConnectorError, match="c"):
                await connector.fetch()
        assert connector.calls == 3

    async def test_auth_errors_not_retried(self):
        connector = FlakyConnector([ConnectorAuthError("401")])
        with patch("secondlook.connectors.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ConnectorAuthError):
                await connector.fetch()
        assert connector.calls == 1
        sleep.assert_not_awaited()

    async def test_credential_errors_not_retried(self):
        connector = FlakyConnector([NeedsReauthError("jobber", "refresh_token_rejected")])
        with pytest.raises(NeedsReauthError):
            await connector.fetch()
        assert connector.calls == 1


# ── OAuth connectors ─────────────────────────────────────────────────


def _bundle(token: str, version: int) -> TokenBundle:
    return TokenBundle(token, "refresh", datetime.now(timezone.utc) + timedelta(hours=1), version)


def _credentials(*bundles):
    creds = MagicMock()
    creds.get_access_token = AsyncMock(side_effect=list(bundles))
    return creds


class StaleTokenConnector(OAuthConnector):
    kind = "jobber"
    provider = "jobber"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tokens_seen = []

    async def _fetch_with_token(self, access_token):
        self.tokens_seen.append(access_token)
        if access_token == "stale":
            raise ConnectorAuthError("401")
        return ConnectorPayload(kind="jobber")


@pytest.mark.asyncio
async def test_oauth_401_forces_one_refresh():
    creds = _credentials(_bundle("stale", 3), _bundle("fresh", 4))
    connector = StaleTokenConnector(creds, "install-test-0001", max_retries=0)

    payload = await connector.fetch()

    assert payload.kind == "jobber"
    assert connector.tokens_seen == ["stale", "fresh"]
    second = creds.get_access_token.await_args_list[1]
    assert second.kwargs == {"force_refresh": True}


@pytest.mark.asyncio
async def test_oauth_second_401_is_raised():
    creds = _credentials(_bundle("stale", 3), _bundle("stale", 4))
    connector = StaleTokenConnector(creds, "install-test-0001", max_retries=0)
    with pytest.raises(ConnectorAuthError):
        await connector.fetch()
    assert creds.get_access_token.await_count == 2


def _gql(status_code: int, body: dict | None = None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body or {}
    return resp


QUOTES = {
    "data": {
        "quotes": {
            "nodes": [
                {
                    "id": "Z2lkOi8vUXVvdGUvMQ==",
                    "createdAt": "2026-03-01T10:00:00Z",
                    "updatedAt": "2026-03-04T10:00:00Z",
                    "transitionedAt": "2026-03-04T10:00:00Z",
                    "quoteStatus": "APPROVED",
                    "amounts": {"total": 1500.0},
                    "client": {"id": "client-1"},
                },
                {
                    "id": "Z2lkOi8vUXVvdGUvMg==",
                    "createdAt": "2026-03-02T10:00:00Z",
                    "updatedAt": "2026-03-02T10:00:00Z",
                    "transitionedAt": "2026-03-02T11:00:00Z",
                    "quoteStatus": "AWAITING_RESPONSE",
                    "amounts": {"total": 300},
                    "client": None,
                },
            ]
        }
    }
}
INVOICES = {
    "data": {
        "invoices": {
            "nodes": [
                {
                    "id": "inv-1",
                    "createdAt": "2026-03-05T10:00:00Z",
                    "invoiceStatus": "paid",
                    "amounts": {"total": 1500.0},
                    "client": {"id": "client-1"},
                }
            ]
        }
    }
}


@pytest.mark.asyncio
class TestJobberConnector:
    async def test_maps_quotes_and_invoices(self):
        creds = _credentials(_bundle("tok", 1))
        with patch("secondlook.connectors.jobber.http.post", new_callable=AsyncMock,
                   side_effect=[_gql(200, QUOTES), _gql(200, INVOICES)]) as post:
            payload = await JobberConnector(creds, "install-test-0001").fetch()

        approved, waiting = payload.estimates
        assert approved.status == "approved"
        assert approved.amount == 1500.0
        assert approved.closed_at == "2026-03-04T10:00:00Z"
        assert approved.client_id == "client-1"
        assert waiting.closed_at is None
        assert waiting.client_id is None
        assert payload.invoices[0].invoice_total == 1500.0
        headers = post.await_args_list[0].kwargs["headers"]
        assert headers["Authorization"] == "Bearer tok"
        assert "X-JOBBER-GRAPHQL-VERSION" in headers

    async def test_401_refreshes_and_retries(self):
        creds = _credentials(_bundle("old", 1), _bundle("new", 2))
        responses = [_gql(401), _gql(200, QUOTES), _gql(200, INVOICES)]
        with patch("secondlook.connectors.jobber.http.post", new_callable=AsyncMock, side_effect=responses):
            payload = await JobberConnector(creds, "install-test-0001").fetch()
        assert len(payload.estimates) == 2
        assert creds.get_access_token.await_args_list[1].kwargs == {"force_refresh": True}

    async def test_graphql_errors(self):
        creds = _credentials(_bundle("tok", 1))
        body = {"errors": [{"message": "Throttled"}]}
        with patch("secondlook.connectors.jobber.http.post", new_callable=AsyncMock, return_value=_gql(200, body)):
            with pytest.raises(ConnectorError, match="Throttled"):
                await JobberConnector(creds, "install-test-0001", max_retries=0).fetch()
