"""Jobber connector — quotes and invoices over the Jobber GraphQL API.

Field diet: ids, dates, totals and statuses only. No client names,
emails or street addresses are requested.
"""

import logging
from datetime import timedelta

from ..http_client import http
from ..models.base import utcnow
from ..schemas.connector import ConnectorPayload, EstimateRow, InvoiceRow
from .base import ConnectorAuthError, ConnectorError, OAuthConnector

log = logging.getLogger(__name__)

API_URL = "https://api.getjobber.com/api/graphql"
GRAPHQL_VERSION = "2025-04-16"
PAGE_SIZE = 100

QUOTES_QUERY = """
query Quotes($since: ISO8601DateTime!, $first: Int!) {
  quotes(filter: { createdAt: { after: $since } }, first: $first) {
    nodes {
      id
      createdAt
      updatedAt
      transitionedAt
      quoteStatus
      amounts { total }
      client { id }
    }
  }
}"""

INVOICES_QUERY = """
query Invoices($since: ISO8601DateTime!, $first: Int!) {
  invoices(filter: { createdAt: { after: $since } }, first: $first) {
    nodes {
      id
      createdAt
      invoiceStatus
      amounts { total }
      client { id }
    }
  }
}"""

# Quote statuses that mean the owner is done deciding
_CLOSED_QUOTE_STATUSES = {"approved", "converted", "archived", "rejected"}


class JobberConnector(OAuthConnector):
    kind = "jobber"
    provider = "jobber"

    async def _query(self, access_token: str, query: str, variables: dict) -> dict:
        r = await http.post(
            API_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "X-JOBBER-GRAPHQL-VERSION": GRAPHQL_VERSION,
            },
            json={"query": query, "variables": variables},
            timeout=self.timeout,
        )
        if r.status_code == 401:
            raise ConnectorAuthError("Jobber rejected the access token")
        if r.status_code != 200:
            raise ConnectorError(f"Jobber API returned {r.status_code}")
        data = r.json()
        if data.get("errors"):
            msg = (data["errors"][0] or {}).get("message", "")
            raise ConnectorError(f"Jobber GraphQL error: {msg[:120]}")
        return data.get("data") or {}

    async def _fetch_with_token(self, access_token: str) -> ConnectorPayload:
        since = (utcnow() - timedelta(days=self.window_days)).isoformat()
        variables = {"since": since, "first": PAGE_SIZE}

        quotes = (await self._query(access_token, QUOTES_QUERY, variables)).get("quotes") or {}
        invoices = (await self._query(access_token, INVOICES_QUERY, variables)).get("invoices") or {}

        estimates = []
        for q in quotes.get("nodes") or []:
            status = (q.get("quoteStatus") or "").lower()
            estimates.append(
                EstimateRow(
                    estimate_id=q["id"],
                    created_at=q.get("createdAt"),
                    updated_at=q.get("updatedAt"),
                    closed_at=q.get("transitionedAt") if status in _CLOSED_QUOTE_STATUSES else None,
                    amount=(q.get("amounts") or {}).get("total"),
                    status=status or None,
                    client_id=(q.get("client") or {}).get("id"),
                )
            )
        invoice_rows = [
            InvoiceRow(
                invoice_id=i["id"],
                invoice_date=i.get("createdAt"),
                invoice_total=(i.get("amounts") or {}).get("total"),
                invoice_status=i.get("invoiceStatus"),
                client_id=(i.get("client") or {}).get("id"),
            )
            for i in invoices.get("nodes") or []
        ]
        log.info(f"Jobber fetch for {self.installation_id}: {len(estimates)} quotes, {len(invoice_rows)} invoices")
        return ConnectorPayload(
            kind="jobber", window_days=self.window_days, estimates=estimates, invoices=invoice_rows
        )
