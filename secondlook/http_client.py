"""Outbound HTTP for connectors, OAuth token refresh and the reasoning service.

Every third-party call goes through one pooled httpx.AsyncClient so limits
and keep-alive apply across Jobber, the token endpoints and the Anthropic
API. Redirects are not followed; callers treat a 3xx like any other
unexpected status. Per-request timeouts override the default:

    from secondlook.http_client import http
    resp = await http.post(url, data=form, timeout=15)
"""

import httpx

from . import __version__

USER_AGENT = f"SecondLook/{__version__}"
DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def build_client(**overrides) -> httpx.AsyncClient:
    options = {
        "timeout": DEFAULT_TIMEOUT,
        "limits": httpx.Limits(max_connections=20, max_keepalive_connections=10, keepalive_expiry=30),
        "follow_redirects": False,
        "headers": {"User-Agent": USER_AGENT},
    }
    options.update(overrides)
    return httpx.AsyncClient(**options)


http = build_client()


async def close_clients() -> None:
    """Close the shared client. Called from the app lifespan on shutdown."""
    if not http.is_closed:
        await http.aclose()
