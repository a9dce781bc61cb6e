"""Tests for the shared outbound HTTP client."""

import httpx
import pytest

from secondlook import __version__
from secondlook.http_client import build_client, http


def test_shared_client_defaults():
    assert http.follow_redirects is False
    assert http.headers["User-Agent"] == f"SecondLook/{__version__}"
    assert http.timeout.connect == 10.0


@pytest.mark.asyncio
async def test_build_client_overrides():
    client = build_client(timeout=httpx.Timeout(5.0))
    try:
        assert client.timeout.read == 5.0
        assert client.headers["User-Agent"].startswith("SecondLook/")
    finally:
        await client.aclose()
