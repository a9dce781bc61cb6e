"""Claude API client — tool-forced structured output.

The model is forced to call a single "structured_output" tool whose input
schema is the report schema, so the response is JSON shaped like the
schema (it is still validated by the caller).

Usage:
    from secondlook.utils.claude_client import claude_structured
    result = await claude_structured(
        prompt="Here are this source's aggregates...",
        schema=report_json_schema(),
        system=SYSTEM_PROMPT,
        api_key=settings.anthropic_api_key,
    )
"""

import logging
from typing import Any

import httpx

from ..http_client import http

log = logging.getLogger("secondlook.claude")

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


def _headers(api_key: str) -> dict:
    return {
        "x-api-key": api_key,
        "anthropic-version": API_VERSION,
        "content-type": "application/json",
    }


async def claude_structured(
    prompt: str,
    schema: dict,
    *,
    api_key: str,
    system: str = "",
    model: str = DEFAULT_MODEL,
    max_tokens: int = 2048,
    cache_system: bool = True,
    timeout: float = 30,
) -> dict | None:
    """Call Claude and return the structured_output tool input.

    Args:
        prompt: User message content
        schema: JSON Schema for the tool input
        api_key: Anthropic API key; returns None when empty
        system: System prompt (marked cacheable when cache_system=True)
        model: Model id
        max_tokens: Max output tokens
        timeout: Request timeout seconds

    Returns:
        Tool input dict, or None on any other failure (logged as a warning)

    Raises:
        httpx.TimeoutException when the request times out
    """
    if not api_key:
        return None

    body: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
        "tools": [
            {
                "name": "structured_output",
                "description": "Return the snapshot report matching the required schema.",
                "input_schema": schema,
            }
        ],
        "tool_choice": {"type": "tool", "name": "structured_output"},
    }
    if system:
        block: dict[str, Any] = {"type": "text", "text": system}
        if cache_system:
            block["cache_control"] = {"type": "ephemeral"}
        body["system"] = [block]

    try:
        resp = await http.post(API_URL, headers=_headers(api_key), json=body, timeout=timeout)
    except httpx.TimeoutException:
        log.warning("Claude structured call timed out")
        raise
    except httpx.HTTPError as e:
        log.warning(f"Claude structured call failed: {type(e).__name__}")
        return None

    if resp.status_code != 200:
        # Status only: third-party error bodies are not logged
        log.warning(f"Claude API returned {resp.status_code}")
        return None

    try:
        data = resp.json()
    except ValueError:
        log.warning("Claude API returned a non-JSON body")
        return None

    for block in data.get("content", []):
        if block.get("type") == "tool_use" and block.get("name") == "structured_output":
            return block.get("input")

    log.warning("Claude structured output: no tool_use block in response")
    return None
