"""
reasoning_service.py — Externally assisted snapshot scoring

Sends bucket aggregates (never rows) to Claude with the snapshot prompt pack
and returns the raw structured output. The caller validates it against the
locked report schema and falls back to the deterministic scorer on any
failure; nothing here retries.

Called by: services/snapshot_service.py
Depends on: utils/claude_client.py, schemas/snapshot.py, config.py
"""

import json

import httpx

from ..config import Settings
from ..schemas.snapshot import LATENCY_BANDS, PRICE_BANDS, BucketedAggregates, report_json_schema
from ..utils.claude_client import claude_structured

MAX_FINDINGS = 4
MAX_NEXT_STEPS = 3


class ReasoningError(Exception):
    """The reasoning service did not return a usable response."""

    def __init__(self, message: str, code: str = "E_REASONING"):
        super().__init__(message)
        self.code = code


def build_system_prompt(max_findings: int = MAX_FINDINGS, max_next_steps: int = MAX_NEXT_STEPS) -> str:
    return "\n".join([
        "You are SecondLook. Doctrine:",
        "- Not a dashboard, KPI, or monitoring tool.",
        "- Deliver finite conclusions and prioritized next steps that reduce the owner's decision burden.",
        "- You only ever see bucketed aggregates, never records or personal data. "
        "City and 3-character postal prefix are the most detailed geography allowed.",
        "- Never ask the user questions; if a signal is missing, skip it.",
        "",
        "Hard constraints:",
        "- Answer only by calling the structured_output tool with a report of kind \"snapshot\".",
        f"- At most {max_findings} findings and {max_next_steps} next_steps.",
        "- Findings are decisions, not analytics summaries or chart descriptions.",
        "- Do not say \"keep watching\", \"monitor\", or \"dashboard\".",
        "- Scores are numbers from 0 to 100; confidence is low, medium or high.",
        "",
        "Tone: calm, directive, decision-relief. Keep it concise.",
    ])


def build_user_prompt(aggregates: BucketedAggregates, window_days: int = 90) -> str:
    tool = aggregates.source_tool or "the connected tool"
    ratio = aggregates.repeat_client_ratio
    ratio_hint = (
        f"Repeat ratio hint: {ratio * 100:.0f}% repeat client share."
        if ratio is not None
        else "Repeat ratio hint: not provided."
    )
    return "\n".join([
        f"You are looking at bucketed aggregates from {tool} for the last {window_days} days.",
        "",
        "Signals provided (aggregate-only, personal data removed):",
        f"- price_distribution (bands {', '.join(PRICE_BANDS)})",
        f"- latency_distribution ({', '.join(LATENCY_BANDS)}; decision latency from created to closed)",
        "- weekly_volume (ISO weeks)",
        "- job_type_distribution (lowercase strings, 'unknown' allowed)",
        "- unique_client_count, repeat_client_count, repeat_client_ratio (repeat = 2+ meaningful estimates)",
        "- geo_city_distribution (lowercase city) and geo_postal_prefix_distribution (3-char prefixes)",
        "- invoice_signals may include price_distribution, time_to_invoice, status_distribution, weekly_volume",
        "",
        "Requested output:",
        "1) what is happening, as short findings (decision statements).",
        "2) why it matters, folded into each finding's detail.",
        "3) what to do next, as ranked low-effort next_steps.",
        "If a signal is missing, omit that angle. Do not ask for more data.",
        "",
        "Bucketed input:",
        json.dumps(aggregates.model_dump(), indent=2),
        "",
        ratio_hint,
        "Geo hints: city and postal values are already coarse; never infer addresses.",
    ])


class ClaudeReasoner:
    """Reasoning collaborator backed by the Claude Messages API."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        return self.settings.reasoning_configured

    async def generate_report(self, aggregates: BucketedAggregates) -> dict:
        """Return the model's report dict (unvalidated). Raises ReasoningError."""
        if not self.configured:
            raise ReasoningError("reasoning service is not configured")
        try:
            result = await claude_structured(
                build_user_prompt(aggregates, self.settings.window_days),
                report_json_schema(),
                api_key=self.settings.anthropic_api_key,
                system=build_system_prompt(),
                model=self.settings.reasoning_model,
                timeout=self.settings.reasoning_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise ReasoningError("reasoning service timed out", code="E_TIMEOUT") from e
        if result is None:
            raise ReasoningError("reasoning service returned no report")
        if not isinstance(result, dict):
            raise ReasoningError("reasoning service returned a non-object report", code="E_SCHEMA")
        return result
