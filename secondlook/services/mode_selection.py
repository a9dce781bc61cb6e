"""
mode_selection.py — Choose deterministic vs. externally assisted scoring

Business Rules:
- "deterministic" and "externally_assisted" are returned as configured
- "auto" resolves to externally_assisted only when the reasoning service is
  configured, the tracker holds at least auto_mode_min_events (10) events,
  and the fallback rate is known and at most auto_mode_max_fallback_rate (0.2)
- Any unmet condition in auto resolves to deterministic

Called by: services/snapshot_service.py, routers/snapshots.py
Depends on: config.py, services/telemetry.py
"""

from dataclasses import asdict, dataclass

from ..config import Settings
from .telemetry import FallbackRateTracker


@dataclass(frozen=True)
class ModeDecision:
    configured: str
    resolved: str
    reason: str
    event_count: int
    fallback_rate: float | None


class ModeSelector:
    def __init__(self, settings: Settings, tracker: FallbackRateTracker):
        self.settings = settings
        self.tracker = tracker

    def resolve(self) -> ModeDecision:
        configured = self.settings.snapshot_mode
        count = self.tracker.event_count()
        rate = self.tracker.fallback_rate()

        def decide(resolved: str, reason: str) -> ModeDecision:
            return ModeDecision(configured, resolved, reason, count, rate)

        if configured != "auto":
            return decide(configured, "configured")
        if not self.settings.reasoning_configured:
            return decide("deterministic", "reasoning_not_configured")
        if count < self.settings.auto_mode_min_events:
            return decide("deterministic", "insufficient_events")
        if rate is None:
            return decide("deterministic", "fallback_rate_unknown")
        if rate > self.settings.auto_mode_max_fallback_rate:
            return decide("deterministic", "fallback_rate_too_high")
        return decide("externally_assisted", "fallback_rate_ok")

    def explain(self) -> dict:
        return asdict(self.resolve())
