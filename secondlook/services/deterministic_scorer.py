"""Deterministic snapshot scorer — aggregates in, locked report out.

Pure function over bucket aggregates. No I/O, no clock, no free-form text:
every finding, next step and disclaimer comes from the fixed phrasing
below, picked by threshold rules.

Scores (integers, clamped to 0-100):
  1. demand_signal — estimate count against a 60-estimate full scale, ±10 for trend
  2. cash_signal — invoices per estimate
  3. decision_latency — share of closed estimates decided within 7 days
  4. capacity_pressure — recent weekly volume against earlier weeks, +10 when
     high-value quotes outnumber low-value ones

Confidence: <40 estimates low, 40-60 medium, >60 high.

Below the minimum estimate count the scorer returns the insufficient_data
report instead of a partial score.
"""

from ..schemas.snapshot import REPORT_WINDOW_DAYS, BucketedAggregates, validate_aggregates
from ..utils import clamp, half_up

# ── Thresholds ──
CONFIDENCE_LOW_BELOW = 40
CONFIDENCE_HIGH_ABOVE = 60
DEMAND_FULL_SCALE = 60  # estimates in the window that earn a full demand score
TREND_RECENT_WEEKS = 4
TREND_UP_RATIO = 1.15
TREND_DOWN_RATIO = 0.85
TREND_ADJUSTMENT = 10
HIGH_VALUE_BONUS = 10
FAST_DECISION_SCORE = 60  # decision_latency at or above reads as "fast"
SLOW_DECISION_SCORE = 50
LOW_CASH_SCORE = 50
DOMINANT_JOB_SHARE = 50  # percent

HIGH_VALUE_BANDS = ("1500-5000", "5000+")
LOW_VALUE_BANDS = ("<500", "500-1500")
FAST_LATENCY_BANDS = ("0-2d", "3-7d")

BASE_DISCLAIMERS = [
    "Built only from bucketed counts for the last 90 days. No customer records were kept.",
    "Scores are directional signals for planning, not financial advice.",
]
LOW_CONFIDENCE_DISCLAIMER = "Fewer than 40 estimates in the window, so treat these as early signals."


def confidence_level(count: int) -> str:
    if count < CONFIDENCE_LOW_BELOW:
        return "low"
    if count <= CONFIDENCE_HIGH_ABOVE:
        return "medium"
    return "high"


def _mean(values: list[int]) -> float:
    return sum(values) / len(values) if values else 0.0


def demand_trend(weekly_counts: list[int]) -> tuple[str, float, float]:
    """Return (trend, recent_avg, prior_avg) from an ascending weekly series.

    With no weeks before the recent four, prior_avg equals recent_avg and the
    trend is flat.
    """
    recent = weekly_counts[-TREND_RECENT_WEEKS:]
    prior = weekly_counts[:-TREND_RECENT_WEEKS] if len(weekly_counts) > TREND_RECENT_WEEKS else []
    recent_avg = _mean(recent)
    if not prior:
        return "flat", recent_avg, recent_avg
    prior_avg = _mean(prior)
    if recent_avg > prior_avg * TREND_UP_RATIO:
        return "up", recent_avg, prior_avg
    if recent_avg < prior_avg * TREND_DOWN_RATIO:
        return "down", recent_avg, prior_avg
    return "flat", recent_avg, prior_avg


def _band_counts(distribution) -> dict[str, int]:
    return {item.band: item.count for item in distribution}


def compute_scores(agg: BucketedAggregates) -> dict:
    """Score a validated aggregate. Returns the four scores plus working values."""
    count = agg.estimate_count
    trend, recent_avg, prior_avg = demand_trend([p.count for p in agg.weekly_volume])

    demand = half_up(count / DEMAND_FULL_SCALE * 100)
    if trend == "up":
        demand += TREND_ADJUSTMENT
    elif trend == "down":
        demand -= TREND_ADJUSTMENT

    invoice_count = agg.invoice_signals.invoice_count if agg.invoice_signals else None
    cash = half_up(invoice_count / max(count, 1) * 100) if invoice_count is not None else 0

    latency = _band_counts(agg.latency_distribution)
    latency_total = sum(latency.values())
    fast = sum(latency.get(b, 0) for b in FAST_LATENCY_BANDS)
    decision = half_up(fast / latency_total * 100) if latency_total else 0

    prices = _band_counts(agg.price_distribution)
    high_value = sum(prices.get(b, 0) for b in HIGH_VALUE_BANDS)
    low_value = sum(prices.get(b, 0) for b in LOW_VALUE_BANDS)
    capacity = half_up(recent_avg / max(prior_avg, 1) * 50)
    if high_value > low_value:
        capacity += HIGH_VALUE_BONUS

    return {
        "demand_signal": clamp(demand),
        "cash_signal": clamp(cash),
        "decision_latency": clamp(decision),
        "capacity_pressure": clamp(capacity),
        "confidence": confidence_level(count),
        "trend": trend,
        "latency_total": latency_total,
        "high_value_dominant": high_value > low_value,
        "prices": prices,
        "invoice_count": invoice_count,
    }


# ── Fixed-topic findings ─────────────────────────────────────────────


def _demand_finding(trend: str) -> dict:
    detail = {
        "up": "Weekly quote volume over the last four weeks is running above earlier weeks. "
        "Line up crew time before the schedule tightens.",
        "down": "Weekly quote volume over the last four weeks is below earlier weeks. "
        "Work the open quotes before spending on new leads.",
        "flat": "Quote volume is steady from week to week. There is no swing to plan around right now.",
    }[trend]
    return {"title": f"Demand rhythm: {trend}", "detail": detail}


def _deal_size_finding(prices: dict[str, int], high_value_dominant: bool) -> dict:
    total = sum(prices.values())
    if not total:
        return {"title": "Deal-size mix: no priced quotes", "detail": "No quote amounts landed in this window."}
    top_band = max(prices, key=lambda b: prices[b])
    share = half_up(prices[top_band] / total * 100)
    if high_value_dominant:
        detail = (
            f"Most quotes are 1500 or more; the {top_band} band holds {share}%. "
            "Each lost decision costs more, so follow-up speed matters."
        )
    else:
        detail = (
            f"Most quotes are under 1500; the {top_band} band holds {share}%. "
            "Volume, not deal size, drives revenue here."
        )
    return {"title": "Deal-size mix", "detail": detail}


def _decision_finding(decision_latency: int, latency_total: int) -> dict:
    if not latency_total:
        detail = "No quotes were closed in this window, so decision speed cannot be read yet."
    elif decision_latency >= FAST_DECISION_SCORE:
        detail = f"{decision_latency}% of closed quotes were decided within a week. Customers are deciding quickly."
    else:
        detail = (
            f"Only {decision_latency}% of closed quotes were decided within a week. "
            "Decisions are dragging past the first follow-up."
        )
    return {"title": "Decision speed", "detail": detail}


def _job_mix_finding(agg: BucketedAggregates) -> dict:
    known = [j for j in agg.job_type_distribution if j.job_type != "unknown"]
    if not known:
        return {
            "title": "Job-mix signal",
            "detail": "Job types were not recorded on these quotes, so the work mix cannot be read.",
        }
    top = known[0]
    share = half_up(top.count / max(agg.estimate_count, 1) * 100)
    name = top.job_type[:40]
    if share >= DOMINANT_JOB_SHARE:
        detail = f"'{name}' makes up {share}% of quotes. The pipeline leans on one kind of work."
    else:
        detail = f"No single job type dominates. '{name}' leads at {share}% of quotes."
    return {"title": "Job-mix signal", "detail": detail}


def _next_steps(scores: dict) -> list[dict]:
    steps = []
    if scores["latency_total"] and scores["decision_latency"] < SLOW_DECISION_SCORE:
        steps.append({
            "label": "Follow up open quotes within 48 hours",
            "why": "Slow decisions are the biggest drag in this window. A quick follow-up shortens them.",
        })
    if scores["trend"] == "down":
        steps.append({
            "label": "Re-contact quotes sent in the last 30 days",
            "why": "Volume is slipping, and warm quotes convert more cheaply than new leads.",
        })
    if scores["invoice_count"] is not None and scores["cash_signal"] < LOW_CASH_SCORE:
        steps.append({
            "label": "Invoice finished work the same week",
            "why": "Far fewer invoices than quotes suggests finished work is waiting to be billed.",
        })
    steps.append({
        "label": "Take a second look in 30 days",
        "why": "A fresh snapshot shows whether these signals are holding or shifting.",
    })
    return steps


# ── Reports ──────────────────────────────────────────────────────────


def build_insufficient_report(found_estimates: int, required: int, found_invoices: int | None = None) -> dict:
    short = max(required - found_estimates, 0)
    return {
        "kind": "insufficient_data",
        "window_days": REPORT_WINDOW_DAYS,
        "required_minimum": {"estimates": required, "invoices": None},
        "found": {"estimates": found_estimates, "invoices": found_invoices},
        "what_you_can_do_next": [
            {
                "label": "Import more estimates",
                "detail": f"Found {found_estimates} estimates in the last 90 days; {required} are needed "
                f"({short} more).",
            },
            {
                "label": "Connect your estimating tool",
                "detail": "A live connection pulls the whole 90-day window instead of a partial export.",
            },
            {
                "label": "Include sent and accepted quotes",
                "detail": "Export sent, accepted and converted quotes too, not only drafts.",
            },
            {
                "label": "Come back after a busier stretch",
                "detail": "The window rolls forward daily, so new quotes count as soon as they are sent.",
            },
        ],
        "confidence": "low",
        "disclaimers": list(BASE_DISCLAIMERS),
    }


def score_snapshot(aggregates, *, min_estimates: int) -> dict:
    """Build a locked-schema report from aggregates.

    Args:
        aggregates: BucketedAggregates or an equivalent dict
        min_estimates: estimate count below which the insufficient_data
            report is returned

    Returns:
        Report dict of kind "snapshot" or "insufficient_data"
    """
    agg = aggregates if isinstance(aggregates, BucketedAggregates) else validate_aggregates(aggregates)
    invoice_count = agg.invoice_signals.invoice_count if agg.invoice_signals else None

    if agg.estimate_count < min_estimates:
        return build_insufficient_report(agg.estimate_count, min_estimates, invoice_count)

    scores = compute_scores(agg)
    disclaimers = list(BASE_DISCLAIMERS)
    if scores["confidence"] == "low":
        disclaimers.append(LOW_CONFIDENCE_DISCLAIMER)

    return {
        "kind": "snapshot",
        "window_days": REPORT_WINDOW_DAYS,
        "signals": {
            "source_tools": [agg.source_tool[:40]] if agg.source_tool else [],
            "totals": {"estimates": agg.estimate_count, "invoices": invoice_count},
            "status_breakdown": dict(agg.status_breakdown) if agg.status_breakdown else None,
        },
        "scores": {
            "demand_signal": scores["demand_signal"],
            "cash_signal": scores["cash_signal"],
            "decision_latency": scores["decision_latency"],
            "capacity_pressure": scores["capacity_pressure"],
            "confidence": scores["confidence"],
        },
        "findings": [
            _demand_finding(scores["trend"]),
            _deal_size_finding(scores["prices"], scores["high_value_dominant"]),
            _decision_finding(scores["decision_latency"], scores["latency_total"]),
            _job_mix_finding(agg),
        ],
        "next_steps": _next_steps(scores),
        "disclaimers": disclaimers,
    }
