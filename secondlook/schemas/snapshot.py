"""
schemas/snapshot.py — Locked snapshot report schema and aggregate shape

Both scoring paths (deterministic and externally assisted) must produce a
report that validates against SnapshotReport. Models forbid unknown keys
and cap every list, so a malformed or oversized external response fails
validation instead of being trimmed to fit.

BucketedAggregates is the only input either scoring path ever sees: bucket
counts, never rows.

Called by: services/aggregates.py, services/deterministic_scorer.py,
           services/reasoning_service.py, services/snapshot_service.py
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .errors import JobError

REPORT_WINDOW_DAYS = 90

PRICE_BANDS = ("<500", "500-1500", "1500-5000", "5000+")
LATENCY_BANDS = ("0-2d", "3-7d", "8-21d", "22+d")
TIME_TO_INVOICE_BANDS = ("0-7d", "8-14d", "15-30d", "31+d")

# A source holds at most 100 rows per entity, so no series can be longer
MAX_WEEKLY_POINTS = 100
MAX_DISTRIBUTION_ITEMS = 100

# Numeric fields are strict: "4" or True is a malformed count, not a 4 or a 1
NonNegInt = Annotated[int, Field(ge=0, strict=True)]
Score = Annotated[float, Field(ge=0, le=100, strict=True)]
Confidence = Literal["low", "medium", "high"]
ShortTitle = Annotated[str, Field(min_length=1, max_length=80)]
ShortDetail = Annotated[str, Field(min_length=1, max_length=200)]
ShortText = Annotated[str, Field(min_length=1, max_length=160)]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ── Report ───────────────────────────────────────────────────────────


class Totals(_Strict):
    estimates: NonNegInt | None
    invoices: NonNegInt | None


class Signals(_Strict):
    source_tools: list[Annotated[str, Field(max_length=40)]] = Field(max_length=12)
    totals: Totals
    status_breakdown: dict[str, NonNegInt] | None


class Scores(_Strict):
    demand_signal: Score
    cash_signal: Score
    decision_latency: Score
    capacity_pressure: Score
    confidence: Confidence


class Finding(_Strict):
    title: ShortTitle
    detail: ShortDetail


class NextStep(_Strict):
    label: ShortTitle
    why: ShortDetail


class NextAction(_Strict):
    label: ShortTitle
    detail: ShortDetail


class SnapshotResult(_Strict):
    kind: Literal["snapshot"]
    window_days: Literal[90]
    signals: Signals
    scores: Scores
    findings: list[Finding] = Field(max_length=6)
    next_steps: list[NextStep] = Field(max_length=6)
    disclaimers: list[ShortText] = Field(max_length=6)


class InsufficientDataResult(_Strict):
    kind: Literal["insufficient_data"]
    window_days: Literal[90]
    required_minimum: Totals
    found: Totals
    what_you_can_do_next: list[NextAction] = Field(max_length=6)
    confidence: Literal["low"]
    disclaimers: list[ShortText] = Field(max_length=6)


SnapshotReport = Annotated[
    Union[SnapshotResult, InsufficientDataResult], Field(discriminator="kind")
]

_report_adapter = TypeAdapter(SnapshotReport)


class ReportValidationError(ValueError):
    """A report (deterministic or external) does not match the locked schema."""


def validate_report(data) -> dict:
    """Validate a report dict. Returns the normalized dict or raises ReportValidationError."""
    try:
        report = _report_adapter.validate_python(data)
    except ValidationError as e:
        raise ReportValidationError(f"report failed schema validation ({e.error_count()} errors)") from e
    return report.model_dump()


def report_json_schema() -> dict:
    """JSON Schema for the scored variant, used as the reasoning tool's input schema."""
    return SnapshotResult.model_json_schema()


# ── Aggregates ───────────────────────────────────────────────────────


class WeeklyPoint(_Strict):
    week: Annotated[str, Field(pattern=r"^\d{4}-W\d{2}$")]
    count: NonNegInt


class BandCount(_Strict):
    band: str
    count: NonNegInt


class StatusCount(_Strict):
    status: str
    count: NonNegInt


class JobTypeCount(_Strict):
    job_type: str
    count: NonNegInt


class CityCount(_Strict):
    city: str
    count: NonNegInt


class PostalPrefixCount(_Strict):
    postal_prefix: str
    count: NonNegInt


class DateRange(_Strict):
    earliest: str | None
    latest: str | None


class InvoiceSignals(_Strict):
    invoice_count: NonNegInt
    price_distribution: list[BandCount] = Field(max_length=len(PRICE_BANDS))
    time_to_invoice: list[BandCount] = Field(max_length=len(TIME_TO_INVOICE_BANDS))
    status_distribution: list[StatusCount] = Field(max_length=12)
    weekly_volume: list[WeeklyPoint] = Field(max_length=MAX_WEEKLY_POINTS)


class BucketedAggregates(_Strict):
    source_id: str
    source_tool: str | None = None
    date_range: DateRange | None = None
    estimate_count: NonNegInt
    meaningful_count: NonNegInt | None = None
    status_breakdown: dict[str, NonNegInt] | None = None
    weekly_volume: list[WeeklyPoint] = Field(max_length=MAX_WEEKLY_POINTS)
    price_distribution: list[BandCount] = Field(max_length=len(PRICE_BANDS))
    latency_distribution: list[BandCount] = Field(max_length=len(LATENCY_BANDS))
    job_type_distribution: list[JobTypeCount] = Field(default=[], max_length=MAX_DISTRIBUTION_ITEMS)
    geo_city_distribution: list[CityCount] = Field(default=[], max_length=MAX_DISTRIBUTION_ITEMS)
    geo_postal_prefix_distribution: list[PostalPrefixCount] = Field(
        default=[], max_length=MAX_DISTRIBUTION_ITEMS
    )
    unique_client_count: NonNegInt | None = None
    repeat_client_count: NonNegInt | None = None
    repeat_client_ratio: Annotated[float, Field(ge=0, le=1, strict=True)] | None = None
    invoice_signals: InvoiceSignals | None = None

    @model_validator(mode="after")
    def _check_bands(self):
        bands = [p.band for p in self.price_distribution]
        if bands and bands != list(PRICE_BANDS):
            raise ValueError(f"price_distribution bands must be {list(PRICE_BANDS)}")
        latency = [p.band for p in self.latency_distribution]
        if latency and latency != list(LATENCY_BANDS):
            raise ValueError(f"latency_distribution bands must be {list(LATENCY_BANDS)}")
        if bands and sum(p.count for p in self.price_distribution) != self.estimate_count:
            raise ValueError("price_distribution counts must sum to estimate_count")
        return self


class AggregateValidationError(ValueError):
    """Aggregates are malformed. Fatal to the snapshot attempt."""


def validate_aggregates(data) -> BucketedAggregates:
    """Validate aggregates (dict or model). Never coerces a bad shape into a good one."""
    if isinstance(data, BucketedAggregates):
        data = data.model_dump()
    if not isinstance(data, dict):
        raise AggregateValidationError("aggregates must be an object")
    try:
        return BucketedAggregates.model_validate(data)
    except ValidationError as e:
        raise AggregateValidationError(f"aggregates failed validation ({e.error_count()} errors)") from e


# ── API responses ────────────────────────────────────────────────────


class SnapshotCreateRequest(BaseModel):
    source_id: str


class SnapshotCreateResponse(BaseModel):
    snapshot_id: str
    status: str


class SnapshotStatusResponse(BaseModel):
    ok: bool
    status: str
    error: JobError | None = None
    has_result: bool
