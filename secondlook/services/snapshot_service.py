"""
snapshot_service.py — Snapshot creation and the snapshot job state machine

States: created → queued → running → {complete | failed}.

Business Rules:
- A snapshot can only be created for a source the installation owns whose
  status is bucketed, snapshot_generated or insufficient_data
- Every transition is a compare-and-set UPDATE on the expected prior
  status; the created/queued → running step is the only mutual exclusion
- Re-running a snapshot that is running, complete or failed is a no-op and
  writes nothing
- Aggregates are validated before use; malformed aggregates fail the job
- In externally_assisted mode the reasoning result is validated against the
  locked report schema; any failure (transport, timeout, schema) records a
  fallback and the deterministic scorer produces the report instead
- Below the minimum estimate count the deterministic insufficient_data
  report is used without calling the reasoning service
- Every scored run is recorded in the fallback tracker (fallback_used=True
  only when the external attempt failed)
- Job errors are stored as {kind, message} with a coarse message; they are
  never raised to whatever triggered the job

Called by: routers/snapshots.py
Depends on: services/aggregates.py, services/deterministic_scorer.py,
            services/mode_selection.py, services/reasoning_service.py,
            services/telemetry.py, services/source_service.py
"""

import asyncio
import time

from loguru import logger
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import SessionLocal
from ..models import EstimateBucket, Snapshot, Source
from ..models.base import utcnow
from ..schemas.errors import JobError
from ..schemas.snapshot import (
    AggregateValidationError,
    ReportValidationError,
    validate_aggregates,
    validate_report,
)
from .aggregates import BucketMissingError, load_aggregates
from .deterministic_scorer import score_snapshot
from .mode_selection import ModeSelector
from .reasoning_service import ClaudeReasoner, ReasoningError
from .source_service import (
    SNAPSHOT_READY_STATUSES,
    SourceStateError,
    advance_source_status,
    get_source,
)
from .telemetry import FallbackRateTracker, log_snapshot_event

PENDING_STATUSES = ("created", "queued")
NO_OP_STATUSES = ("running", "complete", "failed")

# error kind -> user-facing message
FAILURE_MESSAGES = {
    "source_not_found": "The source for this snapshot no longer exists.",
    "source_not_bucketed": "The source must be bucketed before a snapshot can run.",
    "bucket_missing": "No bucketed aggregates were found for this source.",
    "invalid_aggregates": "The aggregates for this source were malformed.",
    "invalid_report": "The snapshot report failed validation.",
    "timeout": "Snapshot generation timed out.",
    "interrupted": "Snapshot generation was interrupted by a restart. Start a new snapshot.",
    "internal_error": "Snapshot generation failed.",
}


class SnapshotNotFoundError(LookupError):
    pass


# ── Creation ─────────────────────────────────────────────────────────


def create_snapshot(db: Session, installation_id: str, source_id: str, *, window_days: int = 90) -> Snapshot:
    """Insert a snapshot in status "created" for a bucketed source."""
    source = get_source(db, source_id, installation_id)
    if source.status not in SNAPSHOT_READY_STATUSES:
        raise SourceStateError(source_id, source.status, "create a snapshot")
    bucket = db.query(EstimateBucket).filter(EstimateBucket.source_id == source_id).first()
    if bucket is None:
        raise BucketMissingError(source_id)

    snapshot = Snapshot(
        source_id=source_id,
        installation_id=installation_id,
        status="created",
        input_summary={
            "source_type": source.source_type,
            "estimate_count": bucket.estimate_count,
            "meaningful_count": bucket.meaningful_count,
            "weeks": len(bucket.weekly_volume or []),
            "window_days": window_days,
        },
    )
    db.add(snapshot)
    db.commit()
    logger.info("Snapshot created", snapshot_id=snapshot.id, source_id=source_id)
    return snapshot


def _transition(db: Session, snapshot_id: str, from_statuses, to_status: str, **values) -> bool:
    result = db.execute(
        update(Snapshot)
        .where(Snapshot.id == snapshot_id, Snapshot.status.in_(tuple(from_statuses)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def queue_snapshot(db: Session, snapshot_id: str) -> bool:
    """created → queued. Returns False when the snapshot was not in created."""
    queued = _transition(db, snapshot_id, ("created",), "queued")
    db.commit()
    return queued


def get_snapshot(db: Session, snapshot_id: str, installation_id: str | None = None) -> Snapshot:
    # Jobs write from their own session; always read the stored row
    snapshot = db.get(Snapshot, snapshot_id, populate_existing=True)
    if snapshot is None or (installation_id is not None and snapshot.installation_id != installation_id):
        raise SnapshotNotFoundError(snapshot_id)
    return snapshot


def fail_interrupted_snapshots(db: Session) -> int:
    """Fail every snapshot left queued or running. Returns how many were failed."""
    result = db.execute(
        update(Snapshot)
        .where(Snapshot.status.in_(("queued", "running")))
        .values(
            status="failed",
            error=JobError(kind="interrupted", message=FAILURE_MESSAGES["interrupted"]).model_dump(),
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount


def snapshot_status(snapshot: Snapshot) -> dict:
    return {
        "ok": snapshot.status != "failed",
        "status": snapshot.status,
        "error": snapshot.error,
        "has_result": snapshot.result is not None,
    }


# ── Job runner ───────────────────────────────────────────────────────


class SnapshotOrchestrator:
    def __init__(
        self,
        settings: Settings,
        tracker: FallbackRateTracker,
        reasoner=None,
        selector: ModeSelector | None = None,
    ):
        self.settings = settings
        self.tracker = tracker
        self.reasoner = reasoner or ClaudeReasoner(settings)
        self.selector = selector or ModeSelector(settings, tracker)

    async def run(self, db: Session, snapshot_id: str, *, timeout: float | None = None) -> str | None:
        """Run one snapshot job to a terminal state.

        Returns the snapshot's resulting status, or None when it does not
        exist. Never raises for job-level failures.
        """
        snapshot = db.get(Snapshot, snapshot_id)
        if snapshot is None:
            logger.warning("Snapshot job for unknown snapshot", snapshot_id=snapshot_id)
            return None
        if snapshot.status in NO_OP_STATUSES:
            logger.info("Snapshot job skipped", snapshot_id=snapshot_id, status=snapshot.status)
            return snapshot.status

        source = db.get(Source, snapshot.source_id)
        if source is None:
            return self._fail(db, snapshot, "source_not_found", PENDING_STATUSES)
        if source.status not in SNAPSHOT_READY_STATUSES:
            return self._fail(db, snapshot, "source_not_bucketed", PENDING_STATUSES)

        if not _transition(db, snapshot_id, PENDING_STATUSES, "running", started_at=utcnow()):
            db.rollback()
            db.refresh(snapshot)
            logger.info("Snapshot job lost the running race", snapshot_id=snapshot_id)
            return snapshot.status
        db.commit()

        budget = timeout if timeout is not None else self.settings.snapshot_job_timeout_seconds
        try:
            report, mode_used, estimate_count = await asyncio.wait_for(
                self._score(snapshot_id, source.id, db), budget
            )
        except asyncio.TimeoutError:
            return self._fail(db, snapshot, "timeout", ("running",))
        except BucketMissingError:
            return self._fail(db, snapshot, "bucket_missing", ("running",))
        except AggregateValidationError as e:
            logger.warning("Snapshot aggregates rejected", snapshot_id=snapshot_id, error=str(e))
            return self._fail(db, snapshot, "invalid_aggregates", ("running",))
        except ReportValidationError as e:
            logger.error("Deterministic report failed validation", snapshot_id=snapshot_id, error=str(e))
            return self._fail(db, snapshot, "invalid_report", ("running",))
        except Exception:
            logger.exception("Snapshot job crashed", snapshot_id=snapshot_id)
            return self._fail(db, snapshot, "internal_error", ("running",))

        return self._complete(db, snapshot, report, mode_used, estimate_count)

    async def _score(self, snapshot_id: str, source_id: str, db: Session) -> tuple[dict, str, int]:
        started = time.monotonic()
        aggregates = validate_aggregates(load_aggregates(db, source_id))
        min_estimates = self.settings.required_min_estimates

        decision = self.selector.resolve()
        mode_attempted = decision.resolved
        if aggregates.estimate_count < min_estimates:
            mode_attempted = "deterministic"

        report = None
        error_code = None
        if mode_attempted == "externally_assisted":
            try:
                raw = await asyncio.wait_for(
                    self.reasoner.generate_report(aggregates), self.settings.reasoning_timeout_seconds
                )
                report = validate_report(raw)
            except asyncio.TimeoutError:
                error_code = "E_TIMEOUT"
            except ReasoningError as e:
                error_code = e.code
            except ReportValidationError:
                error_code = "E_SCHEMA"
            except Exception as e:
                logger.warning("Reasoning call raised", snapshot_id=snapshot_id, error=type(e).__name__)
                error_code = "E_UNKNOWN"

        fallback_used = mode_attempted == "externally_assisted" and report is None
        mode_used = "externally_assisted" if report is not None else "deterministic"
        if report is None:
            report = validate_report(score_snapshot(aggregates, min_estimates=min_estimates))

        self.tracker.record(fallback_used)
        log_snapshot_event(
            source_id=source_id,
            snapshot_id=snapshot_id,
            mode_attempted=mode_attempted,
            mode_used=mode_used,
            fallback_used=fallback_used,
            error_code=error_code,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return report, mode_used, aggregates.estimate_count

    def _complete(self, db: Session, snapshot: Snapshot, report: dict, mode_used: str, estimate_count: int) -> str:
        is_scored = report["kind"] == "snapshot"
        confidence = report["scores"]["confidence"] if is_scored else report["confidence"]
        done = _transition(
            db,
            snapshot.id,
            ("running",),
            "complete",
            result=report,
            estimate_count=estimate_count,
            confidence_level=confidence,
            mode_used=mode_used,
            error=None,
            completed_at=utcnow(),
        )
        if not done:
            db.rollback()
            db.refresh(snapshot)
            return snapshot.status
        advance_source_status(db, snapshot.source_id, "snapshot_generated" if is_scored else "insufficient_data")
        db.commit()
        logger.info(
            "Snapshot complete",
            snapshot_id=snapshot.id,
            kind=report["kind"],
            mode_used=mode_used,
            confidence=confidence,
        )
        return "complete"

    def _fail(self, db: Session, snapshot: Snapshot, kind: str, from_statuses) -> str:
        db.rollback()
        failed = _transition(
            db,
            snapshot.id,
            from_statuses,
            "failed",
            error=JobError(kind=kind, message=FAILURE_MESSAGES[kind]).model_dump(),
            completed_at=utcnow(),
        )
        if failed:
            source = db.get(Source, snapshot.source_id)
            if source is not None:
                meta = dict(source.meta or {})
                meta.update(last_snapshot_id=snapshot.id, last_snapshot_status="failed")
                source.meta = meta
        db.commit()
        db.refresh(snapshot)
        logger.warning("Snapshot failed", snapshot_id=snapshot.id, kind=kind)
        return snapshot.status


async def run_snapshot_job(orchestrator: SnapshotOrchestrator, snapshot_id: str, session_factory=SessionLocal) -> None:
    """Background entry point: own session per job."""
    db = session_factory()
    try:
        await orchestrator.run(db, snapshot_id)
    finally:
        db.close()
