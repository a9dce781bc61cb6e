"""
routers/snapshots.py — Snapshot creation, status polling and mode info

Business Rules:
- POST /api/snapshot creates and queues the snapshot, then runs the job in
  the background; the response never waits for scoring
- Status polling is scoped to the caller's installation; another
  installation's snapshot is reported as not found
- Job failures are visible only through the stored {kind, message} error

Called by: main.py (router mount)
Depends on: services/snapshot_service.py, services/mode_selection.py
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_installation_id, get_orchestrator, get_session_factory
from ..schemas.snapshot import SnapshotCreateRequest, SnapshotCreateResponse, SnapshotStatusResponse
from ..services.aggregates import BucketMissingError
from ..services.snapshot_service import (
    SnapshotNotFoundError,
    create_snapshot,
    get_snapshot,
    queue_snapshot,
    run_snapshot_job,
    snapshot_status,
)
from ..services.source_service import SourceNotFoundError, SourceStateError

router = APIRouter(tags=["snapshots"])


@router.post("/api/snapshot", response_model=SnapshotCreateResponse)
async def start_snapshot(
    body: SnapshotCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
    orchestrator=Depends(get_orchestrator),
    session_factory=Depends(get_session_factory),
):
    try:
        snapshot = create_snapshot(db, installation_id, body.source_id, window_days=orchestrator.settings.window_days)
    except SourceNotFoundError:
        raise HTTPException(404, "Source not found")
    except SourceStateError as e:
        raise HTTPException(409, str(e))
    except BucketMissingError:
        raise HTTPException(409, "Source has no bucketed aggregates")

    queue_snapshot(db, snapshot.id)
    background_tasks.add_task(run_snapshot_job, orchestrator, snapshot.id, session_factory)
    logger.info("Snapshot queued", snapshot_id=snapshot.id, source_id=body.source_id)
    return SnapshotCreateResponse(snapshot_id=snapshot.id, status="queued")


def _owned_snapshot(db: Session, snapshot_id: str, installation_id: str):
    try:
        return get_snapshot(db, snapshot_id, installation_id)
    except SnapshotNotFoundError:
        raise HTTPException(404, "Snapshot not found")


@router.get("/api/snapshots/{snapshot_id}/status", response_model=SnapshotStatusResponse)
async def snapshot_job_status(
    snapshot_id: str,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    return snapshot_status(_owned_snapshot(db, snapshot_id, installation_id))


@router.get("/api/snapshots/{snapshot_id}")
async def snapshot_detail(
    snapshot_id: str,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    s = _owned_snapshot(db, snapshot_id, installation_id)
    return {
        "id": s.id,
        "source_id": s.source_id,
        "status": s.status,
        "mode_used": s.mode_used,
        "estimate_count": s.estimate_count,
        "confidence_level": s.confidence_level,
        "input_summary": s.input_summary,
        "result": s.result,
        "error": s.error,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "completed_at": s.completed_at.isoformat() if s.completed_at else None,
    }


@router.get("/api/snapshot-mode")
async def snapshot_mode(orchestrator=Depends(get_orchestrator)):
    return orchestrator.selector.explain()
