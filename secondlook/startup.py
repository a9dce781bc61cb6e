"""
startup.py — Boot-time database housekeeping (idempotent)

Tables are versioned by alembic; create_all(checkfirst=True) only fills in
what is missing so a fresh SQLite file works without running migrations.

Snapshot jobs run as in-process background tasks, so any snapshot still
queued or running when the process starts was orphaned by the previous
process. Those are failed with kind "interrupted" so status polling ends.

Called by: main.py lifespan
Depends on: database.py (engine, SessionLocal), services/snapshot_service.py
"""

import logging
import os

from .database import SessionLocal, engine

log = logging.getLogger(__name__)


def run_startup_migrations() -> None:
    if os.environ.get("TESTING"):
        log.info("TESTING mode, skipping startup schema sync")
        return

    from .models import Base
    from .services.snapshot_service import fail_interrupted_snapshots

    Base.metadata.create_all(bind=engine, checkfirst=True)
    log.info("ORM schema sync complete")

    with SessionLocal() as db:
        orphaned = fail_interrupted_snapshots(db)
    if orphaned:
        log.warning(f"Failed {orphaned} snapshot job(s) orphaned by a previous process")
