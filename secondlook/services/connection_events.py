"""
connection_events.py — Append-only connection audit log

Every OAuth and ingest milestone for an installation is written here. Rows
are never updated or deleted (the model refuses both); the newest row per
installation and provider is the "latest status" view.

Called by: services/ingest_service.py, services/credential_service.py,
           routers/connections.py
Depends on: models (ConnectionEvent)
"""

import logging
import uuid

from sqlalchemy.orm import Session

from ..models import ConnectionEvent
from ..models.connections import CONNECTION_EVENT_PHASES

log = logging.getLogger(__name__)


def log_connection_event(
    db: Session,
    installation_id: str,
    phase: str,
    details: dict | None = None,
    *,
    provider: str = "jobber",
) -> str:
    """Append one event and commit it. Returns the new event_id."""
    if phase not in CONNECTION_EVENT_PHASES:
        raise ValueError(f"unknown connection event phase: {phase}")
    event_id = str(uuid.uuid4())
    db.add(
        ConnectionEvent(
            event_id=event_id,
            installation_id=installation_id,
            provider=provider,
            phase=phase,
            details=details or {},
        )
    )
    db.commit()
    log.info(f"connection event {phase} provider={provider} event_id={event_id}")
    return event_id


def list_connection_events(
    db: Session, installation_id: str, *, provider: str | None = None, limit: int = 20
) -> list[ConnectionEvent]:
    """Newest first."""
    q = db.query(ConnectionEvent).filter(ConnectionEvent.installation_id == installation_id)
    if provider:
        q = q.filter(ConnectionEvent.provider == provider)
    return q.order_by(ConnectionEvent.created_at.desc(), ConnectionEvent.id.desc()).limit(limit).all()


def latest_connection_event(
    db: Session, installation_id: str, provider: str | None = None
) -> ConnectionEvent | None:
    events = list_connection_events(db, installation_id, provider=provider, limit=1)
    return events[0] if events else None
