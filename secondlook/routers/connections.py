"""
routers/connections.py — OAuth connection status, events and disconnect

Tokens never leave the server: status responses carry the provider, a
connected / reconnect_required flag and a masked account id only.

Called by: main.py (router mount)
Depends on: services/credential_service.py, services/connection_events.py
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_installation_id
from ..schemas.connector import OAUTH_KINDS
from ..services.connection_events import list_connection_events
from ..services.credential_service import disconnect_connection, list_connection_statuses

router = APIRouter(tags=["connections"])


def _check_provider(provider: str) -> str:
    if provider not in OAUTH_KINDS:
        raise HTTPException(404, f"Unknown provider: {provider}")
    return provider


@router.get("/api/connections")
async def connections(
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    return {"connections": list_connection_statuses(db, installation_id)}


@router.get("/api/connections/{provider}/events")
async def connection_events(
    provider: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    _check_provider(provider)
    events = list_connection_events(db, installation_id, provider=provider, limit=limit)
    return {
        "events": [
            {
                "event_id": e.event_id,
                "phase": e.phase,
                "details": e.details,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in events
        ]
    }


@router.post("/api/connections/{provider}/disconnect")
async def disconnect(
    provider: str,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    _check_provider(provider)
    if not disconnect_connection(db, installation_id, provider):
        raise HTTPException(404, "No connection to disconnect")
    return {"ok": True, "provider": provider}
