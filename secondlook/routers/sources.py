"""
routers/sources.py — List an installation's imported sources

Called by: main.py (router mount)
Depends on: services/source_service.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_installation_id
from ..services.source_service import list_sources

router = APIRouter(tags=["sources"])


@router.get("/api/sources")
async def sources(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    return {
        "sources": [
            {
                "id": s.id,
                "source_type": s.source_type,
                "source_name": s.source_name,
                "status": s.status,
                "metadata": s.meta or {},
                "created_at": s.created_at.isoformat() if s.created_at else None,
            }
            for s in list_sources(db, installation_id, limit=limit)
        ]
    }
