"""
routers/ingest.py — Connector payload and CSV ingest

Business Rules:
- JSON payloads must already be in the canonical connector shape
- CSV uploads go through the file connector first
- Provider syncs fetch through the OAuth connector; a connection that needs
  re-authorization is a 409, any other fetch failure a coarse 502, and both
  are recorded as ingest_error connection events
- A source id in the request must name a pending source of this installation

Called by: main.py (router mount)
Depends on: services/ingest_service.py, connectors/, services/credential_service.py
"""

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..config import get_settings
from ..connectors import CONNECTORS, ConnectorError, get_connector
from ..database import get_db
from ..dependencies import get_credentials, get_installation_id
from ..schemas.connector import OAUTH_KINDS, ConnectorPayload, IngestRequest, IngestResponse
from ..services.connection_events import log_connection_event
from ..services.credential_service import ConnectionNotFoundError, NeedsReauthError
from ..services.ingest_service import IngestResult, run_ingest
from ..services.normalizers import NormalizationError
from ..services.source_service import SourceNotFoundError, SourceStateError
from ..utils.crypto import CredentialError

router = APIRouter(tags=["ingest"])


def _ingest(db: Session, payload: ConnectorPayload, installation_id: str, source_id, source_name) -> IngestResult:
    try:
        return run_ingest(db, payload, installation_id, source_id=source_id, source_name=source_name)
    except SourceNotFoundError:
        raise HTTPException(404, "Source not found")
    except SourceStateError as e:
        raise HTTPException(409, str(e))
    except NormalizationError:
        raise HTTPException(500, "Ingest failed while writing rows")


@router.post("/api/ingest", response_model=IngestResponse)
async def ingest(
    body: IngestRequest,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    payload = ConnectorPayload(**body.model_dump(exclude={"source_id", "source_name"}))
    result = _ingest(db, payload, installation_id, body.source_id, body.source_name)
    return IngestResponse(**vars(result))


@router.post("/api/ingest/file", response_model=IngestResponse)
async def ingest_file(
    estimates: UploadFile = File(...),
    invoices: UploadFile | None = File(None),
    source_name: str | None = Form(None),
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    estimates_csv = await estimates.read()
    invoices_csv = await invoices.read() if invoices is not None else None
    try:
        payload = get_connector("file", estimates_csv=estimates_csv, invoices_csv=invoices_csv).parse()
    except ConnectorError as e:
        raise HTTPException(400, str(e))
    result = _ingest(db, payload, installation_id, None, source_name or estimates.filename)
    return IngestResponse(**vars(result))


@router.post("/api/ingest/{provider}", response_model=IngestResponse)
async def ingest_from_provider(
    provider: str,
    source_name: str | None = None,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
    credentials=Depends(get_credentials),
):
    """Pull the last window of activity from a connected tool and ingest it."""
    if provider not in OAUTH_KINDS or provider not in CONNECTORS:
        raise HTTPException(404, f"No connector for {provider}")
    connector = get_connector(
        provider,
        credentials=credentials,
        installation_id=installation_id,
        window_days=get_settings().window_days,
    )
    try:
        payload = await connector.fetch()
    except ConnectionNotFoundError:
        raise HTTPException(404, f"{provider} is not connected")
    except NeedsReauthError:
        _fetch_failed(db, installation_id, provider, "needs_reauth")
        raise HTTPException(409, f"{provider} needs to be reconnected")
    except (CredentialError, ConnectorError, httpx.HTTPError) as e:
        _fetch_failed(db, installation_id, provider, type(e).__name__)
        raise HTTPException(502, f"Could not read from {provider}")
    result = _ingest(db, payload, installation_id, None, source_name or f"{provider} sync")
    return IngestResponse(**vars(result))


def _fetch_failed(db: Session, installation_id: str, provider: str, error: str) -> None:
    log_connection_event(db, installation_id, "ingest_error", {"stage": "fetch", "error": error}, provider=provider)
