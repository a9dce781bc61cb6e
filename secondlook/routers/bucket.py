"""
routers/bucket.py — Turn normalized rows into bucket aggregates

Called by: main.py (router mount)
Depends on: services/bucketing.py
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_installation_id
from ..services.bucketing import BucketingError, bucket_source
from ..services.source_service import SourceNotFoundError, SourceStateError

router = APIRouter(tags=["bucket"])


class BucketRequest(BaseModel):
    source_id: str


class BucketResponse(BaseModel):
    source_id: str
    status: str
    estimate_count: int
    invoice_count: int
    weeks: int


@router.post("/api/bucket", response_model=BucketResponse)
async def bucket(
    body: BucketRequest,
    db: Session = Depends(get_db),
    installation_id: str = Depends(get_installation_id),
):
    try:
        result = bucket_source(db, body.source_id, installation_id)
    except SourceNotFoundError:
        raise HTTPException(404, "Source not found")
    except SourceStateError as e:
        raise HTTPException(409, str(e))
    except BucketingError:
        raise HTTPException(500, "Bucketing failed")
    return BucketResponse(**vars(result))
