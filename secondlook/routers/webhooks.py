"""
routers/webhooks.py — Provider webhooks

Business Rules:
- Deliveries are verified against JOBBER_WEBHOOK_SECRET before the body is
  parsed; a missing or wrong signature is 401
- With no secret configured the endpoint refuses every delivery (503)
- Verified deliveries are acknowledged with {"ok": true} even when the topic
  or account is unknown, so the provider does not retry them

Called by: main.py (router mount)
Depends on: services/jobber_webhook.py
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..services.jobber_webhook import SIGNATURE_HEADERS, handle_jobber_event, verify_signature

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/jobber")
async def jobber_webhook(request: Request, db: Session = Depends(get_db)):
    secret = get_settings().jobber_webhook_secret
    if not secret:
        logger.warning("Jobber webhook received but JOBBER_WEBHOOK_SECRET is not set")
        raise HTTPException(503, "Webhook secret not configured")

    raw = await request.body()
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), "")
    if not verify_signature(raw, signature, secret):
        logger.warning("Jobber webhook signature rejected", signed=bool(signature))
        raise HTTPException(401, "Invalid webhook signature")

    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(400, "Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(400, "Invalid JSON payload")

    handle_jobber_event(payload, db)
    return {"ok": True}
