"""Jobber webhook service — signature check and marketplace disconnects.

Jobber signs each delivery with HMAC-SHA256 over the raw body using the
app's webhook secret. Only APP_DISCONNECT is acted on: the matching
connection is removed and a webhook_disconnect event is appended for the
installation it belonged to. Every other topic is acknowledged and ignored.

Usage:
    if not verify_signature(raw_body, signature, settings.jobber_webhook_secret):
        ...  # 401
    handle_jobber_event(payload, db)

Called by: routers/webhooks.py
Depends on: services/credential_service.py, services/connection_events.py
"""

import base64
import binascii
import hashlib
import hmac
import logging

from sqlalchemy.orm import Session

from .connection_events import log_connection_event
from .credential_service import disconnect_connection, find_connection_by_account

log = logging.getLogger("secondlook.webhook")

PROVIDER = "jobber"
DISCONNECT_TOPIC = "APP_DISCONNECT"
SIGNATURE_HEADERS = ("x-jobber-signature", "x-jobber-hmac-sha256", "x-webhook-signature")


def sign(payload: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode(), payload, hashlib.sha256).digest()


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Timing-safe check of a hex (64 chars) or base64 HMAC-SHA256 signature."""
    if not signature or not secret:
        return False
    try:
        if len(signature) == 64:
            given = bytes.fromhex(signature)
        else:
            given = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    return hmac.compare_digest(given, sign(payload, secret))


def _get(obj, key):
    return obj.get(key) if isinstance(obj, dict) else None


def read_event_type(payload: dict) -> str | None:
    event = _get(payload, "event")
    return payload.get("topic") or payload.get("type") or _get(event, "type") or _get(event, "topic")


def read_account_id(payload: dict) -> str | None:
    direct = payload.get("accountId") or payload.get("account_id") or payload.get("jobberAccountId")
    if direct:
        return str(direct)
    data = _get(_get(payload, "event"), "data")
    if data is None:
        data = _get(payload, "data")
    nested = _get(data, "accountId") or _get(data, "account_id") or _get(_get(data, "account"), "id")
    return str(nested) if nested else None


def handle_jobber_event(payload: dict, db: Session) -> str | None:
    """Apply one verified delivery. Returns the disconnected installation id, if any."""
    topic = read_event_type(payload)
    if topic != DISCONNECT_TOPIC:
        log.debug(f"Ignoring Jobber webhook topic {topic}")
        return None

    account_id = read_account_id(payload)
    if not account_id:
        log.warning("Jobber disconnect webhook without an account id")
        return None

    conn = find_connection_by_account(db, PROVIDER, account_id)
    if conn is None:
        log.warning("Jobber disconnect webhook for an unknown account")
        return None

    installation_id = conn.installation_id
    disconnect_connection(db, installation_id, PROVIDER)
    log_connection_event(
        db,
        installation_id,
        "webhook_disconnect",
        {"account_id": account_id, "reason": "jobber_marketplace_disconnect"},
        provider=PROVIDER,
    )
    log.info(f"Jobber marketplace disconnect for installation {installation_id}")
    return installation_id
