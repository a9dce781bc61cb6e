"""
credential_service.py — Encrypted OAuth connection store and token lifecycle

Tokens are encrypted at rest with AES-256-GCM (utils/crypto.py). The
CredentialManager serves a live access token per (installation, provider),
refreshing it when it is close to expiry or when the caller forces it.

Business Rules:
- Token columns only ever hold ciphertext; decryption failures raise
  TokenDecryptError and are never swallowed
- A connection flagged needs_reauth raises NeedsReauthError until it is
  re-authorized through upsert_connection
- Concurrent refreshes for the same key share one in-flight task: one
  upstream call, one resulting token_version for every caller. The marker is
  cleared in the task's done-callback whether it succeeds or fails, and a
  failure is raised to every caller that was waiting on it
- token_version only moves forward, via a compare-and-set UPDATE on the
  version the refresh started from
- A refresh token rejected by the provider flags the connection needs_reauth

Called by: connectors/base.py (OAuthConnector), routers/connections.py, main.py
Depends on: utils/crypto.py, models (OAuthConnection), http_client.py,
            services/connection_events.py
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import SessionLocal
from ..http_client import http
from ..models import OAuthConnection
from ..models.base import utcnow
from ..utils.crypto import CredentialError, TokenDecryptError, decrypt_token, encrypt_token, mask_value
from .connection_events import log_connection_event

log = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class ConnectionNotFoundError(CredentialError):
    pass


class NeedsReauthError(CredentialError):
    def __init__(self, provider: str, reason: str | None = None):
        super().__init__(f"{provider} connection needs to be re-authorized")
        self.provider = provider
        self.reason = reason


class TokenRefreshError(CredentialError):
    def __init__(self, message: str, *, invalid_grant: bool = False):
        super().__init__(message)
        self.invalid_grant = invalid_grant


@dataclass(frozen=True)
class TokenBundle:
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    token_version: int


@dataclass(frozen=True)
class RefreshedTokens:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None


# ── Connection store ─────────────────────────────────────────────────


def _find(db: Session, installation_id: str, provider: str) -> OAuthConnection | None:
    return (
        db.query(OAuthConnection)
        .filter(OAuthConnection.installation_id == installation_id, OAuthConnection.provider == provider)
        .first()
    )


def upsert_connection(
    db: Session,
    installation_id: str,
    provider: str,
    *,
    access_token: str,
    refresh_token: str | None = None,
    expires_at: datetime | None = None,
    scopes: list[str] | None = None,
    external_account_id: str | None = None,
    metadata: dict | None = None,
    key: str | None = None,
) -> OAuthConnection:
    """Store freshly authorized tokens. Clears any needs_reauth flag."""
    conn = _find(db, installation_id, provider)
    if conn is None:
        conn = OAuthConnection(installation_id=installation_id, provider=provider, token_version=0)
        db.add(conn)
    else:
        conn.token_version = (conn.token_version or 0) + 1
    conn.access_token_enc = encrypt_token(access_token, key)
    conn.refresh_token_enc = encrypt_token(refresh_token, key) if refresh_token else None
    conn.expires_at = expires_at
    if scopes is not None:
        conn.scopes = scopes
    if external_account_id is not None:
        conn.external_account_id = external_account_id
    meta = {k: v for k, v in (conn.meta or {}).items() if k not in ("needs_reauth", "reauth_reason")}
    meta.update(metadata or {})
    conn.meta = meta
    db.commit()
    log.info(f"Stored {provider} connection for installation {installation_id} v{conn.token_version}")
    return conn


def _bundle(conn: OAuthConnection, key: str | None = None) -> TokenBundle:
    return TokenBundle(
        access_token=decrypt_token(conn.access_token_enc, key),
        refresh_token=decrypt_token(conn.refresh_token_enc, key) if conn.refresh_token_enc else None,
        expires_at=conn.expires_at,
        token_version=conn.token_version or 0,
    )


def get_connection(
    db: Session, installation_id: str, provider: str, key: str | None = None
) -> TokenBundle | None:
    """Decrypted tokens, or None when there is no connection. Ignores needs_reauth."""
    conn = _find(db, installation_id, provider)
    return _bundle(conn, key) if conn is not None else None


def find_connection_by_account(db: Session, provider: str, account_id: str) -> OAuthConnection | None:
    """The connection a provider-side account id belongs to, across installations."""
    return (
        db.query(OAuthConnection)
        .filter(OAuthConnection.provider == provider, OAuthConnection.external_account_id == account_id)
        .first()
    )


def update_connection_metadata(db: Session, installation_id: str, provider: str, **updates) -> bool:
    conn = _find(db, installation_id, provider)
    if conn is None:
        return False
    meta = dict(conn.meta or {})
    meta.update(updates)
    conn.meta = meta
    db.commit()
    return True


def mark_needs_reauth(
    db: Session, installation_id: str, provider: str, reason: str, details: dict | None = None
) -> bool:
    marked = update_connection_metadata(
        db,
        installation_id,
        provider,
        needs_reauth=True,
        reauth_reason=reason,
        reauth_marked_at=utcnow().isoformat(),
    )
    if marked:
        log_connection_event(
            db, installation_id, "needs_reauth", {"reason": reason, **(details or {})}, provider=provider
        )
        log.warning(f"{provider} connection for {installation_id} flagged needs_reauth: {reason}")
    return marked


def disconnect_connection(db: Session, installation_id: str, provider: str) -> bool:
    conn = _find(db, installation_id, provider)
    if conn is None:
        return False
    db.delete(conn)
    db.commit()
    log.info(f"Disconnected {provider} for installation {installation_id}")
    return True


def list_connection_statuses(db: Session, installation_id: str) -> list[dict]:
    conns = (
        db.query(OAuthConnection)
        .filter(OAuthConnection.installation_id == installation_id)
        .order_by(OAuthConnection.provider)
        .all()
    )
    return [
        {
            "provider": c.provider,
            "status": "reconnect_required" if c.needs_reauth else "connected",
            "reason": (c.meta or {}).get("reauth_reason"),
            "account": mask_value(c.external_account_id or ""),
            "expires_at": c.expires_at.isoformat() if c.expires_at else None,
            "token_version": c.token_version or 0,
        }
        for c in conns
    ]


# ── Upstream refresh ─────────────────────────────────────────────────


class OAuthTokenRefresher:
    """refresh_token grant against the provider's token endpoint."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _endpoint(self, provider: str) -> tuple[str, str, str]:
        if provider == "jobber":
            s = self.settings
            return s.jobber_token_url, s.jobber_client_id, s.jobber_client_secret
        raise TokenRefreshError(f"no token endpoint configured for {provider}")

    async def refresh(self, provider: str, refresh_token: str) -> RefreshedTokens:
        token_url, client_id, client_secret = self._endpoint(provider)
        try:
            r = await http.post(
                token_url,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.settings.token_refresh_timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"{provider} token endpoint unreachable: {type(e).__name__}") from e

        if r.status_code in (400, 401):
            raise TokenRefreshError(f"{provider} rejected the refresh token", invalid_grant=True)
        if r.status_code != 200:
            raise TokenRefreshError(f"{provider} token endpoint returned {r.status_code}")

        tokens = r.json()
        access = tokens.get("access_token")
        if not access:
            raise TokenRefreshError(f"{provider} token response had no access_token")
        expires_in = tokens.get("expires_in")
        return RefreshedTokens(
            access_token=access,
            refresh_token=tokens.get("refresh_token"),
            expires_in=int(expires_in) if expires_in else None,
        )


# ── Token manager ────────────────────────────────────────────────────


class CredentialManager:
    def __init__(self, settings: Settings, session_factory=SessionLocal, refresher=None):
        self.settings = settings
        self._session_factory = session_factory
        self.refresher = refresher or OAuthTokenRefresher(settings)
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}

    def _expiring(self, bundle: TokenBundle) -> bool:
        if bundle.expires_at is None:
            return False
        buffer = timedelta(seconds=self.settings.token_refresh_buffer_seconds)
        return bundle.expires_at <= utcnow() + buffer

    def in_flight(self, installation_id: str, provider: str) -> bool:
        return (installation_id, provider) in self._inflight

    async def get_access_token(
        self,
        installation_id: str,
        provider: str = "jobber",
        *,
        force_refresh: bool = False,
        timeout: float | None = None,
    ) -> TokenBundle:
        """Return a usable token bundle, refreshing when needed.

        Raises ConnectionNotFoundError, NeedsReauthError, TokenDecryptError,
        EncryptionKeyError or TokenRefreshError.
        """
        key = (installation_id, provider)
        with self._session_factory() as db:
            conn = _find(db, installation_id, provider)
            if conn is None:
                raise ConnectionNotFoundError(f"no {provider} connection for this installation")
            if conn.needs_reauth:
                raise NeedsReauthError(provider, (conn.meta or {}).get("reauth_reason"))
            bundle = _bundle(conn, self.settings.encryption_key)
            if not force_refresh and not self._expiring(bundle):
                return bundle
            if not bundle.refresh_token:
                mark_needs_reauth(db, installation_id, provider, "missing_refresh_token")
                raise NeedsReauthError(provider, "missing_refresh_token")

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(installation_id, provider, bundle))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._clear(k, t))

        budget = timeout if timeout is not None else self.settings.token_refresh_timeout_seconds * 2
        try:
            return await asyncio.wait_for(asyncio.shield(task), budget)
        except asyncio.TimeoutError as e:
            raise TokenRefreshError(f"{provider} token refresh timed out") from e

    def _clear(self, key: tuple[str, str], task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Every waiter may have timed out, so read the failure here
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                log.warning(f"{key[1]} token refresh for {key[0]} failed: {type(exc).__name__}")

    async def _refresh(self, installation_id: str, provider: str, current: TokenBundle) -> TokenBundle:
        try:
            refreshed = await asyncio.wait_for(
                self.refresher.refresh(provider, current.refresh_token),
                self.settings.token_refresh_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TokenRefreshError(f"{provider} token refresh timed out") from e
        except TokenRefreshError as e:
            if e.invalid_grant:
                with self._session_factory() as db:
                    mark_needs_reauth(db, installation_id, provider, "refresh_token_rejected")
                raise NeedsReauthError(provider, "refresh_token_rejected") from e
            raise

        now = utcnow()
        expires_in = refreshed.expires_in or DEFAULT_EXPIRES_IN
        new_bundle = TokenBundle(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or current.refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            token_version=current.token_version + 1,
        )
        enc_key = self.settings.encryption_key

        with self._session_factory() as db:
            result = db.execute(
                update(OAuthConnection)
                .where(
                    OAuthConnection.installation_id == installation_id,
                    OAuthConnection.provider == provider,
                    OAuthConnection.token_version == current.token_version,
                )
                .values(
                    access_token_enc=encrypt_token(new_bundle.access_token, enc_key),
                    refresh_token_enc=encrypt_token(new_bundle.refresh_token, enc_key) if new_bundle.refresh_token else None,
                    expires_at=new_bundle.expires_at,
                    token_version=new_bundle.token_version,
                    updated_at=now,
                )
            )
            if result.rowcount == 1:
                db.commit()
                log_connection_event(
                    db, installation_id, "token_refresh",
                    {"token_version": new_bundle.token_version}, provider=provider,
                )
                log.info(f"Refreshed {provider} token for {installation_id} -> v{new_bundle.token_version}")
                return new_bundle

            # Another process stored a newer generation first
            db.rollback()
            latest = get_connection(db, installation_id, provider, enc_key)

        if latest is not None and latest.token_version > current.token_version and not self._expiring(latest):
            log.info(f"{provider} token for {installation_id} was refreshed elsewhere (v{latest.token_version})")
            return latest
        raise TokenRefreshError(f"{provider} token changed during refresh")


__all__ = [
    "CredentialManager",
    "ConnectionNotFoundError",
    "NeedsReauthError",
    "OAuthTokenRefresher",
    "RefreshedTokens",
    "TokenBundle",
    "TokenDecryptError",
    "TokenRefreshError",
    "disconnect_connection",
    "find_connection_by_account",
    "get_connection",
    "list_connection_statuses",
    "mark_needs_reauth",
    "update_connection_metadata",
    "upsert_connection",
]
