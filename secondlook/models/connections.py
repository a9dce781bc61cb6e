"""Connection models — encrypted OAuth tokens and the connection audit log.

Token columns only ever hold ciphertext produced by utils/crypto.py.
ConnectionEvent rows are history: the ORM refuses to update or delete them.
"""

from sqlalchemy import JSON, Column, Index, Integer, String, Text, UniqueConstraint, event

from ..database import UTCDateTime
from .base import Base, new_uuid, utcnow

CONNECTION_EVENT_PHASES = (
    "oauth_start",
    "oauth_callback",
    "token_exchange",
    "token_refresh",
    "needs_reauth",
    "ingest_start",
    "ingest_error",
    "ingest_success",
    "webhook_disconnect",
)


class OAuthConnection(Base):
    __tablename__ = "oauth_connections"
    id = Column(Integer, primary_key=True)
    installation_id = Column(String(64), nullable=False)
    provider = Column(String(40), nullable=False)
    access_token_enc = Column(Text, nullable=False)
    refresh_token_enc = Column(Text)
    expires_at = Column(UTCDateTime)
    token_version = Column(Integer, nullable=False, default=0)
    scopes = Column(JSON, default=list)
    external_account_id = Column(String(255))
    meta = Column("metadata", JSON, default=dict)  # needs_reauth, reauth_reason, ...
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("installation_id", "provider", name="uq_oauth_installation_provider"),
    )

    @property
    def needs_reauth(self) -> bool:
        return bool((self.meta or {}).get("needs_reauth"))


class ConnectionEvent(Base):
    __tablename__ = "connection_events"
    id = Column(Integer, primary_key=True)
    event_id = Column(String(36), nullable=False, unique=True, default=new_uuid)
    installation_id = Column(String(64), nullable=False)
    provider = Column(String(40), nullable=False, default="jobber")
    phase = Column(String(30), nullable=False)
    details = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_conn_events_installation_created", "installation_id", "created_at"),
    )


@event.listens_for(ConnectionEvent, "before_update")
def _refuse_event_update(mapper, connection, target):
    raise ValueError(f"connection event {target.event_id} is immutable")


@event.listens_for(ConnectionEvent, "before_delete")
def _refuse_event_delete(mapper, connection, target):
    raise ValueError(f"connection event {target.event_id} is immutable")
