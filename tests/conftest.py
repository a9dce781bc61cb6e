"""
conftest.py — Shared Test Fixtures for SecondLook

Provides an in-memory SQLite database, a FastAPI TestClient wired to it,
and factory fixtures for sources at each pipeline step.

Business Rules:
- All tests run against an isolated in-memory DB
- Each test function gets freshly created tables
- A fixed ENCRYPTION_KEY is set before any app module is imported

Called by: all test files via pytest autodiscovery
Depends on: secondlook.models (Base), secondlook.database (get_db)
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = "0123456789abcdef" * 4
os.environ.setdefault("SNAPSHOT_MODE", "deterministic")
os.environ.setdefault("ANTHROPIC_API_KEY", "")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from secondlook.models import Base, Source

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


NOW = datetime(2026, 3, 30, 12, 0, tzinfo=timezone.utc)
INSTALLATION = "install-test-0001"


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def make_source(db_session: Session):
    """Factory: a Source in the given status for the test installation."""

    def _make(status: str = "pending", source_type: str = "file", installation_id: str = INSTALLATION) -> Source:
        source = Source(
            installation_id=installation_id,
            source_type=source_type,
            source_name="test import",
            status=status,
            meta={},
        )
        db_session.add(source)
        db_session.commit()
        return source

    return _make


def _estimate_rows(n: int, *, now: datetime = NOW, status: str = "sent", amount: float = 800.0, **extra) -> list[dict]:
    """n in-window estimate rows, one per day going back from `now`."""
    rows = []
    for i in range(n):
        created = now - timedelta(days=1 + i % 80)
        rows.append({
            "estimate_id": f"est-{i}",
            "created_at": created.isoformat(),
            "closed_at": (created + timedelta(days=1)).isoformat() if status in ("accepted", "converted") else None,
            "amount": amount,
            "status": status,
            **extra,
        })
    return rows


@pytest.fixture()
def estimate_rows():
    """Factory: n in-window estimate rows (see _estimate_rows)."""
    return _estimate_rows


@pytest.fixture()
def installation_id() -> str:
    return INSTALLATION


@pytest.fixture()
def client(db_session: Session) -> TestClient:
    """FastAPI TestClient with the DB and background jobs on the test engine."""
    from secondlook.database import get_db
    from secondlook.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    original_factory = app.state.session_factory
    app.state.session_factory = TestSessionLocal
    app.state.tracker.clear()

    c = TestClient(app)
    c.cookies.set("installation_id", INSTALLATION)
    yield c

    app.dependency_overrides.clear()
    app.state.session_factory = original_factory
