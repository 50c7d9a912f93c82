"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# JWT_SECRET must be valid before tally.api.deps is imported anywhere.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# SQLite has no JSONB; render it as TEXT.  BigInteger → INTEGER so that
# autoincrement primary keys work.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from tally.config import TallyConfig  # noqa: E402
from tally.database.models import Base, Member  # noqa: E402
from tally.engine.sharing import SharePolicy, VerificationMode  # noqa: E402
from tally.services.fulfillment import FlutterwaveGateway  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

ADA, BOLA, CHIDI = 1, 2, 3
ADMIN_ID = 99999


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Tally tables.

    StaticPool so worker threads (``run_db``) see the same database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def members(db_engine: Engine) -> dict[str, int]:
    """Three members with empty ledgers."""
    with Session(db_engine) as session:
        session.add_all([
            Member(id=ADA, display_name="Ada"),
            Member(id=BOLA, display_name="Bola"),
            Member(id=CHIDI, display_name="Chidi"),
        ])
        session.commit()
    return {"ada": ADA, "bola": BOLA, "chidi": CHIDI}


@pytest.fixture
def auto_policy() -> SharePolicy:
    return SharePolicy(reward_points=10, mode=VerificationMode.AUTO)


@pytest.fixture
def manual_policy() -> SharePolicy:
    return SharePolicy(reward_points=10, mode=VerificationMode.MANUAL)


def make_gateway(handler) -> FlutterwaveGateway:
    """A gateway whose HTTP calls are answered by *handler*."""
    return FlutterwaveGateway("FLWSECK_TEST-key", transport=httpx.MockTransport(handler))


def ok_bills_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "status": "success",
            "message": "Bill payment successful",
            "data": {"flw_ref": "BPUSSD1234567", "tx_ref": "CF-FLYAPI-1"},
        },
    )


def failing_bills_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(400, json={"status": "error", "message": "Insufficient wallet balance"})


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_token(ADMIN_ID, is_admin=True)


def make_token(member_id: int, *, is_admin: bool = False) -> str:
    """Create a member JWT.  Usable as both a fixture helper and a factory."""
    import jwt

    from tally.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": str(member_id), "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_config() -> TallyConfig:
    return TallyConfig(community_name="Test Community", api_port=8000)


@pytest.fixture
def client(db_engine, api_config):
    """TestClient wired to the SQLite engine and a mocked fulfillment gateway.

    Lifespan is not run, so no DATABASE_URL is needed.
    """
    from fastapi.testclient import TestClient

    from tally.api import deps
    from tally.api.main import app

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_config] = lambda: api_config
    app.dependency_overrides[deps.get_gateway] = lambda: make_gateway(ok_bills_handler)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
