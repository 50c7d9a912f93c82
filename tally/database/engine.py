"""
tally.database.engine — Database Connection, Sessions & Async Helper
=====================================================================

One relational store is the single source of truth for balances.
Every mutating operation runs inside exactly one :func:`get_session`
block: the block is the transaction, and any exception inside it rolls
back every row the operation wrote.

SQLAlchemy + psycopg2 is **synchronous**.  FastAPI handlers that need to
stay on the event loop ship DB work to a thread with :func:`run_db`.

Usage::

    from tally.database.engine import create_db_engine, get_session, init_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    with get_session(engine) as session:
        ledger_service.credit(session, member_id=7, points=50, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from tally.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables and seed default conversion settings.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from tally.database.seed import seed_conversion_settings

    seed_conversion_settings(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back
    on exception.

    ``expire_on_commit=False`` keeps returned rows readable after the
    block exits.

    Usage::

        with get_session(engine) as session:
            session.add(Member(id=7, display_name="Ada"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, so an ``async``
    route handler never blocks the event loop on a query::

        result = await run_db(redemption_service.redeem, engine, gateway, ...)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
