"""
tests/test_database.py — Engine, Session & Seed Helpers
========================================================
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from tally.database.engine import create_db_engine, get_session, init_db, run_db
from tally.database.models import ConversionSetting, Member


def test_create_engine_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        create_db_engine()


def test_get_session_commits_on_success(db_engine):
    with get_session(db_engine) as session:
        session.add(Member(id=10, display_name="Dayo"))
    with get_session(db_engine) as session:
        assert session.get(Member, 10).display_name == "Dayo"


def test_get_session_rolls_back_on_error(db_engine):
    with pytest.raises(ValueError):
        with get_session(db_engine) as session:
            session.add(Member(id=11, display_name="Ebun"))
            session.flush()
            raise ValueError("abort")
    with get_session(db_engine) as session:
        assert session.get(Member, 11) is None


def test_init_db_seeds_conversion_settings(db_engine):
    init_db(db_engine)
    init_db(db_engine)
    with get_session(db_engine) as session:
        products = session.scalars(select(ConversionSetting.product_type)).all()
    assert sorted(products) == ["airtime", "data"]


def test_run_db_runs_on_worker_thread(db_engine):
    def _count(engine) -> int:
        with get_session(engine) as session:
            return len(session.scalars(select(Member)).all())

    assert asyncio.run(run_db(_count, db_engine)) == 0
