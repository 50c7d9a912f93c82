"""
tests/test_ledger_service.py — Points Ledger Integration Tests
===============================================================
Credits, debits, transfers, the append-only chain and the read-side
helpers, against an in-memory SQLite database.
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tally.database.engine import get_session
from tally.database.models import LedgerEntry, TransactionType
from tally.engine.metadata import (
    ActivityMetadata,
    AdjustmentMetadata,
)
from tally.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRequestError,
    NoSelfTransferError,
    NotFoundError,
)
from tally.services import ledger_service, share_service


@pytest.fixture
def engine(db_engine, members):
    return db_engine


def _earn(engine, member_id: int, points: int, source: str = "quiz"):
    return ledger_service.add_points(
        engine,
        member_id=member_id,
        points=points,
        transaction_type=TransactionType.EARN,
        source=source,
        metadata=ActivityMetadata(details={"activity": source}),
    )


def _adjust_down(engine, member_id: int, points: int, *, override: bool = False):
    return ledger_service.deduct_points(
        engine,
        member_id=member_id,
        points=points,
        transaction_type=TransactionType.ADJUSTMENT,
        source="admin_adjustment",
        metadata=AdjustmentMetadata(admin_id=99999, reason="correction", override=override),
    )


def _entries(engine, member_id: int) -> list[LedgerEntry]:
    with Session(engine) as session:
        return list(session.scalars(
            select(LedgerEntry)
            .where(LedgerEntry.member_id == member_id)
            .order_by(LedgerEntry.seq)
        ).all())


# ===========================================================================
# Balance
# ===========================================================================
class TestBalance:
    def test_new_member_has_zero_balance(self, engine, members):
        assert ledger_service.fetch_balance(engine, members["ada"]) == 0

    def test_unknown_member_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            ledger_service.fetch_balance(engine, 424242)

    def test_balance_is_latest_balance_after(self, engine, members):
        _earn(engine, members["ada"], 30)
        _earn(engine, members["ada"], 12)
        assert ledger_service.fetch_balance(engine, members["ada"]) == 42
        assert _entries(engine, members["ada"])[-1].balance_after == 42


# ===========================================================================
# Credit
# ===========================================================================
class TestCredit:
    def test_credit_appends_entry_with_snapshot(self, engine, members):
        entry = _earn(engine, members["ada"], 50)
        assert entry.amount == 50
        assert entry.balance_after == 50
        assert entry.seq == 1
        assert entry.transaction_type == "earn"
        assert entry.metadata_ == {"kind": "activity", "details": {"activity": "quiz"}}

    def test_earn_without_metadata_is_allowed(self, engine, members):
        entry = ledger_service.add_points(
            engine,
            member_id=members["ada"],
            points=5,
            transaction_type=TransactionType.EARN,
            source="daily_login",
        )
        assert entry.metadata_ is None

    @pytest.mark.parametrize("points", [0, -5, 2.5, True])
    def test_rejects_non_positive_or_non_integer(self, engine, members, points):
        with pytest.raises(InvalidAmountError):
            _earn(engine, members["ada"], points)
        assert _entries(engine, members["ada"]) == []

    def test_unknown_member_writes_nothing(self, engine):
        with pytest.raises(NotFoundError):
            _earn(engine, 424242, 10)
        assert _entries(engine, 424242) == []

    def test_mismatched_metadata_is_rejected(self, engine, members):
        with pytest.raises(InvalidRequestError):
            ledger_service.add_points(
                engine,
                member_id=members["ada"],
                points=10,
                transaction_type=TransactionType.SOCIAL_SHARE,
                source="share_facebook",
                metadata=ActivityMetadata(),
            )


# ===========================================================================
# Debit
# ===========================================================================
class TestDebit:
    def test_debit_within_balance(self, engine, members):
        _earn(engine, members["ada"], 60)
        entry = _adjust_down(engine, members["ada"], 60)
        assert entry.amount == -60
        assert entry.balance_after == 0

    def test_overdraw_fails_and_writes_nothing(self, engine, members):
        _earn(engine, members["ada"], 60)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            _adjust_down(engine, members["ada"], 100)
        assert exc_info.value.balance == 60
        assert exc_info.value.requested == 100
        assert len(_entries(engine, members["ada"])) == 1
        assert ledger_service.fetch_balance(engine, members["ada"]) == 60

    def test_override_allows_negative_balance(self, engine, members, caplog):
        _earn(engine, members["ada"], 10)
        with caplog.at_level("WARNING", logger="tally.services.ledger_service"):
            entry = _adjust_down(engine, members["ada"], 25, override=True)
        assert entry.balance_after == -15
        assert entry.metadata_["override"] is True
        assert "override" in caplog.text.lower()

    def test_override_flag_false_does_not_allow_negative(self, engine, members):
        with pytest.raises(InsufficientBalanceError):
            _adjust_down(engine, members["ada"], 1, override=False)


# ===========================================================================
# Transfer
# ===========================================================================
class TestTransfer:
    def test_transfer_writes_two_correlated_entries(self, engine, members):
        _earn(engine, members["ada"], 100)
        result = ledger_service.transfer_points(
            engine,
            from_member_id=members["ada"],
            to_member_id=members["bola"],
            points=40,
            reason="thanks",
        )
        assert result.sender_entry.amount == -40
        assert result.recipient_entry.amount == 40
        assert result.sender_entry.transfer_group == result.recipient_entry.transfer_group
        assert result.sender_entry.transfer_group == result.transfer_group
        assert result.sender_entry.source == "transfer_out"
        assert result.recipient_entry.source == "transfer_in"
        assert ledger_service.fetch_balance(engine, members["ada"]) == 60
        assert ledger_service.fetch_balance(engine, members["bola"]) == 40

    def test_transfer_metadata_points_at_counterparty(self, engine, members):
        _earn(engine, members["ada"], 10)
        result = ledger_service.transfer_points(
            engine,
            from_member_id=members["ada"],
            to_member_id=members["bola"],
            points=10,
            reason="gift",
        )
        assert result.sender_entry.metadata_["counterparty_id"] == members["bola"]
        assert result.sender_entry.metadata_["direction"] == "out"
        assert result.recipient_entry.metadata_["counterparty_id"] == members["ada"]
        assert result.recipient_entry.metadata_["direction"] == "in"

    def test_self_transfer_rejected(self, engine, members):
        _earn(engine, members["ada"], 10)
        with pytest.raises(NoSelfTransferError):
            ledger_service.transfer_points(
                engine,
                from_member_id=members["ada"],
                to_member_id=members["ada"],
                points=5,
                reason="",
            )
        assert len(_entries(engine, members["ada"])) == 1

    def test_insufficient_sender_balance(self, engine, members):
        _earn(engine, members["ada"], 10)
        with pytest.raises(InsufficientBalanceError):
            ledger_service.transfer_points(
                engine,
                from_member_id=members["ada"],
                to_member_id=members["bola"],
                points=11,
                reason="",
            )
        assert _entries(engine, members["bola"]) == []

    def test_unknown_recipient(self, engine, members):
        _earn(engine, members["ada"], 10)
        with pytest.raises(NotFoundError):
            ledger_service.transfer_points(
                engine,
                from_member_id=members["ada"],
                to_member_id=424242,
                points=5,
                reason="",
            )
        assert ledger_service.fetch_balance(engine, members["ada"]) == 10

    def test_failure_after_first_leg_rolls_back_both(self, engine, members):
        _earn(engine, members["ada"], 50)
        real_append = ledger_service._append_entry
        calls = {"n": 0}

        def flaky_append(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("simulated crash between legs")
            return real_append(*args, **kwargs)

        with patch.object(ledger_service, "_append_entry", side_effect=flaky_append):
            with pytest.raises(RuntimeError, match="simulated crash"):
                ledger_service.transfer_points(
                    engine,
                    from_member_id=members["ada"],
                    to_member_id=members["bola"],
                    points=20,
                    reason="",
                )

        assert ledger_service.fetch_balance(engine, members["ada"]) == 50
        assert ledger_service.fetch_balance(engine, members["bola"]) == 0
        with Session(engine) as session:
            groups = session.scalars(
                select(LedgerEntry).where(LedgerEntry.transfer_group.is_not(None))
            ).all()
        assert groups == []


# ===========================================================================
# Composition within one session
# ===========================================================================
class TestSessionLevel:
    def test_exception_in_block_discards_all_writes(self, engine, members):
        with pytest.raises(ValueError):
            with get_session(engine) as session:
                ledger_service.credit(
                    session,
                    member_id=members["ada"],
                    points=10,
                    transaction_type=TransactionType.EARN,
                    source="quiz",
                )
                ledger_service.credit(
                    session,
                    member_id=members["ada"],
                    points=10,
                    transaction_type=TransactionType.EARN,
                    source="quiz",
                )
                raise ValueError("caller aborted")
        assert _entries(engine, members["ada"]) == []

    def test_session_balance_sees_uncommitted_rows(self, engine, members):
        with get_session(engine) as session:
            ledger_service.credit(
                session,
                member_id=members["ada"],
                points=7,
                transaction_type=TransactionType.EARN,
                source="quiz",
            )
            assert ledger_service.get_balance(session, members["ada"]) == 7


# ===========================================================================
# Append-only chain
# ===========================================================================
class TestAppendOnly:
    def test_updates_are_refused(self, engine, members):
        _earn(engine, members["ada"], 10)
        with Session(engine) as session:
            entry = session.scalars(select(LedgerEntry)).first()
            entry.amount = 1000
            with pytest.raises(RuntimeError, match="append-only"):
                session.flush()

    def test_deletes_are_refused(self, engine, members):
        _earn(engine, members["ada"], 10)
        with Session(engine) as session:
            entry = session.scalars(select(LedgerEntry)).first()
            session.delete(entry)
            with pytest.raises(RuntimeError, match="append-only"):
                session.flush()

    def test_duplicate_seq_is_rejected_by_the_database(self, engine, members):
        _earn(engine, members["ada"], 10)
        with Session(engine) as session:
            session.add(LedgerEntry(
                member_id=members["ada"],
                seq=1,
                transaction_type="earn",
                source="forked",
                amount=5,
                balance_after=5,
            ))
            with pytest.raises(IntegrityError):
                session.flush()

    def test_seq_is_gapless_per_member(self, engine, members):
        _earn(engine, members["ada"], 10)
        _earn(engine, members["bola"], 10)
        _earn(engine, members["ada"], 10)
        assert [e.seq for e in _entries(engine, members["ada"])] == [1, 2]
        assert [e.seq for e in _entries(engine, members["bola"])] == [1]


# ===========================================================================
# History
# ===========================================================================
class TestTransactionHistory:
    def test_newest_first_with_pagination(self, engine, members):
        for points in (1, 2, 3, 4, 5):
            _earn(engine, members["ada"], points)
        page1 = ledger_service.get_transaction_history(engine, members["ada"], page=1, page_size=2)
        page3 = ledger_service.get_transaction_history(engine, members["ada"], page=3, page_size=2)
        assert [e.amount for e in page1["entries"]] == [5, 4]
        assert [e.amount for e in page3["entries"]] == [1]
        assert page1["total"] == 5
        assert page1["total_pages"] == 3
        assert page1["current_balance"] == 15

    def test_filters_by_type_and_source(self, engine, members):
        _earn(engine, members["ada"], 10, source="quiz")
        _earn(engine, members["ada"], 10, source="event_checkin")
        _adjust_down(engine, members["ada"], 5)
        earn_only = ledger_service.get_transaction_history(
            engine, members["ada"], transaction_type="earn"
        )
        quiz_only = ledger_service.get_transaction_history(engine, members["ada"], source="quiz")
        assert earn_only["total"] == 2
        assert quiz_only["total"] == 1

    def test_date_window(self, engine, members):
        _earn(engine, members["ada"], 10)
        past = ledger_service.get_transaction_history(
            engine, members["ada"], end=datetime(2000, 1, 1)
        )
        since = ledger_service.get_transaction_history(
            engine, members["ada"], start=datetime(2000, 1, 1)
        )
        assert past["total"] == 0
        assert since["total"] == 1

    def test_unknown_member(self, engine):
        with pytest.raises(NotFoundError):
            ledger_service.get_transaction_history(engine, 424242)


# ===========================================================================
# Integrity check
# ===========================================================================
class TestVerifyLedgerChain:
    def test_clean_chain(self, engine, members):
        _earn(engine, members["ada"], 10)
        _adjust_down(engine, members["ada"], 20, override=True)
        report = ledger_service.verify_ledger_chain(engine, members["ada"])
        assert report.ok
        assert report.checked == 2
        assert report.balance == -10

    def test_detects_broken_snapshot(self, engine, members):
        _earn(engine, members["ada"], 10)
        with Session(engine) as session:
            session.add(LedgerEntry(
                member_id=members["ada"],
                seq=2,
                transaction_type="earn",
                source="tampered",
                amount=5,
                balance_after=500,
            ))
            session.commit()
        report = ledger_service.verify_ledger_chain(engine, members["ada"])
        assert not report.ok
        assert report.problems[0]["issue"] == "balance_mismatch"

    def test_detects_negative_without_override(self, engine, members):
        with Session(engine) as session:
            session.add(LedgerEntry(
                member_id=members["ada"],
                seq=1,
                transaction_type="adjustment",
                source="tampered",
                amount=-5,
                balance_after=-5,
                metadata_=AdjustmentMetadata(admin_id=1, reason="x").to_dict(),
            ))
            session.commit()
        report = ledger_service.verify_ledger_chain(engine, members["ada"])
        assert [p["issue"] for p in report.problems] == ["negative_without_override"]

    def test_detects_unreadable_metadata(self, engine, members):
        with Session(engine) as session:
            session.add(LedgerEntry(
                member_id=members["ada"],
                seq=1,
                transaction_type="adjustment",
                source="tampered",
                amount=-5,
                balance_after=-5,
                metadata_={"kind": "mystery", "override": True},
            ))
            session.commit()
        report = ledger_service.verify_ledger_chain(engine, members["ada"])
        assert [p["issue"] for p in report.problems] == [
            "unreadable_metadata", "negative_without_override",
        ]


# ===========================================================================
# End-to-end scenario
# ===========================================================================
class TestScenario:
    def test_earn_share_overdraw_spend(self, engine, members, auto_policy):
        ada = members["ada"]
        assert ledger_service.fetch_balance(engine, ada) == 0

        _earn(engine, ada, 50, source="event_attendance")
        assert ledger_service.fetch_balance(engine, ada) == 50

        share_service.record_share(
            engine,
            auto_policy,
            member_id=ada,
            platform="twitter",
            content_type="event",
            content_id="42",
        )
        assert ledger_service.fetch_balance(engine, ada) == 60

        with pytest.raises(InsufficientBalanceError):
            _adjust_down(engine, ada, 100)
        assert ledger_service.fetch_balance(engine, ada) == 60

        _adjust_down(engine, ada, 60)
        assert ledger_service.fetch_balance(engine, ada) == 0
        assert [e.balance_after for e in _entries(engine, ada)] == [50, 60, 0]

    def test_latest_snapshot_equals_sum_of_amounts(self, engine, members):
        ada, bola, chidi = members["ada"], members["bola"], members["chidi"]
        _earn(engine, ada, 120)
        _earn(engine, bola, 35)
        ledger_service.transfer_points(
            engine, from_member_id=ada, to_member_id=bola, points=45, reason=""
        )
        ledger_service.transfer_points(
            engine, from_member_id=bola, to_member_id=chidi, points=60, reason=""
        )
        _adjust_down(engine, ada, 75)
        _adjust_down(engine, chidi, 80, override=True)
        with pytest.raises(InsufficientBalanceError):
            _adjust_down(engine, bola, 21)

        for member_id in (ada, bola, chidi):
            entries = _entries(engine, member_id)
            assert entries[-1].balance_after == sum(e.amount for e in entries)
            assert ledger_service.verify_ledger_chain(engine, member_id).ok
        assert ledger_service.fetch_balance(engine, ada) == 0
        assert ledger_service.fetch_balance(engine, bola) == 20
        assert ledger_service.fetch_balance(engine, chidi) == -20
