"""
tally.services.ledger_service — Points Ledger Operations
=========================================================

The only sanctioned ways to change a member's balance.

Two layers:

* **Session-level** — :func:`credit`, :func:`debit`, :func:`transfer`,
  :func:`get_balance`.  They run inside the caller's open session and
  never commit, so share recording and redemption compose them into one
  transaction with their own writes.
* **Engine-level** — :func:`add_points`, :func:`deduct_points`,
  :func:`transfer_points`, :func:`fetch_balance`.  Each opens exactly one
  transaction via :func:`~tally.database.engine.get_session`.

Every mutation follows the same pattern:
  1. Lock the member row (``SELECT … FOR UPDATE``) — also the existence check
  2. Read the member's latest ledger row
  3. Compute the new balance
  4. Append the new row with ``seq = latest.seq + 1``

Concurrent mutations on the same member serialize on step 1.  The unique
``(member_id, seq)`` constraint rejects any writer that got past it anyway.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from tally.constants import (
    DEFAULT_PAGE_SIZE,
    TRANSFER_REFERENCE_TYPE,
    TRANSFER_SOURCE_IN,
    TRANSFER_SOURCE_OUT,
)
from tally.database.engine import get_session
from tally.database.models import LedgerEntry, Member, TransactionType
from tally.engine.metadata import (
    LedgerMetadata,
    TransferMetadata,
    check_metadata,
    metadata_from_dict,
    permits_negative_balance,
)
from tally.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRequestError,
    NoSelfTransferError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    transfer_group: str
    sender_entry: LedgerEntry
    recipient_entry: LedgerEntry


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def lock_member(session: Session, member_id: int) -> Member:
    """Lock and return the member row, or raise :class:`NotFoundError`."""
    member = session.scalar(
        select(Member).where(Member.id == member_id).with_for_update()
    )
    if member is None:
        raise NotFoundError(f"Member {member_id} not found")
    return member


def _latest_entry(session: Session, member_id: int) -> LedgerEntry | None:
    return session.scalar(
        select(LedgerEntry)
        .where(LedgerEntry.member_id == member_id)
        .order_by(LedgerEntry.seq.desc())
        .limit(1)
    )


def _check_points(points: int) -> None:
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidAmountError(f"Points must be a positive integer, got {points!r}")


def _append_entry(
    session: Session,
    *,
    member_id: int,
    amount: int,
    transaction_type: TransactionType,
    source: str,
    reference_type: str | None,
    reference_id: str | None,
    metadata: LedgerMetadata | None,
    transfer_group: str | None = None,
) -> LedgerEntry:
    """Append one row on top of the member's current chain and flush it."""
    latest = _latest_entry(session, member_id)
    previous_balance = latest.balance_after if latest else 0
    previous_seq = latest.seq if latest else 0

    entry = LedgerEntry(
        member_id=member_id,
        seq=previous_seq + 1,
        transaction_type=transaction_type.value,
        source=source,
        amount=amount,
        balance_after=previous_balance + amount,
        reference_type=reference_type,
        reference_id=reference_id,
        transfer_group=transfer_group,
        metadata_=metadata.to_dict() if metadata is not None else None,
    )
    session.add(entry)
    session.flush()
    return entry


# ---------------------------------------------------------------------------
# Session-level operations
# ---------------------------------------------------------------------------
def get_balance(session: Session, member_id: int) -> int:
    """``balance_after`` of the member's latest entry, or 0 if none exist.

    Read inside the same session as any mutation that depends on it.
    """
    latest = _latest_entry(session, member_id)
    return latest.balance_after if latest else 0


def credit(
    session: Session,
    *,
    member_id: int,
    points: int,
    transaction_type: TransactionType,
    source: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    metadata: LedgerMetadata | None = None,
) -> LedgerEntry:
    """Append a ``+points`` entry for *member_id* within *session*."""
    _check_points(points)
    check_metadata(transaction_type, metadata)
    lock_member(session, member_id)
    return _append_entry(
        session,
        member_id=member_id,
        amount=points,
        transaction_type=transaction_type,
        source=source,
        reference_type=reference_type,
        reference_id=reference_id,
        metadata=metadata,
    )


def debit(
    session: Session,
    *,
    member_id: int,
    points: int,
    transaction_type: TransactionType,
    source: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    metadata: LedgerMetadata | None = None,
) -> LedgerEntry:
    """Append a ``-points`` entry for *member_id* within *session*.

    Fails with :class:`InsufficientBalanceError` if the balance would go
    negative, unless *metadata* is an ``AdjustmentMetadata`` with
    ``override=True``; the override is stored on the row.
    """
    _check_points(points)
    check_metadata(transaction_type, metadata)
    lock_member(session, member_id)

    balance = get_balance(session, member_id)
    override = permits_negative_balance(metadata)
    if balance - points < 0:
        if not override:
            raise InsufficientBalanceError(member_id, balance, points)
        logger.warning(
            "Administrative override: member %s goes to %d (admin %s, reason %r)",
            member_id, balance - points, metadata.admin_id, metadata.reason,
        )

    return _append_entry(
        session,
        member_id=member_id,
        amount=-points,
        transaction_type=transaction_type,
        source=source,
        reference_type=reference_type,
        reference_id=reference_id,
        metadata=metadata,
    )


def transfer(
    session: Session,
    *,
    from_member_id: int,
    to_member_id: int,
    points: int,
    reason: str,
) -> TransferResult:
    """Move *points* between two members as two correlated entries.

    Both rows share a fresh ``transfer_group`` id and are written in the
    caller's transaction, so either both persist or neither does.  No
    override is possible here.
    """
    _check_points(points)
    if from_member_id == to_member_id:
        raise NoSelfTransferError("Cannot transfer points to yourself")

    # Lock in id order so two opposite transfers cannot deadlock.
    for member_id in sorted((from_member_id, to_member_id)):
        lock_member(session, member_id)

    sender_balance = get_balance(session, from_member_id)
    if sender_balance < points:
        raise InsufficientBalanceError(from_member_id, sender_balance, points)

    group = uuid.uuid4().hex
    sender_entry = _append_entry(
        session,
        member_id=from_member_id,
        amount=-points,
        transaction_type=TransactionType.TRANSFER,
        source=TRANSFER_SOURCE_OUT,
        reference_type=TRANSFER_REFERENCE_TYPE,
        reference_id=str(to_member_id),
        transfer_group=group,
        metadata=TransferMetadata(
            transfer_group=group,
            counterparty_id=to_member_id,
            direction="out",
            reason=reason,
        ),
    )
    recipient_entry = _append_entry(
        session,
        member_id=to_member_id,
        amount=points,
        transaction_type=TransactionType.TRANSFER,
        source=TRANSFER_SOURCE_IN,
        reference_type=TRANSFER_REFERENCE_TYPE,
        reference_id=str(from_member_id),
        transfer_group=group,
        metadata=TransferMetadata(
            transfer_group=group,
            counterparty_id=from_member_id,
            direction="in",
            reason=reason,
        ),
    )
    return TransferResult(
        transfer_group=group,
        sender_entry=sender_entry,
        recipient_entry=recipient_entry,
    )


# ---------------------------------------------------------------------------
# Engine-level operations (one transaction each)
# ---------------------------------------------------------------------------
def fetch_balance(engine: Engine, member_id: int) -> int:
    """Read-only balance query for clients.  Raises if the member is unknown."""
    with get_session(engine) as session:
        if session.get(Member, member_id) is None:
            raise NotFoundError(f"Member {member_id} not found")
        return get_balance(session, member_id)


def add_points(
    engine: Engine,
    *,
    member_id: int,
    points: int,
    transaction_type: TransactionType,
    source: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    metadata: LedgerMetadata | None = None,
) -> LedgerEntry:
    """Credit *points* to *member_id* in its own transaction."""
    with get_session(engine) as session:
        entry = credit(
            session,
            member_id=member_id,
            points=points,
            transaction_type=transaction_type,
            source=source,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata=metadata,
        )
    logger.info(
        "Credited %d points to member %s (%s/%s) → balance %d",
        points, member_id, transaction_type.value, source, entry.balance_after,
    )
    return entry


def deduct_points(
    engine: Engine,
    *,
    member_id: int,
    points: int,
    transaction_type: TransactionType,
    source: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    metadata: LedgerMetadata | None = None,
) -> LedgerEntry:
    """Debit *points* from *member_id* in its own transaction."""
    with get_session(engine) as session:
        entry = debit(
            session,
            member_id=member_id,
            points=points,
            transaction_type=transaction_type,
            source=source,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata=metadata,
        )
    logger.info(
        "Debited %d points from member %s (%s/%s) → balance %d",
        points, member_id, transaction_type.value, source, entry.balance_after,
    )
    return entry


def transfer_points(
    engine: Engine,
    *,
    from_member_id: int,
    to_member_id: int,
    points: int,
    reason: str,
) -> TransferResult:
    """Transfer *points* between members in one transaction."""
    with get_session(engine) as session:
        result = transfer(
            session,
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            points=points,
            reason=reason,
        )
    logger.info(
        "Transferred %d points %s → %s (group %s)",
        points, from_member_id, to_member_id, result.transfer_group,
    )
    return result


# ---------------------------------------------------------------------------
# History & diagnostics (read-only)
# ---------------------------------------------------------------------------
def get_transaction_history(
    engine: Engine,
    member_id: int,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    transaction_type: str | None = None,
    source: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Paginated ledger rows for a member, newest first."""
    with get_session(engine) as session:
        if session.get(Member, member_id) is None:
            raise NotFoundError(f"Member {member_id} not found")

        conditions = [LedgerEntry.member_id == member_id]
        if transaction_type:
            conditions.append(LedgerEntry.transaction_type == transaction_type)
        if source:
            conditions.append(LedgerEntry.source == source)
        if start is not None:
            conditions.append(LedgerEntry.created_at >= start)
        if end is not None:
            conditions.append(LedgerEntry.created_at <= end)

        total = session.scalar(
            select(func.count()).select_from(LedgerEntry).where(*conditions)
        ) or 0
        entries = session.scalars(
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.seq.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        balance = get_balance(session, member_id)

    return {
        "entries": list(entries),
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if page_size else 0,
        "current_balance": balance,
    }


@dataclass
class ChainReport:
    member_id: int
    checked: int = 0
    balance: int = 0
    problems: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def verify_ledger_chain(engine: Engine, member_id: int) -> ChainReport:
    """Walk a member's rows in ``seq`` order and report broken links.

    Checks ``balance_after[n] == balance_after[n-1] + amount[n]``, gapless
    ``seq`` and that every negative balance carries an override.  Never
    writes: the ledger is immutable, so problems are reported for manual
    investigation.
    """
    report = ChainReport(member_id=member_id)
    with get_session(engine) as session:
        if session.get(Member, member_id) is None:
            raise NotFoundError(f"Member {member_id} not found")
        entries = session.scalars(
            select(LedgerEntry)
            .where(LedgerEntry.member_id == member_id)
            .order_by(LedgerEntry.seq)
        ).all()

    running = 0
    for expected_seq, entry in enumerate(entries, start=1):
        report.checked += 1
        if entry.seq != expected_seq:
            report.problems.append({
                "entry_id": entry.id, "issue": "seq_gap",
                "expected": expected_seq, "actual": entry.seq,
            })
        if entry.balance_after != running + entry.amount:
            report.problems.append({
                "entry_id": entry.id, "issue": "balance_mismatch",
                "expected": running + entry.amount, "actual": entry.balance_after,
            })
        try:
            metadata = metadata_from_dict(entry.metadata_)
        except (InvalidRequestError, TypeError):
            report.problems.append({
                "entry_id": entry.id, "issue": "unreadable_metadata",
                "expected": None, "actual": entry.metadata_,
            })
            metadata = None
        if entry.balance_after < 0 and entry.amount < 0 and not permits_negative_balance(metadata):
            report.problems.append({
                "entry_id": entry.id, "issue": "negative_without_override",
                "expected": 0, "actual": entry.balance_after,
            })
        running = entry.balance_after

    report.balance = running
    if report.problems:
        logger.warning(
            "Ledger chain check for member %s found %d problem(s): %s",
            member_id, len(report.problems), report.problems,
        )
    else:
        logger.info("Ledger chain check for member %s: %d entries OK", member_id, report.checked)
    return report
