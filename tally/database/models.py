"""
tally.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- members             — External member identities (referenced by id only)
- ledger_entries      — Append-only point transactions with balance snapshots
- social_shares       — Claimed social shares, fingerprinted for dedup
- share_verifications — Append-only admin decisions on shares
- conversion_settings — Points → airtime/data rates (redemption boundary)
- point_redemptions   — Redemption requests and their fulfillment outcome

A member's balance is never stored as a counter.  It is the
``balance_after`` of the member's highest-``seq`` ledger row.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Tally ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TransactionType(enum.StrEnum):
    """Kinds of ledger rows.  Each has exactly one metadata variant."""
    EARN = "earn"
    SOCIAL_SHARE = "social_share"
    TRANSFER = "transfer"
    REDEEM = "redeem"
    ADJUSTMENT = "adjustment"


class ShareStatus(enum.StrEnum):
    """Lifecycle of a social share.  See :mod:`tally.engine.sharing`."""
    PENDING = "pending"
    AUTO_VERIFIED = "auto_verified"
    ADMIN_APPROVED = "admin_approved"
    ADMIN_REJECTED = "admin_rejected"


VERIFIED_SHARE_STATUSES = frozenset({ShareStatus.AUTO_VERIFIED, ShareStatus.ADMIN_APPROVED})


class VerificationStatus(enum.StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class RedemptionStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# ---------------------------------------------------------------------------
# Members — owned by the identity subsystem, mirrored here for FKs
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    ledger_entries: Mapped[list[LedgerEntry]] = relationship(back_populates="member")
    shares: Mapped[list[SocialShare]] = relationship(back_populates="member")

    def __repr__(self) -> str:
        return f"<Member id={self.id} name={self.display_name!r}>"


# ---------------------------------------------------------------------------
# LedgerEntry — append-only, one row per signed point movement
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """One immutable point transaction with a running-balance snapshot.

    ``seq`` numbers a member's rows 1, 2, 3, … and is unique per member, so
    two writers racing on the same predecessor cannot both commit.
    """
    __tablename__ = "ledger_entries"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # +credit / -debit
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(50), default=None)
    reference_id: Mapped[str | None] = mapped_column(String(64), default=None)
    transfer_group: Mapped[str | None] = mapped_column(String(32), default=None)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    member: Mapped[Member] = relationship(back_populates="ledger_entries")

    __table_args__ = (
        UniqueConstraint("member_id", "seq", name="uq_ledger_member_seq"),
        CheckConstraint("amount <> 0", name="ck_ledger_amount_nonzero"),
        Index("ix_ledger_member_created", "member_id", created_at.desc()),
        Index("ix_ledger_reference", "reference_type", "reference_id"),
        Index("ix_ledger_transfer_group", "transfer_group"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "seq": self.seq,
            "transaction_type": self.transaction_type,
            "source": self.source,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "transfer_group": self.transfer_group,
            "metadata": self.metadata_,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} member={self.member_id} seq={self.seq} "
            f"amount={self.amount:+d} balance_after={self.balance_after}>"
        )


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target) -> None:
    raise RuntimeError(f"ledger entries are append-only (update of {target!r})")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target) -> None:
    raise RuntimeError(f"ledger entries are append-only (delete of {target!r})")


# ---------------------------------------------------------------------------
# SocialShare — claimed shares, deduplicated by fingerprint
# ---------------------------------------------------------------------------
class SocialShare(Base):
    __tablename__ = "social_shares"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)
    share_url: Mapped[str | None] = mapped_column(Text, default=None)
    share_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ShareStatus.PENDING.value
    )
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    member: Mapped[Member] = relationship(back_populates="shares")
    verifications: Mapped[list[ShareVerification]] = relationship(
        back_populates="share", order_by="ShareVerification.id"
    )

    __table_args__ = (
        UniqueConstraint(
            "member_id", "platform", "share_hash", name="uq_social_shares_member_platform_hash"
        ),
        Index("ix_social_shares_member_platform", "member_id", "platform"),
        Index("ix_social_shares_status", "status"),
    )

    @property
    def verified(self) -> bool:
        return self.status in VERIFIED_SHARE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "platform": self.platform,
            "content_type": self.content_type,
            "content_id": self.content_id,
            "share_url": self.share_url,
            "share_hash": self.share_hash,
            "status": self.status,
            "verified": self.verified,
            "points_awarded": self.points_awarded,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<SocialShare id={self.id} member={self.member_id} status={self.status}>"


# ---------------------------------------------------------------------------
# ShareVerification — append-only admin decisions
# ---------------------------------------------------------------------------
class ShareVerification(Base):
    __tablename__ = "share_verifications"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    share_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("social_shares.id", ondelete="RESTRICT"), nullable=False
    )
    verification_method: Mapped[str] = mapped_column(String(20), nullable=False)
    proof_url: Mapped[str | None] = mapped_column(Text, default=None)
    verified_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text, default=None)
    verified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    share: Mapped[SocialShare] = relationship(back_populates="verifications")

    __table_args__ = (
        Index("ix_share_verifications_share", "share_id"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "share_id": self.share_id,
            "verification_method": self.verification_method,
            "proof_url": self.proof_url,
            "verified_by": self.verified_by,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }

    def __repr__(self) -> str:
        return f"<ShareVerification id={self.id} share={self.share_id} status={self.status}>"


# ---------------------------------------------------------------------------
# ConversionSetting — points per currency unit, per product
# ---------------------------------------------------------------------------
class ConversionSetting(Base):
    __tablename__ = "conversion_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_type: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    base_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min_points: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    max_points: Mapped[int] = mapped_column(Integer, nullable=False, default=10000)
    carrier_overrides: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_type": self.product_type,
            "base_rate": str(self.base_rate),
            "min_points": self.min_points,
            "max_points": self.max_points,
            "carrier_overrides": self.carrier_overrides or {},
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<ConversionSetting {self.product_type} rate={self.base_rate}>"


# ---------------------------------------------------------------------------
# Redemption — points spent on airtime/data
# ---------------------------------------------------------------------------
class Redemption(Base):
    __tablename__ = "point_redemptions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    carrier: Mapped[str] = mapped_column(String(20), nullable=False)
    product_type: Mapped[str] = mapped_column(String(20), nullable=False)
    currency_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    points_debited: Mapped[int] = mapped_column(Integer, nullable=False)
    ledger_entry_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("ledger_entries.id", ondelete="RESTRICT"), default=None
    )
    provider_reference: Mapped[str | None] = mapped_column(String(100), default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RedemptionStatus.PENDING.value
    )
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    __table_args__ = (
        Index("ix_point_redemptions_member_created", "member_id", created_at.desc()),
        Index("ix_point_redemptions_status", "status"),
    )

    @property
    def reference(self) -> str:
        """Idempotency reference sent to the fulfillment provider."""
        return f"tally-redeem-{self.id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "phone_number": self.phone_number,
            "carrier": self.carrier,
            "product_type": self.product_type,
            "currency_value": str(self.currency_value),
            "points_debited": self.points_debited,
            "ledger_entry_id": self.ledger_entry_id,
            "provider_reference": self.provider_reference,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:
        return f"<Redemption id={self.id} member={self.member_id} status={self.status}>"
