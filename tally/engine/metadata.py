"""
tally.engine.metadata — Typed Ledger Metadata
==============================================

Every ledger row's ``metadata`` column holds exactly one of the variants
below, serialized with a ``kind`` discriminator.  The variant must match
the row's transaction type, so an administrative override can only ever
be written as an :class:`AdjustmentMetadata` on an ``adjustment`` row and
is recognisable by structure, not by a naming convention.

Pure module: no DB I/O.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar

from tally.database.models import TransactionType
from tally.errors import InvalidRequestError

__all__ = [
    "ActivityMetadata",
    "AdjustmentMetadata",
    "LedgerMetadata",
    "RedemptionMetadata",
    "ShareRewardMetadata",
    "TransferMetadata",
    "check_metadata",
    "metadata_from_dict",
    "permits_negative_balance",
]


@dataclass(frozen=True, slots=True)
class ActivityMetadata:
    """Points earned for an activity (event check-in, task, referral …)."""

    kind: ClassVar[str] = "activity"

    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True, slots=True)
class ShareRewardMetadata:
    kind: ClassVar[str] = "share_reward"

    share_id: int
    platform: str
    content_type: str
    content_id: str
    verification_path: str  # "auto" | "admin"
    share_url: str | None = None
    verified_by: int | None = None
    verification_method: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True, slots=True)
class TransferMetadata:
    """One side of a transfer.  Both sides share ``transfer_group``."""

    kind: ClassVar[str] = "transfer"

    transfer_group: str
    counterparty_id: int
    direction: str  # "out" | "in"
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True, slots=True)
class RedemptionMetadata:
    kind: ClassVar[str] = "redemption"

    redemption_id: int
    product_type: str
    carrier: str
    currency_value: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True, slots=True)
class AdjustmentMetadata:
    """Administrative correction.

    ``override=True`` is the only way a debit may take a balance below zero.
    """

    kind: ClassVar[str] = "adjustment"

    admin_id: int
    reason: str
    override: bool = False
    compensates_redemption_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


LedgerMetadata = (
    ActivityMetadata
    | ShareRewardMetadata
    | TransferMetadata
    | RedemptionMetadata
    | AdjustmentMetadata
)

_VARIANT_FOR_TYPE: dict[TransactionType, type] = {
    TransactionType.EARN: ActivityMetadata,
    TransactionType.SOCIAL_SHARE: ShareRewardMetadata,
    TransactionType.TRANSFER: TransferMetadata,
    TransactionType.REDEEM: RedemptionMetadata,
    TransactionType.ADJUSTMENT: AdjustmentMetadata,
}

_VARIANT_FOR_KIND: dict[str, type] = {cls.kind: cls for cls in _VARIANT_FOR_TYPE.values()}


def check_metadata(
    transaction_type: TransactionType, metadata: LedgerMetadata | None
) -> None:
    """Raise :class:`InvalidRequestError` unless *metadata* fits *transaction_type*.

    ``None`` is accepted for ``earn`` only; every other type carries
    structured context that auditors rely on.
    """
    expected = _VARIANT_FOR_TYPE[transaction_type]
    if metadata is None:
        if transaction_type is TransactionType.EARN:
            return
        raise InvalidRequestError(
            f"{transaction_type.value} entries require {expected.__name__}"
        )
    if not isinstance(metadata, expected):
        raise InvalidRequestError(
            f"{type(metadata).__name__} cannot be attached to a "
            f"{transaction_type.value} entry (expected {expected.__name__})"
        )


def permits_negative_balance(metadata: LedgerMetadata | None) -> bool:
    return isinstance(metadata, AdjustmentMetadata) and metadata.override


def metadata_from_dict(data: dict[str, Any] | None) -> LedgerMetadata | None:
    """Rebuild the typed variant stored in a ledger row's JSON column."""
    if not data:
        return None
    payload = dict(data)
    kind = payload.pop("kind", None)
    cls = _VARIANT_FOR_KIND.get(kind)
    if cls is None:
        raise InvalidRequestError(f"Unknown ledger metadata kind: {kind!r}")
    return cls(**payload)
