"""
tally.services.redemption_service — Points → Airtime / Data
============================================================

Redemption is a two-phase operation:

1. **Debit** (one transaction): lock the member, quote the price, insert a
   ``pending`` redemption row and append the ``redeem`` ledger entry.
2. **Fulfil** (outside any transaction): ask the gateway to deliver, then
   mark the row ``completed`` or ``failed``.

A failed fulfilment never reverses the debit automatically.  It is
logged at ERROR and the row stays ``failed`` until an operator runs
:func:`compensate_redemption`, which credits the points back as an
``adjustment`` entry that names the redemption it compensates.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from tally.constants import CARRIERS, PRODUCT_TYPES, REDEMPTION_REFERENCE_TYPE
from tally.database.engine import get_session
from tally.database.models import (
    ConversionSetting,
    LedgerEntry,
    Redemption,
    RedemptionStatus,
    TransactionType,
)
from tally.engine.metadata import AdjustmentMetadata, RedemptionMetadata
from tally.engine.quote import Quote, calculate_quote
from tally.errors import InvalidRequestError, NotFoundError
from tally.services import ledger_service
from tally.services.fulfillment import (
    FlutterwaveGateway,
    FulfillmentError,
    FulfillmentRequest,
)

logger = logging.getLogger(__name__)

# +234 / 234 / 0 prefix, then a 10-digit mobile number starting 7, 8 or 9.
_NG_PHONE_RE = re.compile(r"^(?:\+?234|0)([789][01]\d{8})$")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def normalize_phone(phone_number: str) -> str:
    """Return *phone_number* in ``+234XXXXXXXXXX`` form.

    Raises :class:`InvalidRequestError` if it is not a Nigerian mobile number.
    """
    cleaned = re.sub(r"[\s\-()]", "", phone_number or "")
    match = _NG_PHONE_RE.match(cleaned)
    if match is None:
        raise InvalidRequestError(f"Invalid Nigerian phone number: {phone_number!r}")
    return f"+234{match.group(1)}"


def _check_product(product_type: str, carrier: str) -> None:
    if product_type not in PRODUCT_TYPES:
        raise InvalidRequestError(f"Unsupported product type: {product_type!r}")
    if carrier not in CARRIERS:
        raise InvalidRequestError(f"Unsupported carrier: {carrier!r}")


def _active_setting(session: Session, product_type: str) -> ConversionSetting:
    setting = session.scalar(
        select(ConversionSetting).where(ConversionSetting.product_type == product_type)
    )
    if setting is None or not setting.is_active:
        raise NotFoundError(f"No active conversion setting for {product_type}")
    return setting


def _quote(setting: ConversionSetting, carrier: str, currency_value: Decimal) -> Quote:
    return calculate_quote(
        product_type=setting.product_type,
        carrier=carrier,
        currency_value=currency_value,
        base_rate=setting.base_rate,
        min_points=setting.min_points,
        max_points=setting.max_points,
        carrier_overrides=setting.carrier_overrides,
    )


# ---------------------------------------------------------------------------
# Quote
# ---------------------------------------------------------------------------
def get_quote(
    engine: Engine, product_type: str, carrier: str, currency_value: Decimal
) -> Quote:
    """Points needed to buy *currency_value* of *product_type* on *carrier*."""
    _check_product(product_type, carrier)
    with get_session(engine) as session:
        return _quote(_active_setting(session, product_type), carrier, currency_value)


# ---------------------------------------------------------------------------
# Redeem
# ---------------------------------------------------------------------------
def redeem(
    engine: Engine,
    gateway: FlutterwaveGateway,
    *,
    member_id: int,
    product_type: str,
    carrier: str,
    phone_number: str,
    currency_value: Decimal,
) -> Redemption:
    """Debit a member's points and request fulfilment.

    Ledger failures (``NotFoundError``, ``InsufficientBalanceError``,
    ``InvalidAmountError``) are raised before anything is written.  A
    fulfilment failure is *not* raised: the returned redemption is
    ``failed`` and carries the provider's message.
    """
    _check_product(product_type, carrier)
    phone = normalize_phone(phone_number)

    with get_session(engine) as session:
        ledger_service.lock_member(session, member_id)
        quote = _quote(_active_setting(session, product_type), carrier, currency_value)

        redemption = Redemption(
            member_id=member_id,
            phone_number=phone,
            carrier=carrier,
            product_type=product_type,
            currency_value=quote.currency_value,
            points_debited=quote.points_needed,
            status=RedemptionStatus.PENDING.value,
        )
        session.add(redemption)
        session.flush()

        entry = ledger_service.debit(
            session,
            member_id=member_id,
            points=quote.points_needed,
            transaction_type=TransactionType.REDEEM,
            source=f"redeem_{product_type}",
            reference_type=REDEMPTION_REFERENCE_TYPE,
            reference_id=str(redemption.id),
            metadata=RedemptionMetadata(
                redemption_id=redemption.id,
                product_type=product_type,
                carrier=carrier,
                currency_value=str(quote.currency_value),
            ),
        )
        redemption.ledger_entry_id = entry.id

    logger.info(
        "Redemption %s: member %s debited %d points for %s %s (%s)",
        redemption.id, member_id, quote.points_needed, product_type,
        quote.currency_value, carrier,
    )

    request = FulfillmentRequest(
        reference=redemption.reference,
        phone_number=phone,
        carrier=carrier,
        product_type=product_type,
        amount=quote.currency_value,
    )
    try:
        result = gateway.purchase(request)
    except FulfillmentError as exc:
        logger.error(
            "Redemption %s fulfilment FAILED for member %s (%d points debited, "
            "not reversed): %s",
            redemption.id, member_id, quote.points_needed, exc,
        )
        return _finish(engine, redemption.id, RedemptionStatus.FAILED, error_message=str(exc))
    except Exception as exc:
        logger.exception(
            "Redemption %s fulfilment crashed for member %s (%d points debited, "
            "not reversed)",
            redemption.id, member_id, quote.points_needed,
        )
        _finish(engine, redemption.id, RedemptionStatus.FAILED, error_message=repr(exc))
        raise

    return _finish(
        engine,
        redemption.id,
        RedemptionStatus.COMPLETED,
        provider_reference=result.provider_reference,
    )


def _finish(
    engine: Engine,
    redemption_id: int,
    status: RedemptionStatus,
    *,
    provider_reference: str | None = None,
    error_message: str | None = None,
) -> Redemption:
    with get_session(engine) as session:
        redemption = session.get(Redemption, redemption_id, with_for_update=True)
        redemption.status = status.value
        redemption.provider_reference = provider_reference
        redemption.error_message = error_message
        if status is RedemptionStatus.COMPLETED:
            redemption.completed_at = datetime.now(UTC)
    return redemption


# ---------------------------------------------------------------------------
# Compensation (operator runbook)
# ---------------------------------------------------------------------------
def compensate_redemption(
    engine: Engine, *, redemption_id: int, admin_id: int, reason: str
) -> tuple[Redemption, LedgerEntry]:
    """Refund the points of a ``failed`` redemption and mark it ``refunded``.

    Raises
    ------
    NotFoundError
        If the redemption does not exist.
    InvalidRequestError
        If the redemption is not in ``failed`` state.  A redemption is
        refunded at most once.
    """
    with get_session(engine) as session:
        redemption = session.get(Redemption, redemption_id, with_for_update=True)
        if redemption is None:
            raise NotFoundError(f"Redemption {redemption_id} not found")
        if redemption.status != RedemptionStatus.FAILED.value:
            raise InvalidRequestError(
                f"Only failed redemptions can be compensated "
                f"(redemption {redemption_id} is {redemption.status})"
            )

        entry = ledger_service.credit(
            session,
            member_id=redemption.member_id,
            points=redemption.points_debited,
            transaction_type=TransactionType.ADJUSTMENT,
            source="redemption_refund",
            reference_type=REDEMPTION_REFERENCE_TYPE,
            reference_id=str(redemption.id),
            metadata=AdjustmentMetadata(
                admin_id=admin_id,
                reason=reason,
                compensates_redemption_id=redemption.id,
            ),
        )
        redemption.status = RedemptionStatus.REFUNDED.value

    logger.warning(
        "Redemption %s compensated by admin %s: member %s +%d points (%s)",
        redemption_id, admin_id, redemption.member_id, redemption.points_debited, reason,
    )
    return redemption, entry


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_member_redemptions(engine: Engine, member_id: int, limit: int = 50) -> list[Redemption]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(Redemption)
            .where(Redemption.member_id == member_id)
            .order_by(Redemption.id.desc())
            .limit(limit)
        ).all())


# ---------------------------------------------------------------------------
# Conversion settings (admin)
# ---------------------------------------------------------------------------
def get_conversion_settings(engine: Engine) -> list[ConversionSetting]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(ConversionSetting).order_by(ConversionSetting.product_type)
        ).all())


def update_conversion_setting(
    engine: Engine,
    product_type: str,
    *,
    base_rate: Decimal | str | None = None,
    min_points: int | None = None,
    max_points: int | None = None,
    carrier_overrides: dict | None = None,
    is_active: bool | None = None,
) -> ConversionSetting:
    """Patch one product's conversion setting.  Only given fields change."""
    with get_session(engine) as session:
        setting = session.scalar(
            select(ConversionSetting)
            .where(ConversionSetting.product_type == product_type)
            .with_for_update()
        )
        if setting is None:
            raise NotFoundError(f"No conversion setting for {product_type}")

        if base_rate is not None:
            setting.base_rate = _positive_rate(base_rate, "base_rate")
        if min_points is not None:
            setting.min_points = min_points
        if max_points is not None:
            setting.max_points = max_points
        if carrier_overrides is not None:
            unknown = set(carrier_overrides) - set(CARRIERS)
            if unknown:
                raise InvalidRequestError(f"Unknown carriers in overrides: {sorted(unknown)}")
            setting.carrier_overrides = {
                carrier: str(_positive_rate(rate, carrier))
                for carrier, rate in carrier_overrides.items()
            }
        if is_active is not None:
            setting.is_active = is_active

        if setting.min_points <= 0 or setting.min_points > setting.max_points:
            raise InvalidRequestError(
                f"min_points must be positive and <= max_points "
                f"(got {setting.min_points} / {setting.max_points})"
            )
        result = setting.to_dict()

    logger.info("Conversion setting for %s updated: %s", product_type, result)
    return setting


def _positive_rate(value: Decimal | str | float, name: str) -> Decimal:
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise InvalidRequestError(f"{name} must be a number, got {value!r}") from None
    if rate <= 0:
        raise InvalidRequestError(f"{name} must be positive, got {rate}")
    return rate
