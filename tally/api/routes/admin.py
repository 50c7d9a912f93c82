"""
tally.api.routes.admin — Admin endpoints (JWT‑protected)
=========================================================

Manual point adjustments, share verification, redemption compensation
and conversion-rate management.  Every write records the acting admin's
id in the ledger row's metadata.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from tally.api.deps import get_config, get_current_admin, get_engine
from tally.config import TallyConfig
from tally.database.models import TransactionType
from tally.engine.metadata import AdjustmentMetadata
from tally.services import ledger_service, redemption_service, share_service

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PointsAdjustment(BaseModel):
    member_id: int
    points: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)


class PointsDebit(PointsAdjustment):
    override: bool = False


class ShareDecision(BaseModel):
    approved: bool
    verification_method: Literal["screenshot", "api", "manual"] = "manual"
    proof_url: str | None = None
    rejection_reason: str | None = None


class Compensation(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class ConversionSettingUpdate(BaseModel):
    product_type: Literal["airtime", "data"]
    base_rate: Decimal | None = Field(default=None, gt=0)
    min_points: int | None = Field(default=None, gt=0)
    max_points: int | None = Field(default=None, gt=0)
    carrier_overrides: dict[str, Decimal] | None = None
    is_active: bool | None = None


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------
@router.post("/points/credit")
def credit_points(
    body: PointsAdjustment,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    entry = ledger_service.add_points(
        engine,
        member_id=body.member_id,
        points=body.points,
        transaction_type=TransactionType.ADJUSTMENT,
        source="admin_adjustment",
        metadata=AdjustmentMetadata(admin_id=admin["member_id"], reason=body.reason),
    )
    return {"entry": entry.to_dict(), "balance": entry.balance_after}


@router.post("/points/debit")
def debit_points(
    body: PointsDebit,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    entry = ledger_service.deduct_points(
        engine,
        member_id=body.member_id,
        points=body.points,
        transaction_type=TransactionType.ADJUSTMENT,
        source="admin_adjustment",
        metadata=AdjustmentMetadata(
            admin_id=admin["member_id"], reason=body.reason, override=body.override
        ),
    )
    return {"entry": entry.to_dict(), "balance": entry.balance_after}


@router.get("/points/{member_id}/integrity")
def ledger_integrity(
    member_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    report = ledger_service.verify_ledger_chain(engine, member_id)
    return {
        "member_id": report.member_id,
        "ok": report.ok,
        "checked": report.checked,
        "balance": report.balance,
        "problems": report.problems,
    }


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------
@router.post("/shares/{share_id}/verify")
def verify_share(
    share_id: int,
    body: ShareDecision,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: TallyConfig = Depends(get_config),
):
    share, verification = share_service.verify_share(
        engine,
        cfg.share_policy,
        share_id=share_id,
        verification_method=body.verification_method,
        verified_by=admin["member_id"],
        approved=body.approved,
        proof_url=body.proof_url,
        rejection_reason=body.rejection_reason,
    )
    return {"share": share.to_dict(), "verification": verification.to_dict()}


@router.get("/shares/{share_id}/verifications")
def share_verifications(
    share_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = share_service.get_verifications(engine, share_id)
    return {"verifications": [v.to_dict() for v in rows]}


# ---------------------------------------------------------------------------
# Redemptions
# ---------------------------------------------------------------------------
@router.post("/redemptions/{redemption_id}/compensate")
def compensate_redemption(
    redemption_id: int,
    body: Compensation,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    redemption, entry = redemption_service.compensate_redemption(
        engine,
        redemption_id=redemption_id,
        admin_id=admin["member_id"],
        reason=body.reason,
    )
    return {"redemption": redemption.to_dict(), "entry": entry.to_dict()}


# ---------------------------------------------------------------------------
# Conversion settings
# ---------------------------------------------------------------------------
@router.get("/conversion-settings")
def list_conversion_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    settings = redemption_service.get_conversion_settings(engine)
    return {"settings": [s.to_dict() for s in settings]}


@router.put("/conversion-settings")
def update_conversion_settings(
    body: ConversionSettingUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    changes = body.model_dump(exclude_none=True, exclude={"product_type"})
    if not changes:
        raise HTTPException(400, "No fields to update")
    setting = redemption_service.update_conversion_setting(engine, body.product_type, **changes)
    return {"setting": setting.to_dict()}
