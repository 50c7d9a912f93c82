"""
tally.api.routes.rewards — Quote and redeem points for airtime / data
======================================================================

``/redeem`` is async: the gateway call may take seconds, so the whole
redemption runs on a worker thread via :func:`run_db`.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tally.api.deps import get_current_member, get_engine, get_gateway
from tally.constants import CURRENCY
from tally.database.engine import run_db
from tally.services import redemption_service

router = APIRouter(prefix="/rewards", tags=["rewards"])

Carrier = Literal["MTN", "Airtel", "Glo", "9Mobile"]
ProductType = Literal["airtime", "data"]


class QuoteRequest(BaseModel):
    product_type: ProductType
    carrier: Carrier
    currency_value: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class RedeemRequest(QuoteRequest):
    phone_number: str = Field(min_length=10, max_length=20)


@router.post("/quote")
def quote(
    body: QuoteRequest,
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    q = redemption_service.get_quote(engine, body.product_type, body.carrier, body.currency_value)
    return {
        "product_type": q.product_type,
        "carrier": q.carrier,
        "currency": CURRENCY,
        "currency_value": str(q.currency_value),
        "rate": str(q.rate),
        "points_needed": q.points_needed,
    }


@router.post("/redeem", status_code=201)
async def redeem(
    body: RedeemRequest,
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
    gateway=Depends(get_gateway),
):
    redemption = await run_db(
        redemption_service.redeem,
        engine,
        gateway,
        member_id=caller["member_id"],
        product_type=body.product_type,
        carrier=body.carrier,
        phone_number=body.phone_number,
        currency_value=body.currency_value,
    )
    return {"redemption": redemption.to_dict()}


@router.get("/redemptions")
def my_redemptions(
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    redemptions = redemption_service.list_member_redemptions(engine, caller["member_id"])
    return {"redemptions": [r.to_dict() for r in redemptions]}
