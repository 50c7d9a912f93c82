"""
tally.api.routes.points — Balance, history and member-to-member transfers
==========================================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tally.api.deps import get_current_member, get_engine, require_self_or_admin
from tally.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from tally.services import ledger_service

router = APIRouter(prefix="/points", tags=["points"])


class TransferRequest(BaseModel):
    to_member_id: int
    points: int = Field(gt=0)
    reason: str = Field(default="", max_length=200)


@router.get("/balance/{member_id}")
def get_balance(
    member_id: int,
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    require_self_or_admin(member_id, caller)
    return {"member_id": member_id, "balance": ledger_service.fetch_balance(engine, member_id)}


@router.get("/transactions/{member_id}")
def get_transactions(
    member_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    transaction_type: str | None = None,
    source: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    require_self_or_admin(member_id, caller)
    history = ledger_service.get_transaction_history(
        engine,
        member_id,
        page=page,
        page_size=page_size,
        transaction_type=transaction_type,
        source=source,
        start=start,
        end=end,
    )
    history["entries"] = [e.to_dict() for e in history["entries"]]
    return history


@router.post("/transfer")
def transfer(
    body: TransferRequest,
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    result = ledger_service.transfer_points(
        engine,
        from_member_id=caller["member_id"],
        to_member_id=body.to_member_id,
        points=body.points,
        reason=body.reason,
    )
    return {
        "transfer_group": result.transfer_group,
        "sender_entry": result.sender_entry.to_dict(),
        "recipient_entry": result.recipient_entry.to_dict(),
        "balance": result.sender_entry.balance_after,
    }
