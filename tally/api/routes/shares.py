"""
tally.api.routes.shares — Record and list the caller's social shares
=====================================================================
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tally.api.deps import get_config, get_current_member, get_engine
from tally.config import TallyConfig
from tally.services import share_service

router = APIRouter(prefix="/shares", tags=["shares"])


class ShareCreate(BaseModel):
    platform: Literal["facebook", "twitter", "whatsapp", "linkedin", "instagram"]
    content_type: Literal["news", "event", "campaign", "election"]
    content_id: str = Field(min_length=1, max_length=64)
    share_url: str | None = None


@router.post("", status_code=201)
def record_share(
    body: ShareCreate,
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
    cfg: TallyConfig = Depends(get_config),
):
    share = share_service.record_share(
        engine,
        cfg.share_policy,
        member_id=caller["member_id"],
        platform=body.platform,
        content_type=body.content_type,
        content_id=body.content_id,
        share_url=body.share_url,
    )
    if share.verified:
        message = f"Share recorded! You earned {share.points_awarded} points."
    else:
        message = "Share recorded and awaiting verification."
    return {"share": share.to_dict(), "points_awarded": share.points_awarded, "message": message}


@router.get("/mine")
def my_shares(
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    shares = share_service.get_member_shares(engine, caller["member_id"])
    return {"shares": [s.to_dict() for s in shares]}


@router.get("/stats")
def my_share_stats(
    caller: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    return share_service.get_share_stats(engine, caller["member_id"])
